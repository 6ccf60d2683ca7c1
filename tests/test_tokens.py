"""Unit tests for auth/tokens.py -- CredentialManager.

Covers:
- bcrypt hashing: salted per call, verify true/false, never raises
- session tokens: round trip, expiry, tampering, wrong key, malformed payloads
- password-change staleness at second granularity
- reset tokens: entropy/format, keyed hashing, expiry boundary
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidToken
from auth.models import User
from auth.tokens import CredentialManager
from conftest import TEST_SECRET, FakeClock

# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class TestPasswordHashing:
    def test_verify_accepts_original_password(self, credentials: CredentialManager) -> None:
        hashed = credentials.hash_password("correct horse")
        assert credentials.verify_password("correct horse", hashed)

    def test_verify_rejects_other_password(self, credentials: CredentialManager) -> None:
        hashed = credentials.hash_password("correct horse")
        assert not credentials.verify_password("battery staple", hashed)

    def test_same_password_hashes_differently(self, credentials: CredentialManager) -> None:
        """Salt is drawn per call, so two hashes of one password never match."""
        assert credentials.hash_password("same-password") != credentials.hash_password("same-password")

    def test_hash_is_not_plaintext(self, credentials: CredentialManager) -> None:
        assert "secret-value" not in credentials.hash_password("secret-value")

    def test_verify_returns_false_on_garbage_hash(self, credentials: CredentialManager) -> None:
        assert credentials.verify_password("anything", "not-a-bcrypt-hash") is False

    def test_password_at_byte_limit_is_accepted(self, credentials: CredentialManager) -> None:
        password = "x" * 72
        assert credentials.verify_password(password, credentials.hash_password(password))

    def test_password_over_byte_limit_is_refused(self, credentials: CredentialManager) -> None:
        """72 two-byte characters are 144 bytes; bcrypt would silently ignore half."""
        with pytest.raises(ValueError):
            credentials.hash_password("é" * 72)

    def test_shared_72_byte_prefix_does_not_verify(self, credentials: CredentialManager) -> None:
        hashed = credentials.hash_password("é" * 36)
        assert not credentials.verify_password("é" * 36 + "WRONG", hashed)
        assert not credentials.verify_password("é" * 36 + "é" * 4, hashed)

    def test_dummy_hash_uses_configured_cost(self, credentials: CredentialManager) -> None:
        assert credentials.dummy_hash.startswith("$2b$04$")


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class TestSessionTokens:
    def test_round_trip(self, credentials: CredentialManager) -> None:
        claims = credentials.verify_session_token(credentials.issue_session_token(42))
        assert claims.user_id == 42

    def test_issued_at_matches_clock(self, credentials: CredentialManager, clock: FakeClock) -> None:
        issued = datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        clock.set(issued)
        claims = credentials.verify_session_token(credentials.issue_session_token(7))
        assert claims.issued_at == issued

    def test_expired_token_rejected(self, credentials: CredentialManager, clock: FakeClock) -> None:
        """A token past its horizon fails even though its signature is valid."""
        clock.advance(seconds=-(credentials.token_expire_seconds + 60))
        token = credentials.issue_session_token(1)
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(token)

    def test_token_within_horizon_accepted(self, credentials: CredentialManager, clock: FakeClock) -> None:
        clock.advance(seconds=-(credentials.token_expire_seconds - 60))
        token = credentials.issue_session_token(1)
        assert credentials.verify_session_token(token).user_id == 1

    def test_expiry_follows_manager_clock(self, credentials: CredentialManager, clock: FakeClock) -> None:
        token = credentials.issue_session_token(1)
        clock.advance(seconds=credentials.token_expire_seconds + 1)
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(token)

    def test_token_from_frozen_past_is_current_at_that_time(
        self, credentials: CredentialManager, clock: FakeClock
    ) -> None:
        """Wall-clock time is years later; only the manager's clock decides expiry."""
        clock.set(datetime(2001, 1, 1, tzinfo=timezone.utc))
        token = credentials.issue_session_token(5)
        clock.advance(seconds=credentials.token_expire_seconds - 1)
        assert credentials.verify_session_token(token).user_id == 5

    def test_tampered_signature_rejected(self, credentials: CredentialManager) -> None:
        header, payload, signature = credentials.issue_session_token(1).split(".")
        forged = ".".join([header, payload, signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")])
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(forged)

    def test_token_from_other_key_rejected(self, credentials: CredentialManager) -> None:
        other = CredentialManager(secret_key="another-key-of-sufficient-length-000000", bcrypt_rounds=4)
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(other.issue_session_token(1))

    def test_garbage_rejected(self, credentials: CredentialManager) -> None:
        with pytest.raises(InvalidToken):
            credentials.verify_session_token("not.a.jwt")

    def test_missing_subject_rejected(self, credentials: CredentialManager) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode({"iat": now, "exp": now + timedelta(hours=1)}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(token)

    def test_non_numeric_subject_rejected(self, credentials: CredentialManager) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "admin", "iat": now, "exp": now + timedelta(hours=1)}, TEST_SECRET, algorithm="HS256"
        )
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(token)

    def test_missing_issued_at_rejected(self, credentials: CredentialManager) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode({"sub": "1", "exp": now + timedelta(hours=1)}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(InvalidToken):
            credentials.verify_session_token(token)

    def test_empty_secret_refused(self) -> None:
        with pytest.raises(ValueError):
            CredentialManager(secret_key="")


# ---------------------------------------------------------------------------
# Password-change staleness
# ---------------------------------------------------------------------------


class TestPasswordChangedAfter:
    ISSUED = datetime(2030, 6, 1, 10, 0, 0, tzinfo=timezone.utc)

    def _user(self, changed_at):
        return User(name="A", email="a@example.com", password_changed_at=changed_at)

    def test_never_changed(self, credentials: CredentialManager) -> None:
        assert credentials.has_password_changed_after(self._user(None), self.ISSUED) is False

    def test_changed_before_issue(self, credentials: CredentialManager) -> None:
        user = self._user(self.ISSUED - timedelta(minutes=5))
        assert credentials.has_password_changed_after(user, self.ISSUED) is False

    def test_changed_after_issue(self, credentials: CredentialManager) -> None:
        user = self._user(self.ISSUED + timedelta(seconds=2))
        assert credentials.has_password_changed_after(user, self.ISSUED) is True

    def test_change_within_same_second_is_not_stale(self, credentials: CredentialManager) -> None:
        """Comparison is at whole-second granularity, like JWT iat."""
        user = self._user(self.ISSUED + timedelta(milliseconds=500))
        assert credentials.has_password_changed_after(user, self.ISSUED) is False


# ---------------------------------------------------------------------------
# Reset tokens
# ---------------------------------------------------------------------------


class TestResetTokens:
    def test_plaintext_is_64_hex_chars(self, credentials: CredentialManager) -> None:
        reset = credentials.create_reset_token()
        assert len(reset.plaintext) == 64
        int(reset.plaintext, 16)

    def test_hash_matches_plaintext(self, credentials: CredentialManager) -> None:
        reset = credentials.create_reset_token()
        assert reset.token_hash == credentials.hash_reset_token(reset.plaintext)
        assert reset.token_hash != reset.plaintext

    def test_tokens_are_unique(self, credentials: CredentialManager) -> None:
        assert credentials.create_reset_token().plaintext != credentials.create_reset_token().plaintext

    def test_hash_depends_on_secret_key(self, credentials: CredentialManager) -> None:
        other = CredentialManager(secret_key="another-key-of-sufficient-length-000000", bcrypt_rounds=4)
        assert credentials.hash_reset_token("abc") != other.hash_reset_token("abc")

    def test_expiry_is_ten_minutes(self, credentials: CredentialManager, clock: FakeClock) -> None:
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        clock.set(now)
        assert credentials.create_reset_token().expires_at == now + timedelta(minutes=10)

    def test_current_until_expiry_inclusive(self, credentials: CredentialManager, clock: FakeClock) -> None:
        reset = credentials.create_reset_token()
        user = User(
            name="A",
            email="a@example.com",
            password_reset_token=reset.token_hash,
            password_reset_expires=reset.expires_at,
        )
        clock.set(reset.expires_at)
        assert credentials.is_reset_token_current(user)
        clock.advance(microseconds=1)
        assert not credentials.is_reset_token_current(user)

    def test_no_pending_reset(self, credentials: CredentialManager) -> None:
        assert not credentials.is_reset_token_current(User(name="A", email="a@example.com"))
