"""
auth/tokens.py -- Password hashing, session tokens, and reset tokens.

Security design decisions:
  Sessions: python-jose JWT with HS256. Claims are sub (user id as a string),
       iat and exp. The signature is checked by python-jose; exp is compared
       against the manager's own clock, the same one that stamped it. There
       is no server-side session table. The only way to revoke a token early
       is to change the password (see has_password_changed_after()).

  Passwords: bcrypt directly (no passlib wrapper). Inputs over 72 UTF-8
       bytes are rejected, never truncated. The cost factor is part of
       the manager's configuration so tests can run at the minimum cost while
       production keeps the default of 12. dummy_hash enables timing
       equalization in login so response time does not reveal whether an
       email exists [C1].

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only
       HMAC-SHA256(SECRET_KEY, raw_token) is stored. The hash is deterministic,
       enabling lookup by hash, and useless without SECRET_KEY.

  SECRET_KEY: injected at construction. CredentialManager.from_settings() is
       called once in the application lifespan; the manager is immutable after
       that and lives on app.state.credentials.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed
(for the Settings type only).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidToken

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("natours.auth")

_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes of its input. Longer passwords are
# refused rather than truncated so two passwords sharing a 72-byte prefix
# never verify against each other.
BCRYPT_MAX_BYTES = 72


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode_password(plain: str) -> bytes:
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValueError(f"password exceeds {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    return encoded


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    user_id: int
    issued_at: datetime


@dataclass(frozen=True)
class ResetToken:
    """A freshly generated password-reset secret.

    plaintext goes out once in the reset link and is never stored.
    token_hash and expires_at are what the caller persists on the user record.
    """

    plaintext: str
    token_hash: str
    expires_at: datetime


class CredentialManager:
    """Credential & token operations bound to one immutable signing key.

    Usage:
        credentials = CredentialManager.from_settings(get_settings())
        token = credentials.issue_session_token(user.id)
        claims = credentials.verify_session_token(token)
    """

    def __init__(
        self,
        secret_key: str,
        token_expire_seconds: int = 3600,
        reset_token_expire_seconds: int = 600,
        bcrypt_rounds: int = 12,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.token_expire_seconds = token_expire_seconds
        self.reset_token_expire_seconds = reset_token_expire_seconds
        self.bcrypt_rounds = bcrypt_rounds
        self._clock = clock
        # Computed once per manager so it carries the same cost factor as
        # real hashes. Login always runs bcrypt against this when the email
        # is unknown [C1].
        self.dummy_hash: str = self.hash_password("natours_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialManager:
        return cls(
            secret_key=settings.secret_key,
            token_expire_seconds=settings.token_expire_seconds,
            reset_token_expire_seconds=settings.reset_token_expire_seconds,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext. A fresh salt is drawn on every call.

        Raises ValueError if the password is longer than BCRYPT_MAX_BYTES.
        """
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(_encode_password(plain), salt).decode("utf-8")

    def verify_password(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the bcrypt hash. Never raises."""
        try:
            return bcrypt.checkpw(_encode_password(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            # Corrupt or non-bcrypt hash in storage, or an over-long password.
            return False

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def issue_session_token(self, user_id: int) -> str:
        """Encode a signed JWT for user_id with the configured expiry horizon."""
        issued_at = self.now()
        payload = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.token_expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify_session_token(self, token: str) -> SessionClaims:
        """Verify signature and expiry; return the claims.

        Raises InvalidToken on a bad signature, an elapsed expiry, or a payload
        that lacks a numeric subject or an issue time.
        """
        try:
            payload = jwt.decode(
                token, self._secret_key, algorithms=[_ALGORITHM], options={"verify_exp": False}
            )
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise InvalidToken("token is missing exp")
        if self.now().timestamp() > exp:
            raise InvalidToken("Signature has expired.")

        sub = payload.get("sub")
        iat = payload.get("iat")
        if sub is None or not isinstance(iat, (int, float)):
            raise InvalidToken("token is missing sub or iat")
        try:
            user_id = int(sub)
        except (TypeError, ValueError) as exc:
            raise InvalidToken("token subject is not a user id") from exc
        return SessionClaims(user_id=user_id, issued_at=datetime.fromtimestamp(iat, tz=timezone.utc))

    def has_password_changed_after(self, user: User, issued_at: datetime) -> bool:
        """Return True if the user's password changed after issued_at.

        Compared at whole-second granularity because JWT iat is an integer.
        The store backdates password_changed_at by one second, so a token
        issued immediately after a password change is still accepted.
        """
        if user.password_changed_at is None:
            return False
        return int(user.password_changed_at.timestamp()) > int(issued_at.timestamp())

    # ------------------------------------------------------------------
    # Reset tokens
    # ------------------------------------------------------------------

    def hash_reset_token(self, plaintext: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, plaintext) as a hex string."""
        return hmac.new(
            self._secret_key.encode("utf-8"),
            plaintext.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def create_reset_token(self) -> ResetToken:
        plaintext = secrets.token_hex(32)
        return ResetToken(
            plaintext=plaintext,
            token_hash=self.hash_reset_token(plaintext),
            expires_at=self.now() + timedelta(seconds=self.reset_token_expire_seconds),
        )

    def is_reset_token_current(self, user: User) -> bool:
        """Return True while now <= password_reset_expires."""
        if user.password_reset_token is None or user.password_reset_expires is None:
            return False
        return self.now() <= user.password_reset_expires


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, name: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    max_age matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
