"""
auth/guard.py -- Access Guard: decides whether a request may proceed.

check_access() runs one request through a fixed sequence of steps:

  1. Extract   -- ask each CredentialSource in order for a token.
  2. Verify    -- CredentialManager.verify_session_token().
  3. Resolve   -- look the user up by the token subject. Inactive users are
                  treated exactly like deleted ones.
  4. Staleness -- reject tokens issued before the last password change.
  5. Authorize -- only when allowed_roles is given.
  6. Admit     -- return an AuthContext carrying the user.

Hard mode raises on any failure. Soft mode (pages that personalize output but
must still serve anonymous visitors) turns failures in steps 1-4 into an
anonymous AuthContext instead. Role restrictions only exist in hard mode.

The guard is framework-agnostic: it sees CredentialSource objects and a
UserLookup, never a FastAPI Request. auth/dependencies.py adapts it to
FastAPI's Depends() system.

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from auth.errors import AuthError, CredentialStale, Forbidden, InvalidToken, Unauthenticated
from auth.models import User
from auth.tokens import CredentialManager

logger = logging.getLogger("natours.auth.guard")


# ---------------------------------------------------------------------------
# Credential sources
# ---------------------------------------------------------------------------


class CredentialSource(Protocol):
    def extract_token(self) -> str | None: ...


class BearerHeaderSource:
    """Reads `Authorization: Bearer <token>` from a header mapping."""

    def __init__(self, headers: Mapping[str, str]) -> None:
        self._headers = headers

    def extract_token(self) -> str | None:
        value = self._headers.get("authorization") or self._headers.get("Authorization") or ""
        scheme, _, token = value.partition(" ")
        if scheme.lower() != "bearer":
            return None
        token = token.strip()
        return token or None


class CookieSource:
    """Reads the session token from a named cookie."""

    def __init__(self, cookies: Mapping[str, str], name: str) -> None:
        self._cookies = cookies
        self._name = name

    def extract_token(self) -> str | None:
        return self._cookies.get(self._name) or None


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class UserLookup(Protocol):
    def get_by_id(self, user_id: int) -> User | None: ...


class GuardMode(str, Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass(frozen=True)
class AuthContext:
    user: User | None = None
    issued_at: datetime | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


ANONYMOUS = AuthContext()


def _first_token(sources: Iterable[CredentialSource]) -> str | None:
    for source in sources:
        token = source.extract_token()
        if token:
            return token
    return None


def _authenticate(sources: Iterable[CredentialSource], credentials: CredentialManager, users: UserLookup) -> AuthContext:
    """Steps 1-4. Raises Unauthenticated or CredentialStale."""
    token = _first_token(sources)
    if token is None:
        raise Unauthenticated()

    try:
        claims = credentials.verify_session_token(token)
    except InvalidToken as exc:
        logger.info("Rejected session token: %s", exc)
        raise Unauthenticated("Invalid or expired session. Please log in again.") from exc

    user = users.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        logger.info("Session token subject %s no longer exists", claims.user_id)
        raise Unauthenticated("The user belonging to this token no longer exists.")

    if credentials.has_password_changed_after(user, claims.issued_at):
        logger.info("Session token for user %s predates a password change", user.id)
        raise CredentialStale()

    return AuthContext(user=user, issued_at=claims.issued_at)


def check_access(
    sources: Iterable[CredentialSource],
    credentials: CredentialManager,
    users: UserLookup,
    mode: GuardMode = GuardMode.HARD,
    allowed_roles: Iterable[str] | None = None,
) -> AuthContext:
    """Run the guard and return the admitted context.

    Hard mode raises Unauthenticated, CredentialStale or Forbidden.
    Soft mode never raises for authentication failures; it returns ANONYMOUS.

    Raises ValueError if allowed_roles is combined with soft mode.
    """
    roles = frozenset(allowed_roles) if allowed_roles is not None else None
    if mode is GuardMode.SOFT and roles is not None:
        raise ValueError("role restrictions require hard mode")

    try:
        context = _authenticate(sources, credentials, users)
    except AuthError:
        if mode is GuardMode.SOFT:
            return ANONYMOUS
        raise

    if roles is not None and context.user.role not in roles:
        logger.info("User %s with role %r denied (allowed: %s)", context.user.id, context.user.role, sorted(roles))
        raise Forbidden()

    return context
