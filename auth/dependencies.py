"""
auth/dependencies.py -- FastAPI Depends() helpers around the Access Guard.

Token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. Session cookie (COOKIE_NAME, default "jwt") -- set by the login routes.

protect() is the hard variant (raises 401 on failure).
optional_user() is the soft variant (returns None on failure).
restrict_to(*roles) builds a hard dependency that also raises 403 when the
caller's role is not in the allow-list.

Every variant stores the admitted user on request.state.user so handlers and
middleware further down the chain can read it without re-running the guard.

Layer rule: no imports from api/ or catalog/. auth/dependencies.py may import
from fastapi and core/ because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.guard import AuthContext, BearerHeaderSource, CookieSource, CredentialSource, GuardMode, check_access
from auth.models import User
from core.config import get_settings


def request_sources(request: Request) -> list[CredentialSource]:
    return [
        BearerHeaderSource(request.headers),
        CookieSource(request.cookies, get_settings().cookie_name),
    ]


def _run_guard(request: Request, mode: GuardMode, allowed_roles: tuple[str, ...] | None = None) -> AuthContext:
    context = check_access(
        request_sources(request),
        request.app.state.credentials,
        request.app.state.user_store,
        mode=mode,
        allowed_roles=allowed_roles,
    )
    request.state.user = context.user
    return context


def protect(request: Request) -> User:
    """Require authentication. Raises Unauthenticated or CredentialStale.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(protect)): ...
    """
    return _run_guard(request, GuardMode.HARD).user


def optional_user(request: Request) -> User | None:
    """Return the logged-in user, or None for anonymous visitors. Never raises."""
    return _run_guard(request, GuardMode.SOFT).user


def restrict_to(*roles: str) -> Callable[[Request], User]:
    """Build a dependency admitting only users whose role is in roles.

        @router.delete("/tours/{tour_id}")
        def route(user: User = Depends(restrict_to("admin", "lead-guide"))): ...
    """
    allowed = tuple(roles)

    def dependency(request: Request) -> User:
        return _run_guard(request, GuardMode.HARD, allowed_roles=allowed).user

    return dependency
