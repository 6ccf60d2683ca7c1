"""
api/routes/v1/users.py -- Authentication and account REST endpoints.

Routes:
  POST  /api/v1/users/signup                -- create account; sets session cookie
  POST  /api/v1/users/login                 -- password login; sets session cookie
  POST  /api/v1/users/logout                -- clears cookie
  POST  /api/v1/users/forgotPassword        -- email a one-time reset link
  PATCH /api/v1/users/resetPassword/{token} -- consume reset token; sets cookie
  PATCH /api/v1/users/updateMyPassword      -- change own password (requires auth)
  PATCH /api/v1/users/updateMe              -- change own name / email (requires auth)
  GET   /api/v1/users/me                    -- current user (requires auth)
  GET   /api/v1/users                       -- list users (admin only)

Security:
  [H2] /login and /forgotPassword are rate-limited per IP.
  [C1] flows.authenticate_user() provides timing equalization -- never inline
       get_by_email() + verify_password() here.
  [M5] Cache-Control: no-store on every response that carries a token.
  Handlers that hash or verify passwords are plain `def` so bcrypt runs in
  FastAPI's threadpool instead of blocking the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    UpdateMeRequest,
    UpdatePasswordRequest,
    UserResponse,
)
from auth import flows
from auth.dependencies import protect, restrict_to
from auth.errors import ValidationFailed
from auth.models import User
from auth.store import UserStore
from auth.tokens import CredentialManager, set_auth_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST  /users/signup, /login, /logout, /forgotPassword:  public
# - PATCH /users/resetPassword/{token}:                     public (token is the credential)
# - PATCH /users/updateMyPassword, /users/updateMe:        requires auth (protect)
# - GET   /users/me:                                        requires auth (protect)
# - GET   /users:                                           requires admin (restrict_to)
router = APIRouter()


def _send_token(user: User, token: str, credentials: CredentialManager, status_code: int = 200) -> JSONResponse:
    """Build the login response: token + user in the body, token in an httpOnly cookie."""
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            token=token,
            expires_in=credentials.token_expire_seconds,
            user=UserResponse.from_user(user),
        ).model_dump(),
    )
    set_auth_cookie(
        resp,
        token,
        name=_settings.cookie_name,
        max_age=credentials.token_expire_seconds,
        secure=_settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a regular user account and log it in."""
    store: UserStore = request.app.state.user_store
    credentials: CredentialManager = request.app.state.credentials
    try:
        user, token = flows.signup(
            store,
            credentials,
            request.app.state.mailer,
            name=body.name,
            email=body.email,
            password=body.password,
            welcome_url=str(request.url_for("me")),
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that email already exists."},
        ) from exc
    return _send_token(user, token, credentials, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/users/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and deactivated account all produce the same
    401 "bad_credentials" body.
    """
    credentials: CredentialManager = request.app.state.credentials
    user, token = flows.login(request.app.state.user_store, credentials, body.email, body.password)
    return _send_token(user, token, credentials)


@router.post("/users/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie. The JWT itself stays valid until it expires."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    resp.delete_cookie(_settings.cookie_name)
    return resp


@limiter.limit(_settings.forgot_password_rate_limit)  # [H2]
@router.post("/users/forgotPassword", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a password reset link valid for RESET_TOKEN_EXPIRE_SECONDS.

    Returns 404 for an unknown email (see DESIGN.md, open question on account
    enumeration) and 500 if the email could not be sent.
    """
    flows.forgot_password(
        request.app.state.user_store,
        request.app.state.credentials,
        request.app.state.mailer,
        body.email,
        build_reset_url=lambda token: str(request.url_for("reset_password", token=token)),
    )
    return MessageResponse(message="Token sent to email!")


@router.patch("/users/resetPassword/{token}", response_model=AuthResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password using a reset token, then log the user in."""
    credentials: CredentialManager = request.app.state.credentials
    user, session_token = flows.reset_password(request.app.state.user_store, credentials, token, body.password)
    return _send_token(user, session_token, credentials)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.patch("/users/updateMyPassword", response_model=AuthResponse)
def update_my_password(
    request: Request,
    body: UpdatePasswordRequest,
    current_user: User = Depends(protect),
) -> JSONResponse:
    """Change the caller's password. Every older session token stops working."""
    credentials: CredentialManager = request.app.state.credentials
    user, token = flows.update_password(
        request.app.state.user_store,
        credentials,
        current_user,
        body.password_current,
        body.password,
    )
    return _send_token(user, token, credentials)


@router.patch("/users/updateMe", response_model=UserResponse)
def update_me(request: Request, body: UpdateMeRequest, current_user: User = Depends(protect)) -> UserResponse:
    """Update the caller's name and/or email. Passwords go through /updateMyPassword."""
    if body.password is not None or body.password_confirm is not None:
        raise ValidationFailed("This route is not for password updates. Please use /updateMyPassword.")
    try:
        user = flows.update_profile(request.app.state.user_store, current_user, name=body.name, email=body.email)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that email already exists."},
        ) from exc
    return UserResponse.from_user(user)


@router.get("/users/me", response_model=UserResponse)
def me(current_user: User = Depends(protect)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(restrict_to("admin"))) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in store.list_users()]
