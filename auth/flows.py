"""
auth/flows.py -- Signup, login, and password lifecycle operations.

Each flow takes its collaborators explicitly (store, credentials, mailer) and
returns domain objects or raises an AuthError subclass. Route handlers in
api/routes/v1/users.py only translate HTTP <-> these calls.

Security:
  [C1] authenticate_user() always runs bcrypt, even for unknown emails, so
       response time does not reveal which emails are registered.
  Login failures use one generic InvalidCredentials message for unknown email,
       wrong password and deactivated account.
  forgot_password() DOES reveal whether an email is registered (404). This
       asymmetry is kept on purpose pending a product decision; see DESIGN.md.
  A reset token that could not be delivered is cleared again before the
       DeliveryFailure is raised, so no live token exists that nobody received.

All flows are synchronous and CPU-bound (bcrypt). Route handlers call them
from plain `def` endpoints so FastAPI runs them in its threadpool.

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from auth.errors import DeliveryFailure, InvalidCredentials, TokenExpiredOrInvalid, UserNotFound
from auth.mailer import Mailer, MailerError
from auth.models import User
from auth.store import UserStore
from auth.tokens import CredentialManager

logger = logging.getLogger("natours.auth")


def signup(
    store: UserStore,
    credentials: CredentialManager,
    mailer: Mailer,
    *,
    name: str,
    email: str,
    password: str,
    welcome_url: str,
) -> tuple[User, str]:
    """Create a regular user, send the welcome email, and return (user, token).

    Self-registered accounts always get the "user" role; elevated roles are
    assigned with the admin CLI. A failed welcome email is logged and does not
    undo the signup.

    Raises ValidationFailed or sqlalchemy.exc.IntegrityError (duplicate email).
    """
    user = User(name=name, email=email, role="user", hashed_password=credentials.hash_password(password))
    store.create_user(user)
    logger.info("User %s signed up", user.id)

    try:
        mailer.send_welcome(user, welcome_url)
    except MailerError:
        logger.warning("Welcome email to user %s could not be delivered", user.id)

    return user, credentials.issue_session_token(user.id)


def authenticate_user(store: UserStore, credentials: CredentialManager, email: str, password: str) -> User | None:
    """Authenticate an email/password pair with timing equalization [C1].

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        credentials.verify_password(password, credentials.dummy_hash)
        return None
    if not credentials.verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


def login(store: UserStore, credentials: CredentialManager, email: str, password: str) -> tuple[User, str]:
    """Return (user, session token) or raise InvalidCredentials."""
    user = authenticate_user(store, credentials, email, password)
    if user is None:
        raise InvalidCredentials()
    return user, credentials.issue_session_token(user.id)


def forgot_password(
    store: UserStore,
    credentials: CredentialManager,
    mailer: Mailer,
    email: str,
    build_reset_url: Callable[[str], str],
) -> None:
    """Issue a reset token for email and send the reset link.

    build_reset_url receives the plaintext token and returns the absolute
    link to put in the email.

    Raises UserNotFound if no active user has this email, DeliveryFailure if
    the email could not be sent (after clearing the persisted token).
    """
    user = store.get_by_email(email)
    if user is None or not user.is_active:
        raise UserNotFound()

    reset = credentials.create_reset_token()
    user.password_reset_token = reset.token_hash
    user.password_reset_expires = reset.expires_at
    store.save_user(user, validate=False)

    try:
        mailer.send_password_reset(user, build_reset_url(reset.plaintext))
    except MailerError as exc:
        user.password_reset_token = None
        user.password_reset_expires = None
        try:
            store.save_user(user, validate=False)
        except Exception:
            # The token still expires on its own; surface the delivery error.
            logger.exception("Could not clear reset token for user %s after failed delivery", user.id)
        raise DeliveryFailure() from exc

    logger.info("Password reset token issued for user %s", user.id)


def reset_password(
    store: UserStore,
    credentials: CredentialManager,
    token: str,
    new_password: str,
) -> tuple[User, str]:
    """Consume a reset token, set the new password, and log the user in.

    The token is accepted only while now <= password_reset_expires. Both
    reset fields are cleared in the same write that changes the hash, which
    also stamps password_changed_at and so invalidates every older session.

    Raises TokenExpiredOrInvalid if no user holds the token, it has expired,
    or a concurrent reset consumed it first.
    """
    token_hash = credentials.hash_reset_token(token)
    user = store.get_by_reset_token(token_hash)
    if user is None or not user.is_active or not credentials.is_reset_token_current(user):
        raise TokenExpiredOrInvalid()

    user.hashed_password = credentials.hash_password(new_password)
    user.password_reset_token = None
    user.password_reset_expires = None
    if not store.save_user(user, expected_reset_token=token_hash):
        # Another request consumed the same token between lookup and write.
        raise TokenExpiredOrInvalid()
    logger.info("Password reset completed for user %s", user.id)

    return user, credentials.issue_session_token(user.id)


def update_password(
    store: UserStore,
    credentials: CredentialManager,
    user: User,
    current_password: str,
    new_password: str,
) -> tuple[User, str]:
    """Change the password of a logged-in user and return a fresh token.

    Raises InvalidCredentials if current_password is wrong.
    """
    if user.hashed_password is None or not credentials.verify_password(current_password, user.hashed_password):
        raise InvalidCredentials("Your current password is wrong.")

    user.hashed_password = credentials.hash_password(new_password)
    store.save_user(user)
    logger.info("Password updated for user %s", user.id)

    return user, credentials.issue_session_token(user.id)


def update_profile(store: UserStore, user: User, *, name: str | None = None, email: str | None = None) -> User:
    """Change the caller's name and/or email.

    The password hash is untouched, so password_changed_at is not stamped
    and existing sessions stay valid.

    Raises ValidationFailed or sqlalchemy.exc.IntegrityError (email taken).
    """
    if name is not None:
        user.name = name
    if email is not None:
        user.email = email
    store.save_user(user, validate=True)
    logger.info("Profile updated for user %s", user.id)
    return user
