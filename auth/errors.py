"""
auth/errors.py -- Error kinds raised by the authentication core.

Every AuthError carries the HTTP status, a machine-readable code and a
human-readable message. api/main.py registers one exception handler that
renders any AuthError in the shared ErrorResponse envelope, so route code can
simply let these propagate.

InvalidToken is deliberately NOT an AuthError: it is an internal signal from
CredentialManager.verify_session_token() that the guard translates into
Unauthenticated (hard mode) or an anonymous context (soft mode).

Layer rule: no imports from api/, catalog/, or core/.
"""

from __future__ import annotations


class InvalidToken(Exception):
    """Session token is malformed, has a bad signature, or has expired."""


class AuthError(Exception):
    status_code: int = 401
    code: str = "unauthenticated"
    default_message: str = "Authentication required."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthenticated"
    default_message = "You are not logged in. Please log in to get access."


class CredentialStale(AuthError):
    """Token is valid but the password changed after it was issued."""

    status_code = 401
    code = "credential_stale"
    default_message = "User recently changed password. Please log in again."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class InvalidCredentials(AuthError):
    """Login failed. The message never says whether the email or the password was wrong."""

    status_code = 401
    code = "bad_credentials"
    default_message = "Incorrect email or password."


class TokenExpiredOrInvalid(AuthError):
    status_code = 400
    code = "token_invalid"
    default_message = "Token is invalid or has expired."


class DeliveryFailure(AuthError):
    status_code = 500
    code = "delivery_failed"
    default_message = "There was an error sending the email. Try again later."


class UserNotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "There is no user with that email address."


class ValidationFailed(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "User record failed validation."
