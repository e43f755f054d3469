"""
auth/errors.py -- Typed failures raised by the auth services.

Every class carries the HTTP status and the stable error code the API layer
puts in the error envelope. The message is the generic, client-safe text;
anything more specific belongs in the log, never in the exception message.

SessionNotFound is internal: SessionRegistry raises it, SessionService turns
it into Unauthorized after revoking the user's sessions.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth failures mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Wrong email or wrong password -- never says which."""

    status_code = 401
    error_code = "bad_credentials"
    default_message = "Invalid email or password."


class Conflict(AuthError):
    status_code = 409
    error_code = "conflict"
    default_message = "An account with that email already exists."


class Unauthorized(AuthError):
    """Missing, invalid, expired or reused token."""

    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AuthError):
    """Valid identity, insufficient role."""

    status_code = 403
    error_code = "forbidden"
    default_message = "Access denied."


class SessionNotFound(AuthError):
    """Internal rotation signal: no live session for the presented digest."""

    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication required."
