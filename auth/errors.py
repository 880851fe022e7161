"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Every error carries an HTTP status_code, a stable machine-readable code, a
client-safe message, and an optional context dict (remaining minutes, actual
role, field errors). api/main.py renders all of them with one exception
handler into the standard {"error": {...}} envelope, so route handlers simply
let them propagate.

Messages never contain secret material. Token failures deliberately collapse
to one class so callers cannot learn which verification step failed.

Layer rule: stdlib only.
"""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for auth errors that map to an HTTP response."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication failed."

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None, **context: Any) -> None:
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.context = context

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.context}


class InvalidCredentials(AuthError):
    """Wrong email or wrong password -- same message for both."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password."


class AccountLocked(AuthError):
    status_code = 423
    code = "account_locked"

    def __init__(self, remaining_minutes: int) -> None:
        super().__init__(
            f"Account is temporarily locked. Please try again in {remaining_minutes} minutes.",
            remaining_minutes=remaining_minutes,
        )
        self.remaining_minutes = remaining_minutes


class RoleMismatch(AuthError):
    status_code = 403
    code = "role_mismatch"

    def __init__(self, actual_role: str) -> None:
        super().__init__(
            f"Invalid user type. This account is registered as {actual_role}.",
            actual_role=actual_role,
        )
        self.actual_role = actual_role


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class InvalidOrExpiredToken(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid or expired token."


class InvalidResetToken(InvalidOrExpiredToken):
    """Reset-token failures are reported as 400 on the reset endpoints."""

    status_code = 400
    message = "Reset token is invalid or has expired."


class ConfigError(AuthError):
    """Server misconfiguration. The message is generic on purpose."""

    status_code = 500
    code = "config_error"
    message = "Server configuration error. Please contact the administrator."


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Validation failed."

    def __init__(self, fields: dict[str, str], message: Optional[str] = None) -> None:
        super().__init__(message, fields=fields)
        self.fields = fields


class InvalidPassword(AuthError):
    """The current password presented to change-password did not match."""

    status_code = 400
    code = "invalid_password"
    message = "Current password is incorrect."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class AccountExists(AuthError):
    status_code = 409
    code = "conflict"
    message = "Email already registered."
