"""
core/errors.py -- Application error taxonomy.

Every failure a route can report maps to exactly one AppError subclass. Each
class carries its HTTP status and a stable machine-readable code; the exception
handlers in api/main.py turn them into the JSON error envelope. Stores and
helpers raise these directly so route handlers stay free of status-code
bookkeeping.

Layer rule: core/ is the kernel. No imports from api/, auth/, or vault/.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for errors that are safe to report to the client."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, details: Any = None, code: str | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or missing input."""

    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class Unauthenticated(AppError):
    """No credentials, or the credentials no longer resolve to a user."""

    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required."


class InvalidToken(AppError):
    """Bearer token failed signature or expiry verification."""

    status_code = 403
    code = "invalid_token"
    default_message = "Invalid token."


class Forbidden(AppError):
    """Authenticated but not permitted."""

    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class Conflict(AppError):
    """Duplicate value for a unique field.

    Reported as 400 to match what existing clients of the registration and
    data consumer endpoints already handle.
    """

    status_code = 400
    code = "conflict"
    default_message = "Resource already exists."


class PayloadTooLarge(AppError):
    status_code = 413
    code = "file_too_large"
    default_message = "Upload is too large."


class InternalError(AppError):
    pass
