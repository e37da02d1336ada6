"""Application error taxonomy.

Every error raised past a service boundary is an ``AppError`` carrying a
stable HTTP status and error code. The API layer renders them as::

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}
"""
from typing import Any


class AppError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "BAD_REQUEST"
    default_message: str = "Bad request"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if error_code is not None:
            self.error_code = error_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.error_code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class BadRequest(AppError):
    status_code = 400
    error_code = "BAD_REQUEST"
    default_message = "Bad request"


class Unauthorized(AppError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    error_code = "CONFLICT"
    default_message = "Conflict"


class StorageError(AppError):
    """The backing store failed; the message is never shown in production."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_message = "An unexpected error occurred"


# Refresh token failures. All are 401s so clients treat them as "log in again".


class InvalidToken(Unauthorized):
    error_code = "INVALID_TOKEN"
    default_message = "Invalid or expired refresh token"


class TokenNotFound(Unauthorized):
    error_code = "TOKEN_NOT_FOUND"
    default_message = "Refresh token not recognized"


class TokenRevoked(Unauthorized):
    error_code = "TOKEN_REVOKED"
    default_message = "Refresh token has been revoked"


class TokenReuseDetected(Unauthorized):
    error_code = "TOKEN_REUSE_DETECTED"
    default_message = "Token reuse detected"
