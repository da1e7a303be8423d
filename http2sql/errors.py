"""Closed error taxonomy shared by the registries and the HTTP layer."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    """Every failure the core may report to a caller."""

    VALIDATION = "Validation"
    CONFLICT = "Conflict"
    UNAUTHORIZED = "Unauthorized"
    NOT_FOUND = "NotFound"
    UNAVAILABLE = "Unavailable"


class ApiError(Exception):
    """Base class for errors that are rendered through the error envelope."""

    kind: ErrorKind = ErrorKind.UNAVAILABLE
    status_code: int = 503
    default_message: str = "Service temporarily unavailable"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.kind.value, "message": self.message}


class ValidationError(ApiError):
    """Raised when caller supplied input is malformed."""

    kind = ErrorKind.VALIDATION
    status_code = 400
    default_message = "Invalid request"


class ConflictError(ApiError):
    """Raised when a uniqueness constraint rejects an insert."""

    kind = ErrorKind.CONFLICT
    status_code = 409
    default_message = "Resource already exists"

    def __init__(self) -> None:
        # The message never names the offending field.
        super().__init__()


class UnauthorizedError(ApiError):
    """Raised for unknown principals and wrong passwords alike."""

    kind = ErrorKind.UNAUTHORIZED
    status_code = 401
    default_message = "Invalid credentials"

    def __init__(self) -> None:
        super().__init__()


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_message = "Resource not found"


class UnavailableError(ApiError):
    """Raised when storage cannot serve the request (exhausted or unreachable)."""

    kind = ErrorKind.UNAVAILABLE
    status_code = 503
    default_message = "Service temporarily unavailable"


class DatabaseUnavailableError(UnavailableError):
    """Raised by the connection pool when no connection can be provided.

    ``detail`` is kept for logs only; callers always see the generic message.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__()

    def __str__(self) -> str:
        return self.detail


__all__ = [
    "ApiError",
    "ConflictError",
    "DatabaseUnavailableError",
    "ErrorKind",
    "NotFoundError",
    "UnauthorizedError",
    "UnavailableError",
    "ValidationError",
]
