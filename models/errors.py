"""Typed failures for the merge engine and the standard error envelope.

The merge engine raises precise, typed failures; callers translate them into
user-facing messages. ``MergeError.to_response()`` renders the standard
envelope so every caller produces the same shape:

{
    "error": "IncompatibilityError",
    "message": "Cannot merge a 'place' into a 'person'",
    "details": {"source_type": "place", "target_type": "person"},
    "timestamp": "2026-01-29T12:00:00Z"
}

Internally, request validation and source loading return ``Result`` values
instead of raising; the coordinator unwraps them at its boundary so the
"abort and roll back on any failure" contract stays in one place.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from utils.logging import get_request_id

T = TypeVar("T")


class ErrorResponse(BaseModel):
    """Standard error response schema.

    Attributes:
        error: Error type/code (e.g., "ValidationError", "NotFoundError")
        message: Human-readable error message
        details: Optional additional context about the error
        request_id: Optional request correlation ID for tracing
        timestamp: When the error occurred (ISO 8601 format)
    """

    error: str = Field(
        ...,
        description="Error type/code",
        examples=["ValidationError", "NotFoundError", "IncompatibilityError"],
    )
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(
        default=None,
        description="Additional error context",
        examples=[{"source_id": 12}],
    )
    request_id: Optional[str] = Field(default=None)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="When the error occurred (ISO 8601)",
    )


class ErrorType:
    """Standard error type codes."""

    VALIDATION_ERROR = "ValidationError"
    NOT_FOUND = "NotFoundError"
    INCOMPATIBLE = "IncompatibilityError"
    STORAGE_ERROR = "StorageError"
    INTERNAL_ERROR = "InternalError"


def create_error_response(
    error: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized error response dictionary.

    Args:
        error: Error type/code
        message: Human-readable error message
        details: Optional additional context
        request_id: Optional request correlation ID

    Returns:
        Dictionary suitable for a JSON response body
    """
    response = ErrorResponse(
        error=error,
        message=message,
        details=details,
        request_id=request_id,
    )
    return response.model_dump(exclude_none=True)


class MergeError(Exception):
    """Base class for all merge engine failures."""

    error_type = ErrorType.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self, request_id: Optional[str] = None) -> dict[str, Any]:
        """Render the error envelope.

        The request id defaults to the one bound with ``LogContext``.
        """
        return create_error_response(
            error=self.error_type,
            message=self.message,
            details=self.details or None,
            request_id=request_id or get_request_id(),
        )


class ValidationError(MergeError):
    """Missing or equal source/target ids, empty source list, malformed options."""

    error_type = ErrorType.VALIDATION_ERROR


class NotFoundError(MergeError):
    """The target, or a source required under strict policy, does not exist."""

    error_type = ErrorType.NOT_FOUND


class IncompatibilityError(ValidationError):
    """Type mismatch (or critical attribute conflict) blocking a merge."""

    error_type = ErrorType.INCOMPATIBLE


class StorageError(MergeError):
    """Underlying query or transaction failure."""

    error_type = ErrorType.STORAGE_ERROR


@dataclass(frozen=True)
class Result(Generic[T]):
    """Explicit success/failure value.

    Exactly one of ``value`` (on success) or ``error`` is meaningful.
    """

    value: Optional[T] = None
    error: Optional[MergeError] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: MergeError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value
