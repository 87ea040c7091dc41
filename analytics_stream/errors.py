"""Error taxonomy for the realtime analytics pipeline.

Every failure the pipeline can report carries a machine-readable code, a
category and retry guidance, so the serving layer can render a degraded
state without string matching.

Usage:
    from analytics_stream.errors import ParseError, ErrorCode

    error = ParseError("payload is not an object", code=ErrorCode.NOT_AN_OBJECT)
    logger.warning("Dropping message: %s", error.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error classification.

    - VALIDATION: Inbound payload is malformed
    - RESOURCE: Baseline data could not be obtained
    - EXECUTION: Transport/runtime problems
    - SYSTEM: Internal errors, unexpected
    """

    VALIDATION = "validation"
    RESOURCE = "resource"
    EXECUTION = "execution"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    """Specific error codes for programmatic handling."""

    # Validation errors
    INVALID_JSON = "invalid_json"
    NOT_AN_OBJECT = "not_an_object"
    MISSING_DISCRIMINANT = "missing_discriminant"
    INVALID_FIELDS = "invalid_fields"

    # Resource errors
    FETCH_FAILED = "fetch_failed"
    BAD_RESPONSE = "bad_response"

    # Execution errors
    NOT_CONNECTED = "not_connected"
    CONNECTION_FAILED = "connection_failed"

    # System errors
    INTERNAL_ERROR = "internal_error"


@dataclass
class ErrorResponse:
    """Serializable error description.

    - error: Human-readable message
    - code: Machine-readable error code
    - category: Error category (validation, resource, ...)
    - retriable: Whether the operation should be retried
    - details: Optional additional context
    """

    error: str = ""
    code: str = ""
    category: str = ""
    retriable: bool = False
    details: dict[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for serialization."""
        result: dict[str, object] = {
            "error": self.error,
            "code": self.code,
            "category": self.category,
            "retriable": self.retriable,
        }
        if self.details:
            result["details"] = self.details
        return result


class AnalyticsStreamError(Exception):
    """Base class for all pipeline errors."""

    category: ErrorCategory = ErrorCategory.SYSTEM
    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retriable: bool = False

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        **details: object,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = dict(details) if details else None

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.message,
            code=self.code.value,
            category=self.category.value,
            retriable=self.retriable,
            details=self.details,
        )

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for serialization."""
        return self.to_response().to_dict()


class ParseError(AnalyticsStreamError):
    """Inbound stream payload could not be classified.

    Returned (not raised) by the classifier so the subscriber loop keeps running.
    """

    category = ErrorCategory.VALIDATION
    default_code = ErrorCode.INVALID_FIELDS


class NotConnectedError(AnalyticsStreamError):
    """send() attempted while the socket is not open."""

    category = ErrorCategory.EXECUTION
    default_code = ErrorCode.NOT_CONNECTED


class StreamConnectionError(AnalyticsStreamError):
    """Socket-level failure reported through the connection's error callback."""

    category = ErrorCategory.EXECUTION
    default_code = ErrorCode.CONNECTION_FAILED
    retriable = True


class BaselineFetchError(AnalyticsStreamError):
    """Baseline snapshot request failed or returned unusable data."""

    category = ErrorCategory.RESOURCE
    default_code = ErrorCode.FETCH_FAILED
    retriable = True
