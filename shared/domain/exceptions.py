"""
Rich Domain Exceptions

Exception hierarchy for faults the enrollment engine cannot express as a
typed outcome. Domain rejections (full section, conflicts, deadlines) are
returned as result models; only infrastructure and invariant faults raise.
"""

from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes shared by exceptions and typed outcomes."""

    # Domain errors
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    # Enrollment outcomes
    ALREADY_ENROLLED = "ALREADY_ENROLLED"
    ALREADY_WAITLISTED = "ALREADY_WAITLISTED"
    NOT_WAITLISTED = "NOT_WAITLISTED"
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"
    DEADLINE_PASSED = "DEADLINE_PASSED"
    SECTION_CLOSED = "SECTION_CLOSED"
    REQUIREMENTS_NOT_MET = "REQUIREMENTS_NOT_MET"

    # Store errors
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Provides structured error information with error codes, context, and metadata.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize domain exception.

        Args:
            message: Human-readable error message
            error_code: Standard error code
            context: Additional context data
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause

        logger.error(
            "Domain exception raised",
            error_code=error_code.value,
            message=message,
            context=context,
            exception_type=type(self).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error": self.error_code.value,
            "message": self.message,
            "type": type(self).__name__,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = self.context
        return result


class StoreUnavailableError(DomainException):
    """
    Raised when the transactional store cannot be reached or timed out.

    Transient: the caller may re-run the whole unit from a fresh read.
    """

    retryable = True

    def __init__(
        self,
        message: str = "Transactional store unavailable",
        operation: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation

        super().__init__(
            message=message,
            error_code=ErrorCode.STORE_UNAVAILABLE,
            context=context,
            **kwargs
        )
        self.operation = operation


class InvariantViolationError(DomainException):
    """
    Raised when a counter or queue invariant would be broken.

    Indicates the store failed to serialise a unit. Fatal to the operation;
    never retried with the data that produced it.
    """

    def __init__(
        self,
        message: str,
        section_id: Any | None = None,
        invariant: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if section_id is not None:
            context["section_id"] = str(section_id)
        if invariant:
            context["invariant"] = invariant

        super().__init__(
            message=message,
            error_code=ErrorCode.INVARIANT_VIOLATION,
            context=context,
            **kwargs
        )
        self.section_id = section_id
        self.invariant = invariant
