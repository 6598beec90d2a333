"""Error taxonomy and classification utilities for cohort operations."""

from enum import Enum

from pydantic import BaseModel


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Gating errors
    ERR_UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    ERR_NOT_MEMBER = "ERR_NOT_MEMBER"
    ERR_COHORT_EXPIRED = "ERR_COHORT_EXPIRED"
    ERR_EMPTY_TEXT = "ERR_EMPTY_TEXT"

    # Lookup errors
    ERR_NOT_FOUND = "ERR_NOT_FOUND"

    # Sync errors
    ERR_SYNC_UNAVAILABLE = "ERR_SYNC_UNAVAILABLE"

    # Validation errors
    ERR_INVALID_INPUT = "ERR_INVALID_INPUT"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class CohortError(Exception):
    """Base class for every recoverable error raised by the cohort core."""

    code: str = ErrorCode.ERR_UNKNOWN


class UnauthenticatedError(CohortError, PermissionError):
    """A write was attempted without a signed-in identity."""

    code = ErrorCode.ERR_UNAUTHENTICATED


class NotMemberError(CohortError, PermissionError):
    """The identity is not in the cohort's member set."""

    code = ErrorCode.ERR_NOT_MEMBER


class CohortExpiredError(CohortError, PermissionError):
    """The cohort's end timestamp has passed; it is read-only."""

    code = ErrorCode.ERR_COHORT_EXPIRED


class NotFoundError(CohortError, LookupError):
    """A cohort (or a task inside it) does not resolve."""

    code = ErrorCode.ERR_NOT_FOUND


class EmptyTextError(CohortError, ValueError):
    """Submitted text is blank after trimming."""

    code = ErrorCode.ERR_EMPTY_TEXT


class SyncUnavailableError(CohortError, ConnectionError):
    """A subscription or read against the store failed transiently."""

    code = ErrorCode.ERR_SYNC_UNAVAILABLE


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


_RESPONSES: dict[str, tuple[str, str, ErrorSeverity]] = {
    ErrorCode.ERR_UNAUTHENTICATED: (
        "You need to sign in first.",
        "Sign in to join this cohort.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NOT_MEMBER: (
        "Only members can post in this cohort.",
        "Join the cohort to take part.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_COHORT_EXPIRED: (
        "This cohort has ended and is now read-only.",
        "You can still read the chat history and checklist.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_EMPTY_TEXT: (
        "Nothing to send.",
        "Type something before submitting.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NOT_FOUND: (
        "Cohort not found.",
        "Check the invite link or go back home.",
        ErrorSeverity.MEDIUM,
    ),
    ErrorCode.ERR_SYNC_UNAVAILABLE: (
        "Live updates are temporarily unavailable.",
        "Please check your connection and try again.",
        ErrorSeverity.MEDIUM,
    ),
}


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, CohortError) and exception.code in _RESPONSES:
        message, suggestion, severity = _RESPONSES[exception.code]
        return ErrorResponse(code=exception.code, message=message, suggestion=suggestion, severity=severity)

    if isinstance(exception, ValueError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_INPUT,
            message=str(exception) or "Invalid input.",
            suggestion="Check the values you entered and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ConnectionError | TimeoutError):
        message, suggestion, severity = _RESPONSES[ErrorCode.ERR_SYNC_UNAVAILABLE]
        return ErrorResponse(
            code=ErrorCode.ERR_SYNC_UNAVAILABLE, message=message, suggestion=suggestion, severity=severity
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
