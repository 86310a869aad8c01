"""Domain errors raised by the tracking engine and their user-facing classification."""

from enum import Enum

from pydantic import BaseModel

from choretally.core.db_client import DatabaseError, RecordNotFoundError


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Lookup errors
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_COMPLETION_NOT_FOUND = "ERR_COMPLETION_NOT_FOUND"
    ERR_PERIOD_RESULT_NOT_FOUND = "ERR_PERIOD_RESULT_NOT_FOUND"

    # Completion errors
    ERR_ALREADY_COMPLETED = "ERR_ALREADY_COMPLETED"
    ERR_NOT_DUE_TODAY = "ERR_NOT_DUE_TODAY"
    ERR_NOT_COMPLETED = "ERR_NOT_COMPLETED"

    # Permission errors
    ERR_NOT_ASSIGNED = "ERR_NOT_ASSIGNED"

    # Storage errors
    ERR_DATABASE = "ERR_DATABASE"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


class TrackingError(Exception):
    """Base class for tracking engine errors."""

    code: str = ErrorCode.ERR_UNKNOWN


class TaskNotFoundError(TrackingError):
    """Raised when a task id does not resolve."""

    code = ErrorCode.ERR_TASK_NOT_FOUND


class CompletionNotFoundError(TrackingError):
    """Raised when a completion is missing or not in the expected state."""

    code = ErrorCode.ERR_COMPLETION_NOT_FOUND


class PeriodResultNotFoundError(TrackingError):
    """Raised when no period result exists for (task, period_start)."""

    code = ErrorCode.ERR_PERIOD_RESULT_NOT_FOUND


class AlreadyCompletedError(TrackingError):
    """Raised when the completion target is met and exceeding it is not allowed."""

    code = ErrorCode.ERR_ALREADY_COMPLETED


class NotDueTodayError(TrackingError):
    """Raised when a task has no upcoming occurrence to credit."""

    code = ErrorCode.ERR_NOT_DUE_TODAY


class NotCompletedError(TrackingError):
    """Raised when undoing a completion that does not exist."""

    code = ErrorCode.ERR_NOT_COMPLETED


class NotAssignedError(TrackingError):
    """Raised when a task is assigned to a different user."""

    code = ErrorCode.ERR_NOT_ASSIGNED


_RESPONSES: dict[str, tuple[str, str, ErrorSeverity]] = {
    ErrorCode.ERR_TASK_NOT_FOUND: (
        "I couldn't find that task.",
        "Check the task list and try again.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_COMPLETION_NOT_FOUND: (
        "That completion doesn't exist or has already been reviewed.",
        "Refresh the pending reviews list.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_PERIOD_RESULT_NOT_FOUND: (
        "No result has been recorded for that period.",
        "Only finalized periods can be corrected.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_ALREADY_COMPLETED: (
        "This task is already done for the current period.",
        "Come back when the next period starts.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NOT_DUE_TODAY: (
        "This task has no upcoming due date.",
        "Add more dates to the task's schedule.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NOT_COMPLETED: (
        "There is no completion to undo for the current period.",
        "Only completions from the current period can be undone.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NOT_ASSIGNED: (
        "This task is assigned to someone else.",
        "Ask a household admin to reassign it.",
        ErrorSeverity.MEDIUM,
    ),
    ErrorCode.ERR_DATABASE: (
        "We couldn't save your change.",
        "Please try again in a moment.",
        ErrorSeverity.HIGH,
    ),
}


def _error_code_for(exception: Exception) -> str:
    """Return the error code that best describes an exception."""
    if isinstance(exception, TrackingError):
        return exception.code
    if isinstance(exception, RecordNotFoundError):
        return ErrorCode.ERR_TASK_NOT_FOUND if "task" in str(exception).lower() else ErrorCode.ERR_COMPLETION_NOT_FOUND
    if isinstance(exception, DatabaseError):
        return ErrorCode.ERR_DATABASE
    return ErrorCode.ERR_UNKNOWN


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    code = _error_code_for(exception)
    if code not in _RESPONSES:
        return ErrorResponse(
            code=ErrorCode.ERR_UNKNOWN,
            message="An unexpected error occurred.",
            suggestion="Please try again later. If the problem persists, contact support.",
            severity=ErrorSeverity.MEDIUM,
        )

    message, suggestion, severity = _RESPONSES[code]
    return ErrorResponse(code=code, message=message, suggestion=suggestion, severity=severity)
