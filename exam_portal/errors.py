"""Domain error kinds raised by the exam engine.

Every gate in the start/submit pipeline raises a distinct subclass of
``ExamFlowError``. The kind is stable and the structured ``data`` is enough for
a caller to render a precise message. Domain errors are never retried; store
failures surface separately as SQLAlchemy errors.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    EXAM_NOT_FOUND = "ExamNotFound"
    EXAM_DISABLED = "ExamDisabled"
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    NOT_ASSIGNED = "NotAssigned"
    NOT_YET_OPEN = "NotYetOpen"
    CLOSED = "Closed"
    ATTEMPT_LIMIT_REACHED = "AttemptLimitReached"
    INSUFFICIENT_BANK = "InsufficientBank"
    PERMISSION_DENIED = "PermissionDenied"
    ATTEMPT_NOT_FOUND = "AttemptNotFound"
    ATTEMPT_ALREADY_SUBMITTED = "AttemptAlreadySubmitted"
    EMPTY_SUBMISSION = "EmptySubmission"
    INCOMPLETE_SUBMISSION = "IncompleteSubmission"
    INVALID_INPUT = "InvalidInput"


class ExamFlowError(Exception):
    """Base class for terminal, non-retryable domain failures."""

    kind: ErrorKind
    retryable = False

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "data": self.data,
            "retryable": self.retryable,
        }


class ExamNotFound(ExamFlowError):
    kind = ErrorKind.EXAM_NOT_FOUND

    def __init__(self, exam_id: int):
        super().__init__("Exam not found", exam_id=exam_id)


class ExamDisabled(ExamFlowError):
    kind = ErrorKind.EXAM_DISABLED

    def __init__(self, exam_id: int):
        super().__init__("This exam has been disabled", exam_id=exam_id)


class AuthenticationRequired(ExamFlowError):
    kind = ErrorKind.AUTHENTICATION_REQUIRED

    def __init__(self, exam_id: int):
        super().__init__("You must sign in to take this exam", exam_id=exam_id)


class NotAssigned(ExamFlowError):
    kind = ErrorKind.NOT_ASSIGNED

    def __init__(self, exam_id: int):
        super().__init__("This exam has not been assigned to you", exam_id=exam_id)


class NotYetOpen(ExamFlowError):
    kind = ErrorKind.NOT_YET_OPEN

    def __init__(self, message: str, current_time: str, start_time: str):
        super().__init__(message, current_time=current_time, start_time=start_time)


class Closed(ExamFlowError):
    kind = ErrorKind.CLOSED

    def __init__(self, message: str, current_time: str, end_time: str):
        super().__init__(message, current_time=current_time, end_time=end_time)


class AttemptLimitReached(ExamFlowError):
    kind = ErrorKind.ATTEMPT_LIMIT_REACHED

    def __init__(self, count: int, ceiling: int):
        super().__init__(
            f"You have taken this exam {count} time(s) (maximum {ceiling})",
            count=count,
            ceiling=ceiling,
        )


class InsufficientBank(ExamFlowError):
    kind = ErrorKind.INSUFFICIENT_BANK

    def __init__(self, available: int, required: int):
        super().__init__(
            f"The question bank only has {available} question(s), {required} required",
            available=available,
            required=required,
        )


class PermissionDenied(ExamFlowError):
    """Raised for any failed authorization, including unknown permission codes.

    The message never says which check failed.
    """

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, code: Optional[str] = None):
        super().__init__("Not authorized")
        self.code = code


class AttemptNotFound(ExamFlowError):
    kind = ErrorKind.ATTEMPT_NOT_FOUND

    def __init__(self, attempt_id: int):
        super().__init__("Attempt not found", attempt_id=attempt_id)


class AttemptAlreadySubmitted(ExamFlowError):
    kind = ErrorKind.ATTEMPT_ALREADY_SUBMITTED

    def __init__(self, attempt_id: int):
        super().__init__("This attempt has already been submitted", attempt_id=attempt_id)


class EmptySubmission(ExamFlowError):
    kind = ErrorKind.EMPTY_SUBMISSION

    def __init__(self):
        super().__init__("No answers were submitted")


class IncompleteSubmission(ExamFlowError):
    kind = ErrorKind.INCOMPLETE_SUBMISSION

    def __init__(self, missing: list[int]):
        super().__init__(
            f"All questions must be answered ({len(missing)} unanswered)",
            missing=missing,
        )


class InvalidInput(ExamFlowError):
    """Validation failure on administrative input; ``errors`` maps field -> message."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, errors: dict[str, str]):
        super().__init__("Invalid input", errors=errors)
        self.errors = errors
