"""Domain error taxonomy.

Services raise these; ``quiz_engine.main`` renders them with the shared
``ErrorResponse`` envelope so callers get a stable ``error_code`` plus a
human readable message.
"""

from typing import Any


class QuizEngineError(Exception):
    """Base class for every error surfaced to API callers."""

    status_code: int = 400
    error_code: str = "quiz_engine_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailed(QuizEngineError):
    """Bad quiz / question / grading payload. Rejected, never silently fixed."""

    status_code = 422
    error_code = "validation_failed"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, {"errors": errors} if errors else None)
        self.errors = errors or []


class QuizLocked(QuizEngineError):
    """Quiz content is frozen because students already attempted it."""

    status_code = 409
    error_code = "quiz_locked"


class NotFound(QuizEngineError):
    status_code = 404
    error_code = "not_found"


class Forbidden(QuizEngineError):
    status_code = 403
    error_code = "forbidden"


class NotEligible(Forbidden):
    """Student is not enrolled in the quiz's course."""

    error_code = "not_eligible"


class NotAvailable(QuizEngineError):
    """Quiz unpublished or outside its availability window."""

    status_code = 403
    error_code = "not_available"


class AttemptLimitReached(QuizEngineError):
    status_code = 403
    error_code = "attempt_limit_reached"


class AlreadySubmitted(QuizEngineError):
    """Attempt left ``in_progress``; the requested mutation is a no-op."""

    status_code = 409
    error_code = "already_submitted"


class SchedulingConflict(QuizEngineError):
    """``available_from`` must be strictly before ``available_until``."""

    status_code = 400
    error_code = "scheduling_conflict"


class ConcurrentModification(QuizEngineError):
    """The attempt kept changing underneath us; the caller may retry."""

    status_code = 409
    error_code = "concurrent_modification"
