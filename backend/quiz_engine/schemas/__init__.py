"""Pydantic schemas — re‑exported for convenience."""

from quiz_engine.schemas.common import ErrorResponse, SuccessResponse  # noqa: F401
from quiz_engine.schemas.user import (  # noqa: F401
    AuthResponse,
    EnrollmentCreate,
    EnrollmentRead,
    UserCreate,
    UserLogin,
    UserRead,
)
from quiz_engine.schemas.question import (  # noqa: F401
    Question,
    QuestionType,
    StudentQuestionView,
)
from quiz_engine.schemas.quiz import (  # noqa: F401
    AvailabilityRead,
    PublishRequest,
    QuizCreate,
    QuizRead,
    QuizSummary,
    QuizUpdate,
    ScheduleUpdate,
    StudentQuizRead,
)
from quiz_engine.schemas.attempt import (  # noqa: F401
    AnswerSubmit,
    AttemptDetailRead,
    AttemptRead,
    GradeRequest,
)
from quiz_engine.schemas.analytics import QuizAnalyticsRead  # noqa: F401
from quiz_engine.schemas.notification import NotificationEvent, NotificationPayload  # noqa: F401
