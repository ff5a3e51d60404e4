"""Quiz definition schemas."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from quiz_engine.schemas.question import StudentQuestionView


class ShortAnswerGrading(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class QuizCreate(BaseModel):
    """POST /api/quizzes

    ``questions`` are validated by the question engine rather than by the
    request parser so every problem comes back in one ``validation_failed``
    response.
    """

    course_id: uuid.UUID
    branch_id: uuid.UUID | None = None
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    instructions: str | None = None
    questions: list[dict[str, Any]] = []
    time_limit: int = Field(0, ge=0)  # minutes, 0 = unlimited
    max_attempts: int = Field(1, ge=0)  # 0 = unlimited
    passing_score: float = Field(60.0, ge=0, le=100)
    short_answer_grading: ShortAnswerGrading = ShortAnswerGrading.AUTO
    available_from: datetime | None = None
    available_until: datetime | None = None
    due_date: datetime | None = None
    is_published: bool = False


class QuizUpdate(BaseModel):
    """PATCH /api/quizzes/{id} — only the fields sent are changed."""

    title: str | None = Field(None, min_length=1, max_length=300)
    description: str | None = None
    instructions: str | None = None
    questions: list[dict[str, Any]] | None = None
    time_limit: int | None = Field(None, ge=0)
    max_attempts: int | None = Field(None, ge=0)
    passing_score: float | None = Field(None, ge=0, le=100)
    short_answer_grading: ShortAnswerGrading | None = None


class ScheduleUpdate(BaseModel):
    """PUT /api/quizzes/{id}/schedule — an explicit ``null`` clears a bound."""

    available_from: datetime | None = None
    available_until: datetime | None = None
    due_date: datetime | None = None


class PublishRequest(BaseModel):
    is_published: bool = True


class QuizSummary(BaseModel):
    id: uuid.UUID
    course_id: uuid.UUID
    title: str
    time_limit: int
    max_attempts: int
    passing_score: float
    is_published: bool
    available_from: datetime | None = None
    available_until: datetime | None = None
    due_date: datetime | None = None
    question_count: int
    total_points: float

    model_config = {"from_attributes": True}


class QuizRead(QuizSummary):
    """Full definition, including answer keys — staff only."""

    branch_id: uuid.UUID | None = None
    description: str | None = None
    instructions: str | None = None
    questions: list[dict[str, Any]] = []
    short_answer_grading: ShortAnswerGrading
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime
    attempt_count: int = 0
    completion_count: int = 0
    average_score: float = 0.0
    pass_rate: float = 0.0


class StudentQuizRead(QuizSummary):
    """What a student sees: no answer keys."""

    description: str | None = None
    instructions: str | None = None
    questions: list[StudentQuestionView] = []


class AvailabilityRead(BaseModel):
    """GET /api/quizzes/{id}/availability"""

    quiz_id: uuid.UUID
    is_published: bool
    is_available: bool
    status: str
    now: datetime
    available_from: datetime | None = None
    available_until: datetime | None = None
    due_date: datetime | None = None
    seconds_until_start: float | None = None
    seconds_until_end: float | None = None
    armed_timers: dict[str, datetime] = {}
