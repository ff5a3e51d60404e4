"""Attempt schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from quiz_engine.schemas.question import AnswerPayload


class AnswerSubmit(BaseModel):
    """PUT /api/attempts/{id}/answers — autosave one answer.

    ``answer`` is a string (choice / short answer / essay), an ordered list
    (fill in the blank) or a left → right map (matching).
    """

    question_id: str = Field(min_length=1, max_length=64)
    answer: AnswerPayload = None


class GradeRequest(BaseModel):
    """POST /api/attempts/{id}/grade"""

    scores: dict[str, float]  # {question_id: points awarded}
    feedback: dict[str, str] = {}


class AttemptAnswerRead(BaseModel):
    question_id: str
    answer: Any = None
    answered_at: datetime
    is_correct: bool | None = None
    points_earned: float = 0.0
    needs_manual_grading: bool = False
    feedback: str | None = None
    graded_at: datetime | None = None

    model_config = {"from_attributes": True}


class AttemptRead(BaseModel):
    """Attempt summary; ``attempt_number`` counts only submitted tries."""

    id: uuid.UUID
    quiz_id: uuid.UUID
    student_id: uuid.UUID
    status: str
    attempt_number: int
    started_at: datetime
    submitted_at: datetime | None = None
    time_spent: float = 0.0
    total_score: float = 0.0
    total_possible: float = 0.0
    percentage_score: float = 0.0
    graded_at: datetime | None = None
    graded_by: uuid.UUID | None = None

    model_config = {"from_attributes": True}


class AttemptDetailRead(AttemptRead):
    """Attempt with its answers (and, once submitted, per-answer scoring)."""

    deadline: datetime | None = None
    passed: bool | None = None
    answers: list[AttemptAnswerRead] = []
