"""Quiz analytics schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel


class QuestionStat(BaseModel):
    """Per-question correctness over completed attempts."""

    question_id: str
    answered: int
    correct: int
    correct_rate: float


class ScoreDistribution(BaseModel):
    """Fully scored attempts bucketed by percentage score."""

    bucket_0_20: int = 0
    bucket_21_40: int = 0
    bucket_41_60: int = 0
    bucket_61_80: int = 0
    bucket_81_100: int = 0

    def as_labels(self) -> dict[str, int]:
        return {
            "0-20": self.bucket_0_20,
            "21-40": self.bucket_21_40,
            "41-60": self.bucket_41_60,
            "61-80": self.bucket_61_80,
            "81-100": self.bucket_81_100,
        }


class QuizAnalyticsRead(BaseModel):
    """GET /api/quizzes/{id}/analytics"""

    quiz_id: uuid.UUID
    title: str
    total_points: float
    question_count: int
    passing_score: float

    attempt_count: int
    completion_count: int
    unique_students: int
    average_score: float
    average_time_spent: float
    pass_rate: float
    pending_grading_count: int
    highest_score: float | None = None
    lowest_score: float | None = None
    score_distribution: dict[str, int]
    question_analytics: list[QuestionStat] = []
    analytics_updated_at: datetime | None = None
