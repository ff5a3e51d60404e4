"""SQLAlchemy ORM models for the quiz engine.

Tables
------
- users                – students, instructors and admins
- enrollments          – student ↔ course eligibility
- quizzes              – quiz definitions (questions embedded as JSON) + analytics
- quiz_schedule_timers – persisted next-fire instant per quiz / edge
- attempts             – one student's try at a quiz
- attempt_answers      – per‑question answers in an attempt
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quiz_engine.db.session import Base, UTCDateTime


# ── helpers ───────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum *values* (``in_progress``), not member names."""
    return [member.value for member in enum_cls]


# ── Enums (stored as VARCHAR via SQLAlchemy Enum) ─────────────────────────────


class RoleEnum(str, enum.Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class EnrollmentStatusEnum(str, enum.Enum):
    ACTIVE = "active"
    APPROVED = "approved"
    COMPLETED = "completed"
    DROPPED = "dropped"


class AttemptStatusEnum(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"
    SUBMITTED_PENDING_GRADING = "submitted_pending_grading"
    PARTIALLY_GRADED = "partially_graded"


class ShortAnswerGradingEnum(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class TimerEdgeEnum(str, enum.Enum):
    START = "start"
    END = "end"


# ── Users ─────────────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(
        Enum(RoleEnum, name="role_enum", values_callable=_enum_values),
        default=RoleEnum.STUDENT,
    )
    branch_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow
    )

    attempts: Mapped[list["Attempt"]] = relationship(back_populates="student")
    enrollments: Mapped[list["Enrollment"]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )


# ── Enrollments (student ↔ course) ───────────────────────────────────────────


class Enrollment(Base):
    """Course eligibility as reported by the enrollment subsystem."""

    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    status: Mapped[EnrollmentStatusEnum] = mapped_column(
        Enum(
            EnrollmentStatusEnum,
            name="enrollment_status_enum",
            values_callable=_enum_values,
        ),
        default=EnrollmentStatusEnum.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    student: Mapped["User"] = relationship(back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_student_course"),
    )


# ── Quizzes ───────────────────────────────────────────────────────────────────


class Quiz(Base):
    __tablename__ = "quizzes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    branch_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Embedded question variants, see quiz_engine.schemas.question
    questions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    time_limit: Mapped[int] = mapped_column(Integer, default=0)  # minutes, 0 = unlimited
    max_attempts: Mapped[int] = mapped_column("attempts", Integer, default=1)  # 0 = unlimited
    passing_score: Mapped[float] = mapped_column(Float, default=60.0)
    short_answer_grading: Mapped[ShortAnswerGradingEnum] = mapped_column(
        Enum(
            ShortAnswerGradingEnum,
            name="short_answer_grading_enum",
            values_callable=_enum_values,
        ),
        default=ShortAnswerGradingEnum.AUTO,
    )
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    available_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    available_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow
    )

    # ── analytics (recomputed by re-aggregation, never incremented) ──────
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    completion_count: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[float] = mapped_column(Float, default=0.0)
    average_time_spent: Mapped[float] = mapped_column(Float, default=0.0)  # minutes
    pass_rate: Mapped[float] = mapped_column(Float, default=0.0)
    pending_grading_count: Mapped[int] = mapped_column(Integer, default=0)
    question_analytics: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    analytics_updated_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    creator: Mapped["User"] = relationship("User")
    attempts: Mapped[list["Attempt"]] = relationship(back_populates="quiz")
    timers: Mapped[list["QuizScheduleTimer"]] = relationship(
        back_populates="quiz", cascade="all, delete-orphan"
    )

    @property
    def total_points(self) -> float:
        return sum(float(q.get("points", 1)) for q in self.questions or [])

    @property
    def question_count(self) -> int:
        return len(self.questions or [])


class QuizScheduleTimer(Base):
    """Persisted one-shot timer: the next instant a quiz edge must fire."""

    __tablename__ = "quiz_schedule_timers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    quiz_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quizzes.id")
    )
    edge: Mapped[TimerEdgeEnum] = mapped_column(
        Enum(TimerEdgeEnum, name="timer_edge_enum", values_callable=_enum_values)
    )
    fire_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    quiz: Mapped["Quiz"] = relationship(back_populates="timers")

    __table_args__ = (UniqueConstraint("quiz_id", "edge", name="uq_quiz_timer_edge"),)


# ── Attempts ──────────────────────────────────────────────────────────────────


class Attempt(Base):
    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    quiz_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quizzes.id"), index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True
    )
    status: Mapped[AttemptStatusEnum] = mapped_column(
        Enum(
            AttemptStatusEnum,
            name="attempt_status_enum",
            values_callable=_enum_values,
        ),
        default=AttemptStatusEnum.IN_PROGRESS,
        index=True,
    )
    attempt_number: Mapped[int] = mapped_column("attempt", Integer, default=1)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    time_spent: Mapped[float] = mapped_column(Float, default=0.0)  # minutes
    total_score: Mapped[float] = mapped_column(Float, default=0.0)
    total_possible: Mapped[float] = mapped_column(Float, default=0.0)
    percentage_score: Mapped[float] = mapped_column(Float, default=0.0)
    graded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    graded_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    # Bumped on every transition; guards conditional writes
    version: Mapped[int] = mapped_column(Integer, default=0)

    student: Mapped["User"] = relationship(back_populates="attempts")
    quiz: Mapped["Quiz"] = relationship(back_populates="attempts")
    answers: Mapped[list["AttemptAnswer"]] = relationship(
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="AttemptAnswer.answered_at",
    )


class AttemptAnswer(Base):
    """Individual answer within an attempt."""

    __tablename__ = "attempt_answers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id"), index=True
    )
    question_id: Mapped[str] = mapped_column(String(64))
    answer: Mapped[Any] = mapped_column(JSON, nullable=True)
    answered_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    points_earned: Mapped[float] = mapped_column(Float, default=0.0)
    needs_manual_grading: Mapped[bool] = mapped_column(Boolean, default=False)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    graded_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )

    attempt: Mapped["Attempt"] = relationship(back_populates="answers")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),
    )
