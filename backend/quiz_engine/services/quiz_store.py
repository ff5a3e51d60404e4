"""Quiz definition store — create, edit, schedule, publish and delete quizzes.

Rules enforced here:
  - questions are validated by the question engine at save time; every
    problem is reported at once, nothing is coerced
  - ``available_from < available_until`` when both are set
  - questions, passing score and time limit freeze once any attempt exists
  - a quiz cannot be published without questions
  - a quiz with attempts cannot be deleted
Every schedule or publish change re-arms the scheduler from the new values.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from quiz_engine.core.errors import (
    Forbidden,
    NotFound,
    QuizLocked,
    SchedulingConflict,
    ValidationFailed,
)
from quiz_engine.db.models import (
    Attempt,
    Enrollment,
    EnrollmentStatusEnum,
    Quiz,
    RoleEnum,
    ShortAnswerGradingEnum,
    User,
)
from quiz_engine.schemas.question import Question, dump_questions, parse_questions
from quiz_engine.schemas.quiz import QuizCreate, QuizUpdate, ScheduleUpdate
from quiz_engine.services.access import ensure_quiz_manager, is_staff
from quiz_engine.services.question_engine import validate_questions
from quiz_engine.services.scheduler import AvailabilityScheduler

logger = logging.getLogger(__name__)

# Frozen once students have attempted the quiz, so scores stay comparable
LOCKED_FIELDS = ("questions", "passing_score", "time_limit", "short_answer_grading")
SCHEDULE_FIELDS = ("available_from", "available_until", "due_date")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _load_questions(raw: list[dict[str, Any]]) -> list[Question]:
    """Parse and validate a question list, or raise ValidationFailed with every problem."""
    try:
        questions = parse_questions(raw)
    except ValidationError as exc:
        errors = []
        for err in exc.errors():
            position, *path = err["loc"]
            where = ".".join(str(p) for p in path)
            prefix = f"Question {position + 1}" if isinstance(position, int) else "Questions"
            errors.append(f"{prefix}: {where + ': ' if where else ''}{err['msg']}")
        raise ValidationFailed("Invalid questions", errors) from exc

    errors = validate_questions(questions)
    if errors:
        raise ValidationFailed("Invalid questions", errors)
    return questions


def _check_window(available_from: datetime | None, available_until: datetime | None) -> None:
    if available_from is not None and available_until is not None and available_from >= available_until:
        raise SchedulingConflict(
            "available_from must be before available_until",
            {
                "available_from": available_from.isoformat(),
                "available_until": available_until.isoformat(),
            },
        )


def has_attempts(db: Session, quiz_id: uuid.UUID) -> bool:
    return db.query(Attempt.id).filter(Attempt.quiz_id == quiz_id).first() is not None


# ── Reads ─────────────────────────────────────────────────────────────────────


def get_quiz(db: Session, quiz_id: uuid.UUID) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")
    return quiz


def list_quizzes(db: Session, viewer: User, course_id: uuid.UUID | None = None) -> list[Quiz]:
    """Staff see the quizzes they manage; students see published quizzes of their courses."""
    query = db.query(Quiz)
    if viewer.role is RoleEnum.INSTRUCTOR:
        query = query.filter(Quiz.created_by == viewer.id)
    elif viewer.role is RoleEnum.STUDENT:
        query = query.join(Enrollment, Enrollment.course_id == Quiz.course_id).filter(
            Enrollment.student_id == viewer.id,
            Enrollment.status != EnrollmentStatusEnum.DROPPED,
            Quiz.is_published.is_(True),
        )
    if course_id is not None:
        query = query.filter(Quiz.course_id == course_id)
    return query.order_by(Quiz.created_at.desc()).all()


# ── Writes ────────────────────────────────────────────────────────────────────


def create_quiz(
    db: Session,
    body: QuizCreate,
    creator: User,
    scheduler: AvailabilityScheduler,
    now: datetime,
) -> Quiz:
    if not is_staff(creator):
        raise Forbidden("Only instructors can create quizzes")

    questions = _load_questions(body.questions)
    available_from = _as_utc(body.available_from)
    available_until = _as_utc(body.available_until)
    _check_window(available_from, available_until)
    if body.is_published and not questions:
        raise ValidationFailed("Cannot publish a quiz with no questions")

    quiz = Quiz(
        course_id=body.course_id,
        branch_id=body.branch_id,
        title=body.title,
        description=body.description,
        instructions=body.instructions,
        questions=dump_questions(questions),
        time_limit=body.time_limit,
        max_attempts=body.max_attempts,
        passing_score=body.passing_score,
        short_answer_grading=ShortAnswerGradingEnum(body.short_answer_grading.value),
        available_from=available_from,
        available_until=available_until,
        due_date=_as_utc(body.due_date),
        is_published=body.is_published,
        created_by=creator.id,
    )
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    logger.info("Quiz %s created by %s (%d questions)", quiz.id, creator.id, len(questions))

    scheduler.arm(db, quiz, now)
    return quiz


def update_quiz(
    db: Session,
    quiz_id: uuid.UUID,
    body: QuizUpdate,
    actor: User,
    scheduler: AvailabilityScheduler,
    now: datetime,
) -> Quiz:
    """Apply a partial update.

    Raises:
        QuizLocked: questions, passing score or time limit would change on a
            quiz that already has attempts.
        ValidationFailed: the new questions are invalid, or the quiz is
            published and the update would leave it without questions.
    """
    quiz = get_quiz(db, quiz_id)
    ensure_quiz_manager(actor, quiz)
    changes = body.model_dump(exclude_unset=True)

    if changes.get("questions") is not None:
        changes["questions"] = dump_questions(_load_questions(changes["questions"]))
    else:
        changes.pop("questions", None)
    if changes.get("short_answer_grading") is not None:
        changes["short_answer_grading"] = ShortAnswerGradingEnum(changes["short_answer_grading"].value)

    locked = [
        f for f in LOCKED_FIELDS
        if changes.get(f) is not None and changes[f] != getattr(quiz, f)
    ]
    if locked and has_attempts(db, quiz.id):
        raise QuizLocked(
            "Cannot modify questions or grading rules after students have attempted this quiz",
            {"fields": locked},
        )
    if quiz.is_published and "questions" in changes and not changes["questions"]:
        raise ValidationFailed("Cannot remove every question from a published quiz")

    for field, value in changes.items():
        if value is not None:
            setattr(quiz, field, value)
    db.commit()
    db.refresh(quiz)
    logger.info("Quiz %s updated by %s: %s", quiz.id, actor.id, ", ".join(changes) or "nothing")
    return quiz


def update_schedule(
    db: Session,
    quiz_id: uuid.UUID,
    body: ScheduleUpdate,
    actor: User,
    scheduler: AvailabilityScheduler,
    now: datetime,
) -> Quiz:
    """Change the availability window and re-arm its timers from the new values."""
    quiz = get_quiz(db, quiz_id)
    ensure_quiz_manager(actor, quiz)
    changes = {k: _as_utc(v) for k, v in body.model_dump(exclude_unset=True).items()}

    merged = {field: changes.get(field, getattr(quiz, field)) for field in SCHEDULE_FIELDS}
    _check_window(merged["available_from"], merged["available_until"])

    for field, value in changes.items():
        setattr(quiz, field, value)
    db.commit()
    db.refresh(quiz)
    logger.info(
        "Quiz %s schedule → from=%s until=%s due=%s",
        quiz.id, quiz.available_from, quiz.available_until, quiz.due_date,
    )
    scheduler.arm(db, quiz, now)
    return quiz


def set_published(
    db: Session,
    quiz_id: uuid.UUID,
    publish: bool,
    actor: User,
    scheduler: AvailabilityScheduler,
    now: datetime,
) -> Quiz:
    quiz = get_quiz(db, quiz_id)
    ensure_quiz_manager(actor, quiz)
    if publish and not quiz.questions:
        raise ValidationFailed("Cannot publish a quiz with no questions")

    quiz.is_published = publish
    db.commit()
    db.refresh(quiz)
    logger.info("Quiz %s %s by %s", quiz.id, "published" if publish else "unpublished", actor.id)
    # Unpublished quizzes have no future edges, so this also clears their timers
    scheduler.arm(db, quiz, now)
    return quiz


def delete_quiz(
    db: Session,
    quiz_id: uuid.UUID,
    actor: User,
    scheduler: AvailabilityScheduler,
) -> None:
    quiz = get_quiz(db, quiz_id)
    ensure_quiz_manager(actor, quiz)
    if has_attempts(db, quiz.id):
        raise QuizLocked("Cannot delete a quiz that has attempts", {"quiz_id": str(quiz.id)})

    scheduler.cancel(db, quiz.id)
    db.delete(quiz)
    db.commit()
    logger.info("Quiz %s deleted by %s", quiz_id, actor.id)
