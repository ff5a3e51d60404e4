"""Attempt service — the shell around the pure attempt state machine.

Every mutation is read → ``apply_event`` → conditional write → effects:

1. Load the attempt row and snapshot it (``AttemptState``).
2. Compute the transition with ``attempt_machine.apply_event``.
3. Write it with ``UPDATE … WHERE id = ? AND status = ? AND version = ?``.
   Zero rows updated means someone else transitioned the attempt first
   (student submit vs. scheduler timeout); re-read and re-apply, which for a
   Submit against a terminal attempt is a no-op.
4. Run the effects (analytics recompute, notifications) only after commit.
"""

import logging
import uuid
from datetime import datetime
from typing import Mapping

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from quiz_engine.config import settings
from quiz_engine.core.errors import (
    AlreadySubmitted,
    AttemptLimitReached,
    ConcurrentModification,
    Forbidden,
    NotAvailable,
    NotEligible,
    NotFound,
)
from quiz_engine.db.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatusEnum,
    Quiz,
    RoleEnum,
    ShortAnswerGradingEnum,
    User,
)
from quiz_engine.schemas.question import AnswerPayload, parse_questions
from quiz_engine.services.access import (
    can_manage_quiz,
    ensure_attempt_owner,
    ensure_can_view_attempt,
    ensure_quiz_manager,
)
from quiz_engine.services.analytics import recompute_quiz_analytics
from quiz_engine.services.attempt_machine import (
    Abandon,
    AnswerState,
    AttemptEvent,
    AttemptState,
    Effect,
    Grade,
    Notify,
    QuizRules,
    RecomputeAnalytics,
    RecordAnswer,
    Submit,
    SubmitOrigin,
    Transition,
    apply_event,
)
from quiz_engine.services.availability import (
    AvailabilityStatus,
    accepts_new_attempts,
    availability_status,
    is_available,
)
from quiz_engine.services.enrollment import EnrollmentChecker
from quiz_engine.services.notifications import Notifier
from quiz_engine.services.question_engine import GradingPolicy

logger = logging.getLogger(__name__)

_MAX_WRITE_ATTEMPTS = 3


# ── Snapshots ────────────────────────────────────────────────────────────────


def rules_for(quiz: Quiz) -> QuizRules:
    return QuizRules(
        quiz_id=quiz.id,
        course_id=quiz.course_id,
        questions=tuple(parse_questions(quiz.questions)),
        time_limit=quiz.time_limit or 0,
        passing_score=quiz.passing_score,
        available_until=quiz.available_until,
        policy=GradingPolicy(
            manual_short_answer=quiz.short_answer_grading is ShortAnswerGradingEnum.MANUAL
        ),
        manual_correct_threshold=settings.MANUAL_CORRECT_THRESHOLD,
    )


def snapshot(row: Attempt) -> AttemptState:
    """Immutable copy of an attempt row and its answers."""
    return AttemptState(
        id=row.id,
        quiz_id=row.quiz_id,
        student_id=row.student_id,
        status=row.status,
        started_at=row.started_at,
        attempt_number=row.attempt_number,
        submitted_at=row.submitted_at,
        time_spent=row.time_spent or 0.0,
        total_score=row.total_score or 0.0,
        total_possible=row.total_possible or 0.0,
        percentage_score=row.percentage_score or 0.0,
        graded_at=row.graded_at,
        graded_by=row.graded_by,
        answers=tuple(
            AnswerState(
                question_id=a.question_id,
                answer=a.answer,
                answered_at=a.answered_at,
                is_correct=a.is_correct,
                points_earned=a.points_earned or 0.0,
                needs_manual_grading=bool(a.needs_manual_grading),
                feedback=a.feedback,
                graded_at=a.graded_at,
                graded_by=a.graded_by,
            )
            for a in row.answers
        ),
        version=row.version,
    )


def _load(db: Session, attempt_id: uuid.UUID) -> Attempt:
    row = (
        db.query(Attempt)
        .options(selectinload(Attempt.answers), selectinload(Attempt.quiz))
        .populate_existing()
        .filter(Attempt.id == attempt_id)
        .first()
    )
    if row is None:
        raise NotFound("Attempt not found")
    return row


# ── Conditional write ────────────────────────────────────────────────────────


def save_transition(db: Session, before: AttemptState, after: AttemptState) -> bool:
    """Persist *after* only if the stored attempt still matches *before*.

    Returns False (and rolls back) when another writer got there first.
    """
    try:
        result = db.execute(
            update(Attempt)
            .where(
                Attempt.id == before.id,
                Attempt.status == before.status,
                Attempt.version == before.version,
            )
            .values(
                status=after.status,
                submitted_at=after.submitted_at,
                time_spent=after.time_spent,
                total_score=after.total_score,
                total_possible=after.total_possible,
                percentage_score=after.percentage_score,
                graded_at=after.graded_at,
                graded_by=after.graded_by,
                version=before.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return False

        stored = {
            row.question_id: row
            for row in db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == before.id)
        }
        for answer in after.answers:
            row = stored.get(answer.question_id)
            if row is None:
                row = AttemptAnswer(attempt_id=before.id, question_id=answer.question_id)
                db.add(row)
            row.answer = answer.answer
            row.answered_at = answer.answered_at
            row.is_correct = answer.is_correct
            row.points_earned = answer.points_earned
            row.needs_manual_grading = answer.needs_manual_grading
            row.feedback = answer.feedback
            row.graded_at = answer.graded_at
            row.graded_by = answer.graded_by
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return True


def _run_effects(
    db: Session, effects: tuple[Effect, ...], now: datetime, notifier: Notifier
) -> None:
    for effect in effects:
        if isinstance(effect, RecomputeAnalytics):
            try:
                recompute_quiz_analytics(db, effect.quiz_id, now)
            except SQLAlchemyError:
                # The transition is already committed; the next one recomputes.
                logger.exception("Analytics recompute failed for quiz %s", effect.quiz_id)
                db.rollback()
        elif isinstance(effect, Notify):
            notifier.notify(effect.event, effect.quiz_id, effect.audience, effect.attempt_id)


def apply_to_attempt(
    db: Session,
    attempt_id: uuid.UUID,
    event: AttemptEvent,
    now: datetime,
    notifier: Notifier,
) -> tuple[Attempt, Transition]:
    """Apply *event* to the stored attempt, retrying when a concurrent writer wins."""
    for _ in range(_MAX_WRITE_ATTEMPTS):
        row = _load(db, attempt_id)
        before = snapshot(row)
        transition = apply_event(before, rules_for(row.quiz), event, now)
        if not transition.changed:
            return row, transition
        if save_transition(db, before, transition.attempt):
            _run_effects(db, transition.effects, now, notifier)
            logger.info(
                "Attempt %s: %s → %s (%s)",
                attempt_id, before.status.value,
                transition.attempt.status.value, type(event).__name__,
            )
            return _load(db, attempt_id), transition
        logger.info(
            "Attempt %s changed concurrently during %s; re-reading",
            attempt_id, type(event).__name__,
        )
    raise ConcurrentModification(
        "Attempt is being modified concurrently, please retry",
        {"attempt_id": str(attempt_id)},
    )


def _force_timeout_if_overdue(
    db: Session, row: Attempt, now: datetime, notifier: Notifier
) -> bool:
    """Submit an ``in_progress`` attempt whose deadline passed. True when it did."""
    if row.status is not AttemptStatusEnum.IN_PROGRESS:
        return False
    if not rules_for(row.quiz).is_past_deadline(row.started_at, now):
        return False
    apply_to_attempt(db, row.id, Submit(SubmitOrigin.TIMEOUT), now, notifier)
    return True


# ── Operations ───────────────────────────────────────────────────────────────


def start_attempt(
    db: Session,
    quiz_id: uuid.UUID,
    student: User,
    now: datetime,
    enrollment: EnrollmentChecker,
    notifier: Notifier,
) -> Attempt:
    """Start (or resume) the student's attempt at a quiz.

    Raises:
        NotFound: quiz does not exist.
        Forbidden: caller is not a student.
        NotAvailable: unpublished or outside the availability window.
        NotEligible: student is not enrolled in the quiz's course.
        AttemptLimitReached: every allowed try has been submitted.
    """
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")
    if student.role is not RoleEnum.STUDENT:
        raise Forbidden("Only students can take quizzes")
    if not accepts_new_attempts(quiz, now):
        status = (
            AvailabilityStatus.NO_LONGER_AVAILABLE
            if is_available(quiz, now)
            else availability_status(quiz, now)
        )
        raise NotAvailable("Quiz is not currently available", {"status": status.value})
    if not enrollment.is_enrolled(db, student.id, quiz.course_id):
        raise NotEligible("You must be enrolled in this course to take this quiz")

    current = (
        db.query(Attempt)
        .filter(
            Attempt.quiz_id == quiz.id,
            Attempt.student_id == student.id,
            Attempt.status == AttemptStatusEnum.IN_PROGRESS,
        )
        .order_by(Attempt.started_at.desc())
        .first()
    )
    if current is not None and not _force_timeout_if_overdue(db, current, now, notifier):
        logger.info("Resuming attempt %s for student %s", current.id, student.id)
        return current

    submitted = (
        db.query(func.count(Attempt.id))
        .filter(
            Attempt.quiz_id == quiz.id,
            Attempt.student_id == student.id,
            Attempt.submitted_at.isnot(None),
        )
        .scalar()
    )
    if quiz.max_attempts > 0 and submitted >= quiz.max_attempts:
        raise AttemptLimitReached(
            f"Maximum attempts ({quiz.max_attempts}) reached for this quiz",
            {"max_attempts": quiz.max_attempts, "submitted": submitted},
        )

    attempt = Attempt(
        quiz_id=quiz.id,
        student_id=student.id,
        status=AttemptStatusEnum.IN_PROGRESS,
        attempt_number=submitted + 1,
        started_at=now,
        version=0,
    )
    db.add(attempt)
    db.commit()
    db.refresh(attempt)
    logger.info(
        "Student %s started attempt #%d (%s) on quiz %s",
        student.id, attempt.attempt_number, attempt.id, quiz.id,
    )
    _run_effects(db, (RecomputeAnalytics(quiz.id),), now, notifier)
    return _load(db, attempt.id)


def record_answer(
    db: Session,
    attempt_id: uuid.UUID,
    question_id: str,
    answer: AnswerPayload,
    student: User,
    now: datetime,
    notifier: Notifier,
) -> Attempt:
    """Upsert one answer on the student's in-progress attempt."""
    row = _load(db, attempt_id)
    ensure_attempt_owner(student, row)
    if _force_timeout_if_overdue(db, row, now, notifier):
        raise AlreadySubmitted(
            "Time is up; the attempt was submitted",
            {"attempt_id": str(attempt_id), "status": AttemptStatusEnum.TIMED_OUT.value},
        )
    attempt, _ = apply_to_attempt(db, attempt_id, RecordAnswer(question_id, answer), now, notifier)
    return attempt


def submit_attempt(
    db: Session,
    attempt_id: uuid.UUID,
    now: datetime,
    notifier: Notifier,
    actor: User | None = None,
    origin: SubmitOrigin = SubmitOrigin.STUDENT,
) -> Attempt:
    """Submit an attempt. Idempotent: a second call returns the stored result.

    A student submit that lands on or after the deadline is recorded as
    ``timed_out``; it is not an error.
    """
    if actor is not None:
        ensure_attempt_owner(actor, _load(db, attempt_id))
    attempt, _ = apply_to_attempt(db, attempt_id, Submit(origin), now, notifier)
    return attempt


def grade_attempt(
    db: Session,
    attempt_id: uuid.UUID,
    grader: User,
    scores: Mapping[str, float],
    now: datetime,
    notifier: Notifier,
    feedback: Mapping[str, str] | None = None,
) -> Attempt:
    """Record manual scores for flagged answers and recompute totals."""
    row = _load(db, attempt_id)
    ensure_quiz_manager(grader, row.quiz)
    attempt, _ = apply_to_attempt(
        db, attempt_id, Grade(grader.id, dict(scores), dict(feedback or {})), now, notifier
    )
    return attempt


def abandon_attempt(
    db: Session, attempt_id: uuid.UUID, actor: User, now: datetime, notifier: Notifier
) -> Attempt:
    row = _load(db, attempt_id)
    if row.student_id != actor.id and not can_manage_quiz(actor, row.quiz):
        raise Forbidden("Not authorized to abandon this attempt")
    attempt, _ = apply_to_attempt(db, attempt_id, Abandon(), now, notifier)
    return attempt


def get_attempt(db: Session, attempt_id: uuid.UUID, viewer: User) -> Attempt:
    row = _load(db, attempt_id)
    ensure_can_view_attempt(viewer, row)
    return row


def list_student_attempts(
    db: Session, student: User, quiz_id: uuid.UUID | None = None
) -> list[Attempt]:
    query = db.query(Attempt).filter(Attempt.student_id == student.id)
    if quiz_id is not None:
        query = query.filter(Attempt.quiz_id == quiz_id)
    return query.order_by(Attempt.started_at.desc()).all()


def list_quiz_attempts(
    db: Session,
    quiz: Quiz,
    viewer: User,
    status: AttemptStatusEnum | None = None,
) -> list[Attempt]:
    ensure_quiz_manager(viewer, quiz)
    query = db.query(Attempt).filter(Attempt.quiz_id == quiz.id)
    if status is not None:
        query = query.filter(Attempt.status == status)
    return query.order_by(Attempt.started_at.desc()).all()


# ── Scheduler hooks ──────────────────────────────────────────────────────────


def close_quiz_attempts(
    db: Session, quiz_id: uuid.UUID, now: datetime, notifier: Notifier
) -> list[tuple[uuid.UUID, str]]:
    """Force every in-progress attempt of a quiz through a timeout submit.

    One failing attempt never stops the rest; failures are returned as
    ``(attempt_id, error)`` pairs for the caller to record and retry.
    """
    ids = [
        attempt_id
        for (attempt_id,) in db.query(Attempt.id).filter(
            Attempt.quiz_id == quiz_id,
            Attempt.status == AttemptStatusEnum.IN_PROGRESS,
        )
    ]
    failures = []
    for attempt_id in ids:
        try:
            apply_to_attempt(db, attempt_id, Submit(SubmitOrigin.TIMEOUT), now, notifier)
        except Exception as exc:
            logger.exception("Could not auto-submit attempt %s of quiz %s", attempt_id, quiz_id)
            db.rollback()
            failures.append((attempt_id, str(exc)))
    if ids:
        logger.info(
            "Closed quiz %s: %d attempt(s) auto-submitted, %d failed",
            quiz_id, len(ids) - len(failures), len(failures),
        )
    return failures


def expire_overdue_attempts(db: Session, now: datetime, notifier: Notifier) -> int:
    """Time out in-progress attempts whose per-attempt deadline has passed."""
    rows = (
        db.query(Attempt)
        .join(Quiz, Attempt.quiz_id == Quiz.id)
        .filter(
            Attempt.status == AttemptStatusEnum.IN_PROGRESS,
            (Quiz.time_limit > 0) | Quiz.available_until.isnot(None),
        )
        .all()
    )
    expired = 0
    for row in rows:
        try:
            if _force_timeout_if_overdue(db, row, now, notifier):
                expired += 1
        except Exception:
            logger.exception("Could not expire attempt %s", row.id)
            db.rollback()
    if expired:
        logger.info("Expired %d overdue attempt(s)", expired)
    return expired
