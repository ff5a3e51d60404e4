"""Attempt routes — answer autosave, submit, grade, abandon and review."""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from quiz_engine.api.deps import get_current_user, get_now
from quiz_engine.db.models import Attempt, AttemptStatusEnum, User
from quiz_engine.db.session import get_db
from quiz_engine.schemas.attempt import (
    AnswerSubmit,
    AttemptDetailRead,
    AttemptRead,
    GradeRequest,
)
from quiz_engine.services import attempts as attempt_service
from quiz_engine.services.notifications import Notifier, get_notifier
from quiz_engine.services.rate_limiter import enforce_answer_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter()


def attempt_detail(attempt: Attempt) -> AttemptDetailRead:
    """Attempt plus its live deadline (while in progress) and pass/fail (once final)."""
    detail = AttemptDetailRead.model_validate(attempt)
    if attempt.status is AttemptStatusEnum.IN_PROGRESS:
        detail.deadline = attempt_service.rules_for(attempt.quiz).deadline(attempt.started_at)
    elif attempt.status is AttemptStatusEnum.SUBMITTED:
        detail.passed = attempt.percentage_score >= attempt.quiz.passing_score
    return detail


@router.get("/", response_model=list[AttemptRead])
def list_my_attempts(
    quiz_id: uuid.UUID | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The caller's own attempts, newest first."""
    return attempt_service.list_student_attempts(db, current_user, quiz_id)


@router.get("/{attempt_id}", response_model=AttemptDetailRead)
def get_attempt(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return attempt_detail(attempt_service.get_attempt(db, attempt_id, current_user))


@router.put("/{attempt_id}/answers", response_model=AttemptDetailRead)
def record_answer(
    attempt_id: uuid.UUID,
    body: AnswerSubmit,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
):
    """Autosave one answer. Scoring happens on submit, not here."""
    enforce_answer_rate_limit(current_user.id)
    attempt = attempt_service.record_answer(
        db, attempt_id, body.question_id, body.answer, current_user, now, notifier
    )
    return attempt_detail(attempt)


@router.post("/{attempt_id}/submit", response_model=AttemptDetailRead)
def submit_attempt(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
):
    """Submit the attempt for scoring.

    Safe to repeat: an already submitted attempt is returned as stored. A
    submit at or past the deadline comes back with status ``timed_out``.
    """
    attempt = attempt_service.submit_attempt(db, attempt_id, now, notifier, actor=current_user)
    return attempt_detail(attempt)


@router.post("/{attempt_id}/grade", response_model=AttemptDetailRead)
def grade_attempt(
    attempt_id: uuid.UUID,
    body: GradeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
):
    """Award points to answers waiting for a human grader."""
    attempt = attempt_service.grade_attempt(
        db, attempt_id, current_user, body.scores, now, notifier, feedback=body.feedback
    )
    return attempt_detail(attempt)


@router.post("/{attempt_id}/abandon", response_model=AttemptDetailRead)
def abandon_attempt(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
):
    attempt = attempt_service.abandon_attempt(db, attempt_id, current_user, now, notifier)
    return attempt_detail(attempt)
