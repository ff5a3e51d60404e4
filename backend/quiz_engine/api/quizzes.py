"""Quiz routes — definitions, schedule, publishing, availability, attempts, analytics."""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from quiz_engine.api.attempts import attempt_detail
from quiz_engine.api.deps import get_current_user, get_now, require_staff
from quiz_engine.core.errors import NotFound
from quiz_engine.db.models import AttemptStatusEnum, Quiz, User
from quiz_engine.db.session import get_db
from quiz_engine.schemas.analytics import QuizAnalyticsRead
from quiz_engine.schemas.attempt import AttemptDetailRead, AttemptRead
from quiz_engine.schemas.question import parse_questions
from quiz_engine.schemas.quiz import (
    AvailabilityRead,
    PublishRequest,
    QuizCreate,
    QuizRead,
    QuizSummary,
    QuizUpdate,
    ScheduleUpdate,
    StudentQuizRead,
)
from quiz_engine.services import attempts as attempt_service
from quiz_engine.services import quiz_store
from quiz_engine.services.access import can_manage_quiz, ensure_quiz_manager
from quiz_engine.services.analytics import get_analytics
from quiz_engine.services.availability import (
    availability_status,
    is_available,
    time_until_end,
    time_until_start,
)
from quiz_engine.services.enrollment import EnrollmentChecker, get_enrollment_checker
from quiz_engine.services.notifications import Notifier, get_notifier
from quiz_engine.services.question_engine import redact_question
from quiz_engine.services.scheduler import AvailabilityScheduler, get_scheduler

logger = logging.getLogger(__name__)
router = APIRouter()


def _student_view(quiz: Quiz) -> StudentQuizRead:
    view = StudentQuizRead.model_validate(quiz, from_attributes=True)
    view.questions = [redact_question(q) for q in parse_questions(quiz.questions)]
    return view


def _visible_quiz(
    db: Session, quiz_id: uuid.UUID, viewer: User, enrollment: EnrollmentChecker
) -> Quiz:
    """Staff see quizzes they manage; students see published quizzes of their courses."""
    quiz = quiz_store.get_quiz(db, quiz_id)
    if can_manage_quiz(viewer, quiz):
        return quiz
    if quiz.is_published and enrollment.is_enrolled(db, viewer.id, quiz.course_id):
        return quiz
    raise NotFound("Quiz not found")


# ── Definitions ───────────────────────────────────────────────────────────────


@router.post("/", response_model=QuizRead, status_code=status.HTTP_201_CREATED)
def create_quiz(
    body: QuizCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
):
    return quiz_store.create_quiz(db, body, current_user, scheduler, now)


@router.get("/", response_model=list[QuizSummary])
def list_quizzes(
    course_id: uuid.UUID | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return quiz_store.list_quizzes(db, current_user, course_id)


@router.get("/{quiz_id}", response_model=QuizRead | StudentQuizRead)
def get_quiz(
    quiz_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    enrollment: EnrollmentChecker = Depends(get_enrollment_checker),
):
    """Full definition for the quiz's managers; answer keys stripped for students."""
    quiz = _visible_quiz(db, quiz_id, current_user, enrollment)
    if can_manage_quiz(current_user, quiz):
        return QuizRead.model_validate(quiz)
    return _student_view(quiz)


@router.patch("/{quiz_id}", response_model=QuizRead)
def update_quiz(
    quiz_id: uuid.UUID,
    body: QuizUpdate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
):
    return quiz_store.update_quiz(db, quiz_id, body, current_user, scheduler, now)


@router.put("/{quiz_id}/schedule", response_model=QuizRead)
def update_schedule(
    quiz_id: uuid.UUID,
    body: ScheduleUpdate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
):
    return quiz_store.update_schedule(db, quiz_id, body, current_user, scheduler, now)


@router.post("/{quiz_id}/publish", response_model=QuizRead)
def publish_quiz(
    quiz_id: uuid.UUID,
    body: PublishRequest,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
):
    return quiz_store.set_published(db, quiz_id, body.is_published, current_user, scheduler, now)


@router.delete("/{quiz_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quiz(
    quiz_id: uuid.UUID,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
):
    quiz_store.delete_quiz(db, quiz_id, current_user, scheduler)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{quiz_id}/availability", response_model=AvailabilityRead)
def get_availability(
    quiz_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    enrollment: EnrollmentChecker = Depends(get_enrollment_checker),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
):
    """Computed from the stored schedule at request time, never from timer state."""
    quiz = _visible_quiz(db, quiz_id, current_user, enrollment)
    until_start = time_until_start(quiz, now)
    until_end = time_until_end(quiz, now)
    armed = {}
    if can_manage_quiz(current_user, quiz):
        armed = {edge.value: fire_at for edge, fire_at in scheduler.timers(db, quiz.id).items()}
    return AvailabilityRead(
        quiz_id=quiz.id,
        is_published=quiz.is_published,
        is_available=is_available(quiz, now),
        status=availability_status(quiz, now).value,
        now=now,
        available_from=quiz.available_from,
        available_until=quiz.available_until,
        due_date=quiz.due_date,
        seconds_until_start=until_start.seconds if until_start else None,
        seconds_until_end=until_end.seconds if until_end else None,
        armed_timers=armed,
    )


# ── Attempts & analytics ──────────────────────────────────────────────────────


@router.post(
    "/{quiz_id}/attempts",
    response_model=AttemptDetailRead,
    status_code=status.HTTP_201_CREATED,
)
def start_attempt(
    quiz_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    enrollment: EnrollmentChecker = Depends(get_enrollment_checker),
    notifier: Notifier = Depends(get_notifier),
):
    """Start an attempt, or resume the one already in progress."""
    attempt = attempt_service.start_attempt(db, quiz_id, current_user, now, enrollment, notifier)
    return attempt_detail(attempt)


@router.get("/{quiz_id}/attempts", response_model=list[AttemptRead])
def list_quiz_attempts(
    quiz_id: uuid.UUID,
    attempt_status: AttemptStatusEnum | None = None,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    quiz = quiz_store.get_quiz(db, quiz_id)
    return attempt_service.list_quiz_attempts(db, quiz, current_user, attempt_status)


@router.get("/{quiz_id}/analytics", response_model=QuizAnalyticsRead)
def quiz_analytics(
    quiz_id: uuid.UUID,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    quiz = quiz_store.get_quiz(db, quiz_id)
    ensure_quiz_manager(current_user, quiz)
    return get_analytics(db, quiz)
