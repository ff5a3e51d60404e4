"""Attempt state machine — pure core.

``apply_event(attempt, rules, event, now)`` returns a ``Transition``: the new
attempt snapshot plus the side effects the shell must run after persisting
it. Nothing here reads or writes the database.

States::

    in_progress ──Submit──▶ submitted | timed_out
                      ├───▶ submitted_pending_grading   (every question manual)
                      └───▶ partially_graded            (some questions manual)
    in_progress ──Abandon─▶ abandoned
    pending / partially_graded ──Grade (all graded)──▶ submitted

A time-barred submit always lands in ``timed_out``; grading a timed-out
attempt fills in scores but keeps the status.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Union

from quiz_engine.core.errors import AlreadySubmitted, NotFound, ValidationFailed
from quiz_engine.db.models import AttemptStatusEnum
from quiz_engine.schemas.notification import NotificationEvent, student_audience
from quiz_engine.schemas.question import AnswerPayload, Question
from quiz_engine.services.question_engine import (
    GradingPolicy,
    needs_manual_grading,
    score_answer,
)

TERMINAL_STATUSES = frozenset(
    {AttemptStatusEnum.SUBMITTED, AttemptStatusEnum.TIMED_OUT, AttemptStatusEnum.ABANDONED}
)
AWAITING_GRADING_STATUSES = frozenset(
    {AttemptStatusEnum.SUBMITTED_PENDING_GRADING, AttemptStatusEnum.PARTIALLY_GRADED}
)
GRADABLE_STATUSES = AWAITING_GRADING_STATUSES | {
    AttemptStatusEnum.SUBMITTED,
    AttemptStatusEnum.TIMED_OUT,
}


# ── Snapshots ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AnswerState:
    question_id: str
    answer: AnswerPayload
    answered_at: datetime
    is_correct: bool | None = None
    points_earned: float = 0.0
    needs_manual_grading: bool = False
    feedback: str | None = None
    graded_at: datetime | None = None
    graded_by: uuid.UUID | None = None

    @property
    def awaiting_grade(self) -> bool:
        return self.needs_manual_grading and self.graded_at is None


@dataclass(frozen=True)
class AttemptState:
    id: uuid.UUID
    quiz_id: uuid.UUID
    student_id: uuid.UUID
    status: AttemptStatusEnum
    started_at: datetime
    attempt_number: int = 1
    submitted_at: datetime | None = None
    time_spent: float = 0.0
    total_score: float = 0.0
    total_possible: float = 0.0
    percentage_score: float = 0.0
    graded_at: datetime | None = None
    graded_by: uuid.UUID | None = None
    answers: tuple[AnswerState, ...] = ()
    version: int = 0

    def answer_for(self, question_id: str) -> AnswerState | None:
        for answer in self.answers:
            if answer.question_id == question_id:
                return answer
        return None

    @property
    def awaiting_grade(self) -> tuple[AnswerState, ...]:
        return tuple(a for a in self.answers if a.awaiting_grade)


@dataclass(frozen=True)
class QuizRules:
    """The slice of a quiz definition the state machine needs."""

    quiz_id: uuid.UUID
    course_id: uuid.UUID
    questions: tuple[Question, ...]
    time_limit: int = 0
    passing_score: float = 60.0
    available_until: datetime | None = None
    policy: GradingPolicy = GradingPolicy()
    manual_correct_threshold: float = 0.6

    def question(self, question_id: str) -> Question | None:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def deadline(self, started_at: datetime) -> datetime | None:
        """Earliest of the per-attempt time limit and the window close."""
        candidates = []
        if self.time_limit > 0:
            candidates.append(started_at + timedelta(minutes=self.time_limit))
        if self.available_until is not None:
            candidates.append(self.available_until)
        return min(candidates) if candidates else None

    def is_past_deadline(self, started_at: datetime, now: datetime) -> bool:
        deadline = self.deadline(started_at)
        return deadline is not None and now >= deadline


# ── Events & effects ─────────────────────────────────────────────────────────


class SubmitOrigin(str, Enum):
    STUDENT = "student"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class RecordAnswer:
    question_id: str
    answer: AnswerPayload


@dataclass(frozen=True)
class Submit:
    origin: SubmitOrigin = SubmitOrigin.STUDENT


@dataclass(frozen=True)
class Grade:
    grader_id: uuid.UUID
    scores: Mapping[str, float]
    feedback: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Abandon:
    pass


AttemptEvent = Union[RecordAnswer, Submit, Grade, Abandon]


@dataclass(frozen=True)
class Notify:
    event: NotificationEvent
    quiz_id: uuid.UUID
    audience: str
    attempt_id: uuid.UUID | None = None


@dataclass(frozen=True)
class RecomputeAnalytics:
    quiz_id: uuid.UUID


Effect = Union[Notify, RecomputeAnalytics]


@dataclass(frozen=True)
class Transition:
    attempt: AttemptState
    effects: tuple[Effect, ...] = ()
    changed: bool = True


def _unchanged(attempt: AttemptState) -> Transition:
    return Transition(attempt=attempt, changed=False)


def _percentage(score: float, possible: float) -> float:
    return round(score / possible * 100, 2) if possible > 0 else 0.0


def _minutes_between(start: datetime, end: datetime) -> float:
    return round(max((end - start).total_seconds(), 0.0) / 60, 2)


# ── Transitions ──────────────────────────────────────────────────────────────


def _record_answer(
    attempt: AttemptState, rules: QuizRules, event: RecordAnswer, now: datetime
) -> Transition:
    if attempt.status is not AttemptStatusEnum.IN_PROGRESS:
        raise AlreadySubmitted(
            "Attempt already submitted",
            {"attempt_id": str(attempt.id), "status": attempt.status.value},
        )
    if rules.question(event.question_id) is None:
        raise NotFound(f"Question {event.question_id} not found in this quiz")

    updated = AnswerState(
        question_id=event.question_id, answer=event.answer, answered_at=now
    )
    answers = [a for a in attempt.answers if a.question_id != event.question_id]
    answers.append(updated)
    return Transition(attempt=replace(attempt, answers=tuple(answers)))


def _submit(
    attempt: AttemptState, rules: QuizRules, event: Submit, now: datetime
) -> Transition:
    if attempt.status is not AttemptStatusEnum.IN_PROGRESS:
        return _unchanged(attempt)

    time_barred = event.origin is SubmitOrigin.TIMEOUT or rules.is_past_deadline(
        attempt.started_at, now
    )

    scored: dict[str, AnswerState] = {a.question_id: a for a in attempt.answers}
    auto_score = 0.0
    auto_possible = 0.0
    for question in rules.questions:
        manual = needs_manual_grading(question, rules.policy)
        if not manual:
            auto_possible += question.points
        existing = scored.get(question.id)
        if existing is None:
            # Blank manual questions still go to the grader so the final
            # score is out of every question's points.
            if manual:
                scored[question.id] = AnswerState(
                    question_id=question.id,
                    answer=None,
                    answered_at=now,
                    is_correct=False,
                    needs_manual_grading=True,
                )
            continue
        result = score_answer(question, existing.answer, rules.policy)
        scored[question.id] = replace(
            existing,
            is_correct=result.is_correct,
            points_earned=result.points_earned,
            needs_manual_grading=result.needs_manual_grading,
        )
        if not result.needs_manual_grading:
            auto_score += result.points_earned

    answers = tuple(scored.values())
    awaiting = any(a.needs_manual_grading for a in answers)
    every_question_manual = bool(rules.questions) and all(
        needs_manual_grading(q, rules.policy) for q in rules.questions
    )

    if not awaiting:
        status = AttemptStatusEnum.SUBMITTED
    elif every_question_manual:
        status = AttemptStatusEnum.SUBMITTED_PENDING_GRADING
        auto_score = auto_possible = 0.0
    else:
        status = AttemptStatusEnum.PARTIALLY_GRADED
    if time_barred:
        status = AttemptStatusEnum.TIMED_OUT

    submitted = replace(
        attempt,
        status=status,
        submitted_at=now,
        time_spent=_minutes_between(attempt.started_at, now),
        answers=answers,
        total_score=round(auto_score, 4),
        total_possible=auto_possible,
        percentage_score=_percentage(auto_score, auto_possible),
    )

    effects: list[Effect] = [RecomputeAnalytics(attempt.quiz_id)]
    if not awaiting:
        effects.append(
            Notify(
                NotificationEvent.GRADED,
                attempt.quiz_id,
                student_audience(attempt.student_id),
                attempt.id,
            )
        )
    return Transition(attempt=submitted, effects=tuple(effects))


def _grade(
    attempt: AttemptState, rules: QuizRules, event: Grade, now: datetime
) -> Transition:
    if attempt.status not in GRADABLE_STATUSES:
        raise ValidationFailed(
            f"Attempt cannot be graded while {attempt.status.value}"
        )
    if not event.scores:
        raise ValidationFailed("No scores supplied")

    flagged = {a.question_id: a for a in attempt.answers if a.needs_manual_grading}
    errors = []
    for question_id, score in event.scores.items():
        question = rules.question(question_id)
        if question is None:
            errors.append(f"Question {question_id} is not part of this quiz")
        elif question_id not in flagged:
            errors.append(f"Question {question_id} does not need manual grading")
        elif score < 0 or score > question.points:
            errors.append(
                f"Score for question {question_id} must be between 0 and {question.points}"
            )
    if errors:
        raise ValidationFailed("Invalid grades", errors)

    graded: dict[str, AnswerState] = {a.question_id: a for a in attempt.answers}
    for question_id, score in event.scores.items():
        question = rules.question(question_id)
        graded[question_id] = replace(
            graded[question_id],
            points_earned=float(score),
            is_correct=score >= question.points * rules.manual_correct_threshold,
            feedback=event.feedback.get(question_id, graded[question_id].feedback),
            graded_at=now,
            graded_by=event.grader_id,
        )

    answers = tuple(graded.values())
    quiz_ids = {q.id for q in rules.questions}
    total_score = sum(a.points_earned for a in answers if a.question_id in quiz_ids)
    total_possible = sum(q.points for q in rules.questions)
    still_awaiting = any(a.awaiting_grade for a in answers)

    if attempt.status is AttemptStatusEnum.TIMED_OUT:
        status = AttemptStatusEnum.TIMED_OUT
    elif still_awaiting:
        status = AttemptStatusEnum.PARTIALLY_GRADED
    else:
        status = AttemptStatusEnum.SUBMITTED

    updated = replace(
        attempt,
        status=status,
        answers=answers,
        total_score=round(total_score, 4),
        total_possible=total_possible,
        percentage_score=_percentage(total_score, total_possible),
        graded_at=attempt.graded_at if still_awaiting else now,
        graded_by=attempt.graded_by if still_awaiting else event.grader_id,
    )

    effects: list[Effect] = [RecomputeAnalytics(attempt.quiz_id)]
    if not still_awaiting:
        effects.append(
            Notify(
                NotificationEvent.GRADED,
                attempt.quiz_id,
                student_audience(attempt.student_id),
                attempt.id,
            )
        )
    return Transition(attempt=updated, effects=tuple(effects))


def _abandon(
    attempt: AttemptState, rules: QuizRules, event: Abandon, now: datetime
) -> Transition:
    if attempt.status is not AttemptStatusEnum.IN_PROGRESS:
        return _unchanged(attempt)
    abandoned = replace(
        attempt,
        status=AttemptStatusEnum.ABANDONED,
        time_spent=_minutes_between(attempt.started_at, now),
    )
    return Transition(attempt=abandoned, effects=(RecomputeAnalytics(attempt.quiz_id),))


def apply_event(
    attempt: AttemptState, rules: QuizRules, event: AttemptEvent, now: datetime
) -> Transition:
    """Compute the next attempt snapshot for *event* at instant *now*."""
    if isinstance(event, RecordAnswer):
        return _record_answer(attempt, rules, event, now)
    if isinstance(event, Submit):
        return _submit(attempt, rules, event, now)
    if isinstance(event, Grade):
        return _grade(attempt, rules, event, now)
    if isinstance(event, Abandon):
        return _abandon(attempt, rules, event, now)
    raise TypeError(f"unsupported attempt event: {event!r}")

