"""Grading aggregator — quiz-level analytics by re-aggregation.

Every terminal or partially-terminal transition re-reads all attempts of the
quiz and overwrites the stored figures. Nothing is incremented, so two
transitions finishing at the same time cannot make the counters drift; the
last recompute simply wins with a consistent view.

Denominators:
  - averages: fully scored attempts (``submitted``, or ``timed_out`` with no
    answer still waiting for a grader)
  - pass rate: ``submitted`` attempts only
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session, selectinload

from quiz_engine.core.clock import get_clock
from quiz_engine.core.errors import NotFound
from quiz_engine.db.models import Attempt, AttemptStatusEnum, Quiz
from quiz_engine.schemas.analytics import QuestionStat, QuizAnalyticsRead, ScoreDistribution

logger = logging.getLogger(__name__)

_AWAITING = (
    AttemptStatusEnum.SUBMITTED_PENDING_GRADING,
    AttemptStatusEnum.PARTIALLY_GRADED,
)


def _has_ungraded_answers(attempt: Attempt) -> bool:
    return any(a.needs_manual_grading and a.graded_at is None for a in attempt.answers)


def is_fully_scored(attempt: Attempt) -> bool:
    if attempt.status is AttemptStatusEnum.SUBMITTED:
        return True
    return attempt.status is AttemptStatusEnum.TIMED_OUT and not _has_ungraded_answers(attempt)


def is_pending_grading(attempt: Attempt) -> bool:
    if attempt.status in _AWAITING:
        return True
    return attempt.status is AttemptStatusEnum.TIMED_OUT and _has_ungraded_answers(attempt)


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def _load_attempts(db: Session, quiz_id: uuid.UUID) -> list[Attempt]:
    return (
        db.query(Attempt)
        .options(selectinload(Attempt.answers))
        .filter(Attempt.quiz_id == quiz_id)
        .order_by(Attempt.started_at.desc())
        .all()
    )


def _question_stats(quiz: Quiz, attempts: list[Attempt]) -> list[dict]:
    completed = [a for a in attempts if a.submitted_at is not None]
    stats = []
    for question in quiz.questions or []:
        question_id = question.get("id")
        answered = correct = 0
        for attempt in completed:
            for answer in attempt.answers:
                if answer.question_id != question_id or answer.answer is None:
                    continue
                answered += 1
                if answer.is_correct:
                    correct += 1
        stats.append(
            {
                "question_id": question_id,
                "answered": answered,
                "correct": correct,
                "correct_rate": round(correct / answered * 100, 2) if answered else 0.0,
            }
        )
    return stats


def recompute_quiz_analytics(
    db: Session, quiz_id: uuid.UUID, now: datetime | None = None
) -> Quiz:
    """Re-read every attempt of the quiz and overwrite its stored analytics."""
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")

    attempts = _load_attempts(db, quiz_id)
    scored = [a for a in attempts if is_fully_scored(a)]
    submitted = [a for a in attempts if a.status is AttemptStatusEnum.SUBMITTED]
    passed = [a for a in submitted if a.percentage_score >= quiz.passing_score]

    quiz.attempt_count = len(attempts)
    quiz.completion_count = sum(1 for a in attempts if a.submitted_at is not None)
    quiz.average_score = _mean([a.percentage_score for a in scored])
    quiz.average_time_spent = _mean([a.time_spent for a in scored])
    quiz.pass_rate = round(len(passed) / len(submitted) * 100, 2) if submitted else 0.0
    quiz.pending_grading_count = sum(1 for a in attempts if is_pending_grading(a))
    quiz.question_analytics = _question_stats(quiz, attempts)
    quiz.analytics_updated_at = now or get_clock().now()
    db.commit()

    logger.debug(
        "Analytics for quiz %s: attempts=%d completed=%d avg=%.2f pass_rate=%.2f",
        quiz.id, quiz.attempt_count, quiz.completion_count,
        quiz.average_score, quiz.pass_rate,
    )
    return quiz


def _distribution(scores: list[float]) -> ScoreDistribution:
    dist = ScoreDistribution()
    for score in scores:
        if score <= 20:
            dist.bucket_0_20 += 1
        elif score <= 40:
            dist.bucket_21_40 += 1
        elif score <= 60:
            dist.bucket_41_60 += 1
        elif score <= 80:
            dist.bucket_61_80 += 1
        else:
            dist.bucket_81_100 += 1
    return dist


def get_analytics(db: Session, quiz: Quiz) -> QuizAnalyticsRead:
    """Stored analytics plus the figures derived on read (spread, extremes)."""
    attempts = _load_attempts(db, quiz.id)
    scores = [a.percentage_score for a in attempts if is_fully_scored(a)]

    return QuizAnalyticsRead(
        quiz_id=quiz.id,
        title=quiz.title,
        total_points=quiz.total_points,
        question_count=quiz.question_count,
        passing_score=quiz.passing_score,
        attempt_count=quiz.attempt_count,
        completion_count=quiz.completion_count,
        unique_students=len({a.student_id for a in attempts}),
        average_score=quiz.average_score,
        average_time_spent=quiz.average_time_spent,
        pass_rate=quiz.pass_rate,
        pending_grading_count=quiz.pending_grading_count,
        highest_score=max(scores) if scores else None,
        lowest_score=min(scores) if scores else None,
        score_distribution=_distribution(scores).as_labels(),
        question_analytics=[QuestionStat(**s) for s in quiz.question_analytics or []],
        analytics_updated_at=quiz.analytics_updated_at,
    )
