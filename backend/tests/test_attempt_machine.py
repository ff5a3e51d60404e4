"""Unit tests for the pure attempt state machine (no database)."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from quiz_engine.core.errors import AlreadySubmitted, NotFound, ValidationFailed
from quiz_engine.db.models import AttemptStatusEnum
from quiz_engine.schemas.notification import NotificationEvent
from quiz_engine.schemas.question import (
    EssayQuestion,
    MultipleChoiceQuestion,
    ShortAnswerQuestion,
)
from quiz_engine.services.attempt_machine import (
    Abandon,
    AttemptState,
    Grade,
    Notify,
    QuizRules,
    RecomputeAnalytics,
    RecordAnswer,
    Submit,
    SubmitOrigin,
    apply_event,
)
from quiz_engine.services.question_engine import GradingPolicy

T0 = datetime(2030, 3, 1, 10, 0, tzinfo=timezone.utc)
GRADER = uuid.uuid4()

MC = MultipleChoiceQuestion(id="mc", text="2 + 2?", points=2, options=["3", "4"], correct_answer="4")
MC2 = MultipleChoiceQuestion(id="mc2", text="3 + 3?", points=2, options=["6", "7"], correct_answer="6")
ESSAY = EssayQuestion(id="essay", text="Discuss", points=10)
ESSAY2 = EssayQuestion(id="essay2", text="Reflect", points=10)
SHORT = ShortAnswerQuestion(id="short", text="Symbol for gold", points=1, correct_answer="Au")


def _rules(*questions, time_limit=30, available_until=None, policy=GradingPolicy()):
    return QuizRules(
        quiz_id=uuid.uuid4(),
        course_id=uuid.uuid4(),
        questions=tuple(questions),
        time_limit=time_limit,
        available_until=available_until,
        policy=policy,
    )


def _attempt(rules: QuizRules) -> AttemptState:
    return AttemptState(
        id=uuid.uuid4(),
        quiz_id=rules.quiz_id,
        student_id=uuid.uuid4(),
        status=AttemptStatusEnum.IN_PROGRESS,
        started_at=T0,
    )


def _answer(attempt, rules, question_id, value, at=T0 + timedelta(minutes=1)):
    return apply_event(attempt, rules, RecordAnswer(question_id, value), at).attempt


# ── RecordAnswer ───────────────────────────────────────────────────────────────


class TestRecordAnswer:
    def test_upserts_by_question_without_scoring(self):
        rules = _rules(MC)
        attempt = _answer(_attempt(rules), rules, "mc", "3")
        attempt = _answer(attempt, rules, "mc", "4", at=T0 + timedelta(minutes=2))
        assert len(attempt.answers) == 1
        answer = attempt.answers[0]
        assert answer.answer == "4"
        assert answer.answered_at == T0 + timedelta(minutes=2)
        assert answer.is_correct is None
        assert answer.points_earned == 0

    def test_unknown_question(self):
        rules = _rules(MC)
        with pytest.raises(NotFound):
            apply_event(_attempt(rules), rules, RecordAnswer("nope", "x"), T0)

    def test_rejected_once_submitted(self):
        rules = _rules(MC)
        submitted = apply_event(_attempt(rules), rules, Submit(), T0).attempt
        with pytest.raises(AlreadySubmitted):
            apply_event(submitted, rules, RecordAnswer("mc", "4"), T0)


# ── Submit ─────────────────────────────────────────────────────────────────────


class TestSubmit:
    def test_auto_scored_quiz_is_final(self):
        rules = _rules(MC, MC2)
        attempt = _answer(_attempt(rules), rules, "mc", "4")
        attempt = _answer(attempt, rules, "mc2", "7")
        transition = apply_event(attempt, rules, Submit(), T0 + timedelta(minutes=12))

        result = transition.attempt
        assert result.status is AttemptStatusEnum.SUBMITTED
        assert result.total_score == 2
        assert result.total_possible == 4
        assert result.percentage_score == 50.0
        assert result.time_spent == 12.0
        assert result.submitted_at == T0 + timedelta(minutes=12)
        assert RecomputeAnalytics(rules.quiz_id) in transition.effects
        graded = [e for e in transition.effects if isinstance(e, Notify)]
        assert graded and graded[0].event is NotificationEvent.GRADED

    def test_second_submit_returns_stored_result(self):
        rules = _rules(MC)
        first = apply_event(_answer(_attempt(rules), rules, "mc", "4"), rules, Submit(), T0 + timedelta(minutes=5))
        second = apply_event(first.attempt, rules, Submit(), T0 + timedelta(minutes=9))
        assert second.changed is False
        assert second.effects == ()
        assert second.attempt == first.attempt

    def test_submit_exactly_at_time_limit_is_timed_out(self):
        rules = _rules(MC, time_limit=30)
        attempt = _answer(_attempt(rules), rules, "mc", "4")
        result = apply_event(attempt, rules, Submit(), T0 + timedelta(minutes=30)).attempt
        assert result.status is AttemptStatusEnum.TIMED_OUT
        # Late answers are still scored
        assert result.total_score == 2

    def test_submit_just_before_time_limit_is_on_time(self):
        rules = _rules(MC, time_limit=30)
        result = apply_event(_attempt(rules), rules, Submit(), T0 + timedelta(minutes=29, seconds=59)).attempt
        assert result.status is AttemptStatusEnum.SUBMITTED

    def test_window_close_is_a_deadline(self):
        rules = _rules(MC, time_limit=0, available_until=T0 + timedelta(minutes=10))
        result = apply_event(_attempt(rules), rules, Submit(), T0 + timedelta(minutes=10)).attempt
        assert result.status is AttemptStatusEnum.TIMED_OUT

    def test_timeout_origin_is_always_timed_out(self):
        rules = _rules(MC, time_limit=0)
        result = apply_event(_attempt(rules), rules, Submit(SubmitOrigin.TIMEOUT), T0).attempt
        assert result.status is AttemptStatusEnum.TIMED_OUT

    def test_unanswered_questions_score_zero(self):
        rules = _rules(MC, MC2)
        result = apply_event(_answer(_attempt(rules), rules, "mc", "4"), rules, Submit(), T0).attempt
        assert result.total_score == 2
        assert result.total_possible == 4
        assert len(result.answers) == 1

    def test_all_essay_quiz_waits_for_grader(self):
        rules = _rules(ESSAY, ESSAY2)
        attempt = _answer(_attempt(rules), rules, "essay", "words " * 60)
        attempt = _answer(attempt, rules, "essay2", "more words")
        transition = apply_event(attempt, rules, Submit(), T0 + timedelta(minutes=20))

        result = transition.attempt
        assert result.status is AttemptStatusEnum.SUBMITTED_PENDING_GRADING
        assert result.total_score == 0
        assert result.total_possible == 0
        assert all(a.needs_manual_grading for a in result.answers)
        assert not any(isinstance(e, Notify) for e in transition.effects)

    def test_mixed_quiz_is_partially_graded(self):
        rules = _rules(MC, ESSAY)
        attempt = _answer(_attempt(rules), rules, "mc", "4")
        attempt = _answer(attempt, rules, "essay", "an essay")
        result = apply_event(attempt, rules, Submit(), T0).attempt
        assert result.status is AttemptStatusEnum.PARTIALLY_GRADED
        assert result.total_score == 2
        assert result.total_possible == 2

    def test_skipped_essay_still_waits_for_grader(self):
        rules = _rules(MC, ESSAY)
        attempt = _answer(_attempt(rules), rules, "mc", "4")
        result = apply_event(attempt, rules, Submit(), T0).attempt

        assert result.status is AttemptStatusEnum.PARTIALLY_GRADED
        blank = result.answer_for("essay")
        assert blank.answer is None
        assert blank.awaiting_grade

        graded = apply_event(result, rules, Grade(GRADER, {"essay": 0}), T0).attempt
        assert graded.status is AttemptStatusEnum.SUBMITTED
        assert graded.total_score == 2
        assert graded.total_possible == 12
        assert graded.percentage_score == 16.67

    def test_unanswered_essay_quiz_waits_for_grader(self):
        rules = _rules(ESSAY)
        transition = apply_event(_attempt(rules), rules, Submit(), T0)

        result = transition.attempt
        assert result.status is AttemptStatusEnum.SUBMITTED_PENDING_GRADING
        assert result.total_score == 0
        assert [a.question_id for a in result.awaiting_grade] == ["essay"]
        assert not any(isinstance(e, Notify) for e in transition.effects)

    def test_manual_short_answer_policy(self):
        rules = _rules(MC, SHORT, policy=GradingPolicy(manual_short_answer=True))
        attempt = _answer(_attempt(rules), rules, "short", "Au")
        result = apply_event(attempt, rules, Submit(), T0).attempt
        assert result.status is AttemptStatusEnum.PARTIALLY_GRADED
        assert result.answer_for("short").needs_manual_grading is True

    def test_late_pending_submit_is_timed_out(self):
        rules = _rules(ESSAY, time_limit=5)
        attempt = _answer(_attempt(rules), rules, "essay", "text")
        result = apply_event(attempt, rules, Submit(), T0 + timedelta(minutes=6)).attempt
        assert result.status is AttemptStatusEnum.TIMED_OUT
        assert result.awaiting_grade


# ── Grade ──────────────────────────────────────────────────────────────────────


def _submitted(rules, answers: dict, at=T0 + timedelta(minutes=10)):
    attempt = _attempt(rules)
    for question_id, value in answers.items():
        attempt = _answer(attempt, rules, question_id, value)
    return apply_event(attempt, rules, Submit(), at).attempt


class TestGrade:
    def test_grading_every_essay_finalises(self):
        rules = _rules(ESSAY, ESSAY2)
        pending = _submitted(rules, {"essay": "a", "essay2": "b"})
        transition = apply_event(
            pending, rules, Grade(GRADER, {"essay": 7, "essay2": 9}, {"essay": "Good"}), T0 + timedelta(days=1)
        )
        result = transition.attempt
        assert result.status is AttemptStatusEnum.SUBMITTED
        assert result.total_score == 16
        assert result.total_possible == 20
        assert result.percentage_score == 80.0
        assert result.graded_by == GRADER
        assert result.graded_at == T0 + timedelta(days=1)
        assert result.answer_for("essay").feedback == "Good"
        assert any(isinstance(e, Notify) and e.event is NotificationEvent.GRADED for e in transition.effects)

    def test_partial_grading_stays_partially_graded(self):
        rules = _rules(ESSAY, ESSAY2)
        pending = _submitted(rules, {"essay": "a", "essay2": "b"})
        result = apply_event(pending, rules, Grade(GRADER, {"essay": 5}), T0).attempt
        assert result.status is AttemptStatusEnum.PARTIALLY_GRADED
        assert result.graded_at is None
        assert result.total_score == 5

    def test_mixed_totals_combine_auto_and_manual(self):
        rules = _rules(MC, ESSAY)
        partial = _submitted(rules, {"mc": "4", "essay": "x"})
        result = apply_event(partial, rules, Grade(GRADER, {"essay": 8}), T0).attempt
        assert result.status is AttemptStatusEnum.SUBMITTED
        assert result.total_score == 10
        assert result.total_possible == 12

    def test_correct_at_sixty_percent_of_points(self):
        rules = _rules(ESSAY, ESSAY2)
        pending = _submitted(rules, {"essay": "a", "essay2": "b"})
        result = apply_event(pending, rules, Grade(GRADER, {"essay": 6, "essay2": 5.9}), T0).attempt
        assert result.answer_for("essay").is_correct is True
        assert result.answer_for("essay2").is_correct is False

    def test_timed_out_attempt_keeps_status_when_graded(self):
        rules = _rules(ESSAY, time_limit=5)
        late = _submitted(rules, {"essay": "x"}, at=T0 + timedelta(minutes=6))
        result = apply_event(late, rules, Grade(GRADER, {"essay": 10}), T0).attempt
        assert result.status is AttemptStatusEnum.TIMED_OUT
        assert result.total_score == 10
        assert result.graded_at == T0

    @pytest.mark.parametrize(
        "scores",
        [{"essay": 11}, {"essay": -1}, {"mc": 1}, {"ghost": 1}, {}],
    )
    def test_invalid_grades_rejected(self, scores):
        rules = _rules(MC, ESSAY)
        partial = _submitted(rules, {"mc": "4", "essay": "x"})
        with pytest.raises(ValidationFailed):
            apply_event(partial, rules, Grade(GRADER, scores), T0)

    def test_cannot_grade_in_progress(self):
        rules = _rules(ESSAY)
        with pytest.raises(ValidationFailed):
            apply_event(_attempt(rules), rules, Grade(GRADER, {"essay": 1}), T0)


# ── Abandon ────────────────────────────────────────────────────────────────────


def test_abandon_does_not_score_or_consume_a_try():
    rules = _rules(MC)
    attempt = _answer(_attempt(rules), rules, "mc", "4")
    result = apply_event(attempt, rules, Abandon(), T0 + timedelta(minutes=3)).attempt
    assert result.status is AttemptStatusEnum.ABANDONED
    assert result.submitted_at is None
    assert result.total_score == 0
    assert result.time_spent == 3.0

    again = apply_event(result, rules, Abandon(), T0 + timedelta(minutes=4))
    assert again.changed is False


def test_abandon_after_submit_is_noop():
    rules = _rules(MC)
    submitted = apply_event(_attempt(rules), rules, Submit(), T0).attempt
    assert apply_event(submitted, rules, Abandon(), T0).attempt is submitted


def test_unknown_event_type():
    rules = _rules(MC)
    with pytest.raises(TypeError):
        apply_event(_attempt(rules), rules, object(), T0)
