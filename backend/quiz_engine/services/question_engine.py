"""Question engine — validate question definitions and score answers.

Pure functions, no I/O. Each question type registers one validator and one
scorer; the tables are checked at import time so a new ``QuestionType``
cannot ship without both.

Scoring rules:
  - multiple_choice / true_false: case-normalised exact match, all or nothing
  - short_answer: trimmed, case-insensitive match — or routed to a human when
    the quiz's short-answer policy is ``manual``
  - fill_blank: per-position match, partial credit
  - matching: per-pair match, partial credit
  - essay: always manual, 0 points until graded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from quiz_engine.schemas.question import (
    AnswerPayload,
    EssayQuestion,
    FillBlankQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    Question,
    QuestionType,
    ShortAnswerQuestion,
    StudentQuestionView,
    TrueFalseQuestion,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradingPolicy:
    """Per-quiz knobs that change how answers are routed."""

    manual_short_answer: bool = False


@dataclass(frozen=True)
class ScoreResult:
    is_correct: bool
    points_earned: float
    needs_manual_grading: bool = False


_ZERO = ScoreResult(is_correct=False, points_earned=0.0)


# ── Text normalisation helpers ────────────────────────────────────────────────


def _norm(value: Any) -> str | None:
    """Trim + casefold; None for anything that is not a string."""
    if not isinstance(value, str):
        return None
    return value.strip().casefold()


def _same(submitted: Any, expected: str | None) -> bool:
    s = _norm(submitted)
    return s is not None and expected is not None and s == _norm(expected)


def _all_or_nothing(points: float, correct: bool) -> ScoreResult:
    return ScoreResult(is_correct=correct, points_earned=points if correct else 0.0)


# ── Scorers ──────────────────────────────────────────────────────────────────


def _score_choice(
    question: MultipleChoiceQuestion | TrueFalseQuestion,
    answer: AnswerPayload,
    policy: GradingPolicy,
) -> ScoreResult:
    return _all_or_nothing(question.points, _same(answer, question.correct_answer))


def _score_short_answer(
    question: ShortAnswerQuestion, answer: AnswerPayload, policy: GradingPolicy
) -> ScoreResult:
    if policy.manual_short_answer:
        return ScoreResult(is_correct=False, points_earned=0.0, needs_manual_grading=True)
    return _all_or_nothing(question.points, _same(answer, question.correct_answer))


def _score_essay(
    question: EssayQuestion, answer: AnswerPayload, policy: GradingPolicy
) -> ScoreResult:
    return ScoreResult(is_correct=False, points_earned=0.0, needs_manual_grading=True)


def _score_fill_blank(
    question: FillBlankQuestion, answer: AnswerPayload, policy: GradingPolicy
) -> ScoreResult:
    expected = question.correct_answers
    if not expected or not isinstance(answer, list):
        return _ZERO
    correct = sum(
        1
        for index, blank in enumerate(expected)
        if index < len(answer) and _same(answer[index], blank)
    )
    return ScoreResult(
        is_correct=correct == len(expected),
        points_earned=question.points * correct / len(expected),
    )


def _score_matching(
    question: MatchingQuestion, answer: AnswerPayload, policy: GradingPolicy
) -> ScoreResult:
    pairs = question.pairs
    if not pairs or not isinstance(answer, dict):
        return _ZERO
    submitted = {_norm(left): right for left, right in answer.items()}
    correct = sum(1 for pair in pairs if _same(submitted.get(_norm(pair.left)), pair.right))
    return ScoreResult(
        is_correct=correct == len(pairs),
        points_earned=question.points * correct / len(pairs),
    )


_SCORERS: dict[QuestionType, Callable[[Any, AnswerPayload, GradingPolicy], ScoreResult]] = {
    QuestionType.MULTIPLE_CHOICE: _score_choice,
    QuestionType.TRUE_FALSE: _score_choice,
    QuestionType.SHORT_ANSWER: _score_short_answer,
    QuestionType.ESSAY: _score_essay,
    QuestionType.FILL_BLANK: _score_fill_blank,
    QuestionType.MATCHING: _score_matching,
}


# ── Validators (quiz save time) ──────────────────────────────────────────────


def _validate_multiple_choice(question: MultipleChoiceQuestion) -> list[str]:
    errors = []
    if len(question.options) < 2:
        errors.append("Multiple choice questions must have at least 2 options")
    if not (question.correct_answer or "").strip():
        errors.append("Multiple choice questions must have a correct answer")
    return errors


def _validate_true_false(question: TrueFalseQuestion) -> list[str]:
    errors = []
    if len(question.options) != 2:
        errors.append("True/false questions must have exactly 2 options")
    if not (question.correct_answer or "").strip():
        errors.append("True/false questions must have a correct answer")
    return errors


def _validate_short_answer(question: ShortAnswerQuestion) -> list[str]:
    if not (question.correct_answer or "").strip():
        return ["Short answer questions must have a correct answer"]
    return []


def _validate_essay(question: EssayQuestion) -> list[str]:
    if question.min_words < 0 or question.min_words > question.max_words:
        return ["Essay word limits must satisfy 0 <= min_words <= max_words"]
    return []


def _validate_fill_blank(question: FillBlankQuestion) -> list[str]:
    if not question.correct_answers:
        return ["Fill in the blank questions must have at least one correct answer"]
    return []


def _validate_matching(question: MatchingQuestion) -> list[str]:
    errors = []
    if len(question.pairs) < 2:
        errors.append("Matching questions must have at least 2 pairs")
    lefts = [_norm(pair.left) for pair in question.pairs]
    if len(set(lefts)) != len(lefts):
        errors.append("Matching questions must not repeat a left-hand item")
    return errors


_VALIDATORS: dict[QuestionType, Callable[[Any], list[str]]] = {
    QuestionType.MULTIPLE_CHOICE: _validate_multiple_choice,
    QuestionType.TRUE_FALSE: _validate_true_false,
    QuestionType.SHORT_ANSWER: _validate_short_answer,
    QuestionType.ESSAY: _validate_essay,
    QuestionType.FILL_BLANK: _validate_fill_blank,
    QuestionType.MATCHING: _validate_matching,
}

for _table in (_SCORERS, _VALIDATORS):
    _missing = set(QuestionType) - set(_table)
    if _missing:
        raise RuntimeError(f"question types without a handler: {sorted(m.value for m in _missing)}")


# ── Public API ───────────────────────────────────────────────────────────────


def question_type(question: Question) -> QuestionType:
    return QuestionType(question.type)


def needs_manual_grading(question: Question, policy: GradingPolicy) -> bool:
    """Whether answers to *question* are routed to a human grader."""
    kind = question_type(question)
    if kind is QuestionType.ESSAY:
        return True
    return kind is QuestionType.SHORT_ANSWER and policy.manual_short_answer


def score_answer(
    question: Question,
    answer: AnswerPayload,
    policy: GradingPolicy = GradingPolicy(),
) -> ScoreResult:
    """Score *answer* against *question*.

    Args:
        question: Any question variant.
        answer: Raw payload as the student submitted it. Payloads of the
            wrong shape for the question type score zero.
        policy: The owning quiz's grading policy.

    Returns:
        ``ScoreResult`` — ``needs_manual_grading`` answers always carry
        ``points_earned == 0`` until a human grades them.
    """
    result = _SCORERS[question_type(question)](question, answer, policy)
    logger.debug(
        "Scored question %s (%s): correct=%s points=%.2f manual=%s",
        question.id, question.type, result.is_correct,
        result.points_earned, result.needs_manual_grading,
    )
    return result


def validate_question(question: Question) -> list[str]:
    """Return every problem with *question*; empty list when valid."""
    errors = []
    if not question.text.strip():
        errors.append("Question text is required")
    if question.points <= 0:
        errors.append("Question points must be greater than 0")
    errors.extend(_VALIDATORS[question_type(question)](question))
    return errors


def validate_questions(questions: list[Question]) -> list[str]:
    """Validate a whole question list; messages are prefixed with the position."""
    errors = []
    seen: set[str] = set()
    for position, question in enumerate(questions, 1):
        if question.id in seen:
            errors.append(f"Question {position}: duplicate question id {question.id}")
        seen.add(question.id)
        errors.extend(f"Question {position}: {msg}" for msg in validate_question(question))
    return errors


def redact_question(question: Question) -> StudentQuestionView:
    """Student-facing view of *question* with correctness data removed."""
    view = StudentQuestionView(
        id=question.id,
        type=question_type(question),
        text=question.text,
        points=question.points,
        difficulty=question.difficulty,
    )
    if isinstance(question, (MultipleChoiceQuestion, TrueFalseQuestion)):
        view.options = list(question.options)
    elif isinstance(question, FillBlankQuestion):
        view.blanks = len(question.correct_answers)
    elif isinstance(question, MatchingQuestion):
        view.left_items = [pair.left for pair in question.pairs]
        view.right_items = sorted(pair.right for pair in question.pairs)
    elif isinstance(question, EssayQuestion):
        view.min_words = question.min_words
        view.max_words = question.max_words
    return view
