"""Unit tests for question scoring, validation and redaction."""

import pytest

from quiz_engine.schemas.question import (
    EssayQuestion,
    FillBlankQuestion,
    MatchingPair,
    MatchingQuestion,
    MultipleChoiceQuestion,
    QuestionType,
    ShortAnswerQuestion,
    TrueFalseQuestion,
    parse_questions,
)
from quiz_engine.services import question_engine
from quiz_engine.services.question_engine import (
    GradingPolicy,
    redact_question,
    score_answer,
    validate_question,
    validate_questions,
)


def _matching(points: float = 3.0) -> MatchingQuestion:
    return MatchingQuestion(
        text="Match the letters to numbers",
        points=points,
        pairs=[
            MatchingPair(left="A", right="1"),
            MatchingPair(left="B", right="2"),
            MatchingPair(left="C", right="3"),
        ],
    )


# ── Scoring ────────────────────────────────────────────────────────────────────


class TestChoiceScoring:
    def test_multiple_choice_is_case_and_whitespace_insensitive(self):
        q = MultipleChoiceQuestion(text="Capital of France?", points=2, options=["Paris", "Rome"], correct_answer="Paris")
        result = score_answer(q, "  paris ")
        assert result.is_correct is True
        assert result.points_earned == 2

    def test_multiple_choice_wrong_answer_scores_zero(self):
        q = MultipleChoiceQuestion(text="Capital of France?", points=2, options=["Paris", "Rome"], correct_answer="Paris")
        result = score_answer(q, "Rome")
        assert result.is_correct is False
        assert result.points_earned == 0

    def test_true_false(self):
        q = TrueFalseQuestion(text="The sky is green", correct_answer="False")
        assert score_answer(q, "false").is_correct is True
        assert score_answer(q, "True").points_earned == 0

    def test_non_string_payload_scores_zero(self):
        q = MultipleChoiceQuestion(text="Pick", options=["a", "b"], correct_answer="a")
        assert score_answer(q, ["a"]).points_earned == 0
        assert score_answer(q, None).is_correct is False


class TestShortAnswerPolicy:
    def test_auto_policy_matches_trimmed_case_insensitive(self):
        q = ShortAnswerQuestion(text="Chemical symbol for water", points=4, correct_answer="H2O")
        result = score_answer(q, " h2o ")
        assert result.is_correct is True
        assert result.points_earned == 4
        assert result.needs_manual_grading is False

    def test_manual_policy_routes_to_grader(self):
        q = ShortAnswerQuestion(text="Chemical symbol for water", points=4, correct_answer="H2O")
        result = score_answer(q, "H2O", GradingPolicy(manual_short_answer=True))
        assert result.needs_manual_grading is True
        assert result.points_earned == 0
        assert result.is_correct is False


class TestPartialCredit:
    def test_fill_blank_half_right(self):
        q = FillBlankQuestion(text="The flag is ___ and ___", points=4, correct_answers=["red", "blue"])
        result = score_answer(q, ["red", "green"])
        assert result.points_earned == pytest.approx(4 * 0.5)
        assert result.is_correct is False

    def test_fill_blank_all_right_is_correct(self):
        q = FillBlankQuestion(text="The flag is ___ and ___", points=4, correct_answers=["red", "blue"])
        result = score_answer(q, [" Red", "BLUE "])
        assert result.is_correct is True
        assert result.points_earned == 4

    def test_fill_blank_short_list_counts_missing_blanks_wrong(self):
        q = FillBlankQuestion(text="___ ___ ___", points=3, correct_answers=["a", "b", "c"])
        assert score_answer(q, ["a"]).points_earned == pytest.approx(1)

    def test_fill_blank_rejects_non_list(self):
        q = FillBlankQuestion(text="___", correct_answers=["a"])
        assert score_answer(q, "a").points_earned == 0

    def test_matching_two_of_three(self):
        q = _matching(points=3)
        result = score_answer(q, {"A": "1", "B": "2", "C": "9"})
        assert result.points_earned == pytest.approx(3 * 2 / 3)
        assert result.is_correct is False

    def test_matching_all_pairs(self):
        result = score_answer(_matching(), {"a": "1", "b": "2", "c": "3"})
        assert result.is_correct is True
        assert result.points_earned == 3

    def test_matching_rejects_non_map(self):
        assert score_answer(_matching(), ["1", "2", "3"]).points_earned == 0


def test_essay_always_needs_manual_grading():
    q = EssayQuestion(text="Discuss", points=10)
    result = score_answer(q, "A long and thoughtful answer")
    assert result.needs_manual_grading is True
    assert result.points_earned == 0
    assert result.is_correct is False


def test_every_question_type_has_scorer_and_validator():
    assert set(question_engine._SCORERS) == set(QuestionType)
    assert set(question_engine._VALIDATORS) == set(QuestionType)


# ── Validation ─────────────────────────────────────────────────────────────────


class TestValidation:
    def test_multiple_choice_needs_two_options(self):
        q = MultipleChoiceQuestion(text="Pick", options=["only"], correct_answer="only")
        errors = validate_question(q)
        assert any("at least 2 options" in e for e in errors)

    def test_true_false_needs_exactly_two_options(self):
        q = TrueFalseQuestion(text="Maybe?", options=["True", "False", "Maybe"], correct_answer="True")
        assert any("exactly 2 options" in e for e in validate_question(q))

    def test_missing_correct_answer(self):
        q = MultipleChoiceQuestion(text="Pick", options=["a", "b"])
        assert any("correct answer" in e for e in validate_question(q))

    def test_points_must_be_positive(self):
        q = ShortAnswerQuestion(text="Say hi", points=0, correct_answer="hi")
        assert "Question points must be greater than 0" in validate_question(q)

    def test_matching_duplicate_left_items(self):
        q = MatchingQuestion(
            text="Match",
            pairs=[MatchingPair(left="A", right="1"), MatchingPair(left="a", right="2")],
        )
        assert any("repeat a left-hand item" in e for e in validate_question(q))

    def test_essay_word_limits(self):
        q = EssayQuestion(text="Write", min_words=500, max_words=100)
        assert validate_question(q)

    def test_valid_question_has_no_errors(self):
        assert validate_question(_matching()) == []

    def test_validate_questions_reports_position_and_duplicate_ids(self):
        questions = [
            ShortAnswerQuestion(id="dup", text="One", correct_answer="1"),
            ShortAnswerQuestion(id="dup", text="", correct_answer="2"),
        ]
        errors = validate_questions(questions)
        assert "Question 2: duplicate question id dup" in errors
        assert "Question 2: Question text is required" in errors


# ── Parsing & redaction ────────────────────────────────────────────────────────


def test_parse_questions_uses_type_tag():
    parsed = parse_questions(
        [
            {"type": "essay", "text": "Discuss"},
            {"type": "fill_blank", "text": "___", "correct_answers": ["x"]},
        ]
    )
    assert isinstance(parsed[0], EssayQuestion)
    assert isinstance(parsed[1], FillBlankQuestion)
    assert parsed[0].id  # generated when absent


def test_redaction_removes_answer_keys():
    view = redact_question(
        MultipleChoiceQuestion(text="Pick", options=["a", "b"], correct_answer="a")
    )
    dumped = view.model_dump()
    assert "correct_answer" not in dumped
    assert dumped["options"] == ["a", "b"]


def test_redacted_matching_exposes_both_sides():
    view = redact_question(_matching())
    assert view.left_items == ["A", "B", "C"]
    assert sorted(view.right_items) == ["1", "2", "3"]


def test_redacted_fill_blank_exposes_blank_count_only():
    view = redact_question(FillBlankQuestion(text="___ ___", correct_answers=["x", "y"]))
    dumped = view.model_dump()
    assert view.blanks == 2
    assert "correct_answers" not in dumped
    assert "x" not in dumped.values()
