"""Question variants embedded in a quiz.

Each variant is tagged by ``type``; ``Question`` is the discriminated union
pydantic uses to parse the JSON stored on ``quizzes.questions``.
"""

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def _question_id() -> str:
    return uuid.uuid4().hex


class _QuestionBase(BaseModel):
    id: str = Field(default_factory=_question_id)
    text: str
    points: float = 1.0
    explanation: str | None = None
    difficulty: Difficulty = Difficulty.MEDIUM
    tags: list[str] = []


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["multiple_choice"] = "multiple_choice"
    options: list[str] = []
    correct_answer: str | None = None


class TrueFalseQuestion(_QuestionBase):
    type: Literal["true_false"] = "true_false"
    options: list[str] = ["True", "False"]
    correct_answer: str | None = None


class ShortAnswerQuestion(_QuestionBase):
    type: Literal["short_answer"] = "short_answer"
    correct_answer: str | None = None


class RubricItem(BaseModel):
    criteria: str
    points: float
    description: str | None = None


class EssayQuestion(_QuestionBase):
    type: Literal["essay"] = "essay"
    rubric: list[RubricItem] = []
    min_words: int = 0
    max_words: int = 1000


class FillBlankQuestion(_QuestionBase):
    type: Literal["fill_blank"] = "fill_blank"
    correct_answers: list[str] = []


class MatchingPair(BaseModel):
    left: str
    right: str


class MatchingQuestion(_QuestionBase):
    type: Literal["matching"] = "matching"
    pairs: list[MatchingPair] = []


Question = Annotated[
    Union[
        MultipleChoiceQuestion,
        TrueFalseQuestion,
        ShortAnswerQuestion,
        EssayQuestion,
        FillBlankQuestion,
        MatchingQuestion,
    ],
    Field(discriminator="type"),
]

_QUESTION_LIST = TypeAdapter(list[Question])


def parse_questions(raw: list[dict[str, Any]] | None) -> list[Question]:
    """Load stored question dicts into their tagged variants."""
    return _QUESTION_LIST.validate_python(raw or [])


def dump_questions(questions: list[Question]) -> list[dict[str, Any]]:
    """Serialise variants for the JSON column."""
    return _QUESTION_LIST.dump_python(questions, mode="json")


# Answer payloads as received from the client: one string, an ordered list
# (fill in the blank) or a left → right map (matching).
AnswerPayload = Union[str, list[str], dict[str, str], None]


class StudentQuestionView(BaseModel):
    """Question as shown to a student — no correctness data."""

    id: str
    type: QuestionType
    text: str
    points: float
    difficulty: Difficulty
    options: list[str] | None = None
    blanks: int | None = None
    left_items: list[str] | None = None
    right_items: list[str] | None = None
    min_words: int | None = None
    max_words: int | None = None
