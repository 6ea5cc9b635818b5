"""Structured study items produced from a conversation."""

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from ..config import QUIZ_OPTION_COUNT


class QuizItem(BaseModel):
    """One multiple-choice question."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    question: str = Field(min_length=1)
    options: tuple[str, ...]
    correct_answer: str = Field(alias="correctAnswer")

    @model_validator(mode="after")
    def _check_options(self) -> "QuizItem":
        if len(self.options) != QUIZ_OPTION_COUNT:
            raise ValueError(
                f"Expected exactly {QUIZ_OPTION_COUNT} options, got {len(self.options)}"
            )
        if self.correct_answer not in self.options:
            raise ValueError("correctAnswer must match one of the options verbatim")
        return self


class Flashcard(BaseModel):
    """A term and its definition."""

    model_config = ConfigDict(frozen=True)

    term: str = Field(min_length=1)
    definition: str = Field(min_length=1)


_QUIZ_ADAPTER = TypeAdapter(list[QuizItem])
_FLASHCARD_ADAPTER = TypeAdapter(list[Flashcard])


def parse_quiz(raw: str | bytes | list) -> list[QuizItem] | None:
    """Validate a quiz payload.

    Accepts JSON text or an already-decoded list. Any malformed item
    rejects the whole payload.

    Returns:
        The quiz items, or None if the payload is not a non-empty list of
        valid items
    """
    try:
        if isinstance(raw, (str, bytes)):
            items = _QUIZ_ADAPTER.validate_json(raw)
        else:
            items = _QUIZ_ADAPTER.validate_python(raw)
    except ValidationError:
        return None
    return items or None


def parse_flashcards(raw: str | bytes | list) -> list[Flashcard] | None:
    """Validate a flashcard payload. Same contract as ``parse_quiz``."""
    try:
        if isinstance(raw, (str, bytes)):
            items = _FLASHCARD_ADAPTER.validate_json(raw)
        else:
            items = _FLASHCARD_ADAPTER.validate_python(raw)
    except ValidationError:
        return None
    return items or None


def dump_items(items: list[QuizItem] | list[Flashcard]) -> list[dict]:
    """JSON-ready form of quiz items or flashcards (camelCase keys)."""
    return [item.model_dump(mode="json", by_alias=True) for item in items]
