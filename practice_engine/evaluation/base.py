"""
Base protocol and types for answer evaluators.
"""
from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from practice_engine.models import Question


class AnswerSelection(BaseModel):
    """What the student submitted for one question."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    option_ids: tuple[str, ...] = Field(default=(), description="Chosen option ids (choice questions)")
    text: str | None = Field(default=None, description="Free-text answer (short answer)")

    @field_validator("option_ids", mode="before")
    @classmethod
    def _coerce_single_id(cls, value):
        # A bare string means one selected option
        if isinstance(value, str):
            return (value,) if value else ()
        return value

    @property
    def is_empty(self) -> bool:
        return not self.option_ids and not (self.text and self.text.strip())

    @classmethod
    def choice(cls, *option_ids: str) -> AnswerSelection:
        return cls(option_ids=option_ids)

    @classmethod
    def free_text(cls, text: str) -> AnswerSelection:
        return cls(text=text)


class AnswerEvaluator(Protocol):
    """Protocol for per-type evaluators."""

    def shape_error(self, question: Question, selection: AnswerSelection) -> str | None:
        """Describe why the selection's shape is invalid for this question, or None."""
        ...

    def check(self, question: Question, selection: AnswerSelection) -> bool:
        """True iff the selection is a correct answer. Empty selections are incorrect."""
        ...


def unknown_option_error(question: Question, selection: AnswerSelection) -> str | None:
    unknown = [oid for oid in selection.option_ids if oid not in question.option_ids]
    if unknown:
        return f"Options {unknown} do not belong to question {question.id}"
    return None
