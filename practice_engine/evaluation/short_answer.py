"""
Short answer evaluator.

Case-insensitive exact match after trimming surrounding whitespace. Accents
and punctuation are compared as-is.
"""
from practice_engine.models import Question, QuestionType

from . import register
from .base import AnswerSelection


def normalize_answer(text: str) -> str:
    return text.strip().lower()


@register(QuestionType.SHORT_ANSWER)
class ShortAnswerEvaluator:
    """Evaluator for short answer questions."""

    def shape_error(self, question: Question, selection: AnswerSelection) -> str | None:
        if selection.option_ids:
            return "Short answer questions take text, not option ids"
        return None

    def check(self, question: Question, selection: AnswerSelection) -> bool:
        if not selection.text or not selection.text.strip() or not question.answer:
            return False
        return normalize_answer(selection.text) == normalize_answer(question.answer)
