"""
Multiple response (MRQ) evaluator.

All-or-nothing: the chosen set must equal the set of correct options.
A subset or a superset of the correct options scores nothing.
"""
from practice_engine.models import Question, QuestionType

from . import register
from .base import AnswerSelection, unknown_option_error


@register(QuestionType.MULTI_CHOICE)
class MultiChoiceEvaluator:
    """Evaluator for multiple response questions."""

    def shape_error(self, question: Question, selection: AnswerSelection) -> str | None:
        if selection.text is not None and selection.text.strip():
            return "Choice questions take option ids, not text"
        return unknown_option_error(question, selection)

    def check(self, question: Question, selection: AnswerSelection) -> bool:
        chosen = frozenset(selection.option_ids)
        correct = question.correct_option_ids
        if not chosen or not correct:
            return False
        return chosen == correct
