"""
Single choice (MCQ) evaluator.

Correct iff exactly one option was chosen and that option is flagged correct.
"""
from practice_engine.models import Question, QuestionType

from . import register
from .base import AnswerSelection, unknown_option_error


@register(QuestionType.SINGLE_CHOICE)
class SingleChoiceEvaluator:
    """Evaluator for single choice questions."""

    def shape_error(self, question: Question, selection: AnswerSelection) -> str | None:
        if selection.text is not None and selection.text.strip():
            return "Choice questions take option ids, not text"
        if len(selection.option_ids) > 1:
            return "Single choice questions accept one option"
        return unknown_option_error(question, selection)

    def check(self, question: Question, selection: AnswerSelection) -> bool:
        if len(selection.option_ids) != 1:
            return False
        option = question.option(selection.option_ids[0])
        return option is not None and option.is_correct
