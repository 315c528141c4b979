"""
Answer evaluators, one per question type.

Each type has its own module with:
- shape_error(): reject selections with the wrong shape for the type
- check(): decide correctness (pure, no I/O)
"""

from typing import TYPE_CHECKING

from practice_engine.models import Question, QuestionType

if TYPE_CHECKING:
    from .base import AnswerEvaluator, AnswerSelection


# Evaluator registry - populated by @register decorator
EVALUATORS: dict[QuestionType, "AnswerEvaluator"] = {}


def register(question_type: QuestionType):
    """Decorator to register an evaluator."""
    def decorator(cls):
        EVALUATORS[question_type] = cls()
        return cls
    return decorator


def get_evaluator(question_type: str | QuestionType) -> "AnswerEvaluator | None":
    """Get the evaluator for a question type."""
    if isinstance(question_type, str) and not isinstance(question_type, QuestionType):
        try:
            question_type = QuestionType(question_type.lower())
        except ValueError:
            return None
    return EVALUATORS.get(question_type)


def evaluate_answer(question: Question, selection: "AnswerSelection") -> bool:
    """Correctness of ``selection`` for ``question``. Unknown types and empty answers are incorrect."""
    evaluator = get_evaluator(question.type)
    if evaluator is None or selection.is_empty:
        return False
    return evaluator.check(question, selection)


def selection_shape_error(question: Question, selection: "AnswerSelection") -> str | None:
    evaluator = get_evaluator(question.type)
    if evaluator is None:
        return f"Unsupported question type: {question.type}"
    return evaluator.shape_error(question, selection)


# Import evaluators to trigger registration
from . import single_choice  # noqa: E402
from . import multi_choice  # noqa: E402
from . import short_answer  # noqa: E402
from .base import AnswerSelection  # noqa: E402,F811

__all__ = [
    "AnswerSelection",
    "EVALUATORS",
    "evaluate_answer",
    "get_evaluator",
    "register",
    "selection_shape_error",
]
