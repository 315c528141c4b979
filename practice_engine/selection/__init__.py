"""Question selection: shuffling and pool cycling."""

from .cycler import CycleSelection, EmptyPoolError, QuestionPoolCycler, current_cycle
from .shuffle import shuffled

__all__ = [
    "CycleSelection",
    "EmptyPoolError",
    "QuestionPoolCycler",
    "current_cycle",
    "shuffled",
]
