"""Unbiased shuffling for question and option order."""
from __future__ import annotations

import random
from typing import Iterable, TypeVar

T = TypeVar("T")


def shuffled(items: Iterable[T], rng: random.Random | None = None) -> list[T]:
    """
    Return a shuffled copy of ``items``.

    ``random.shuffle`` is Fisher-Yates: every permutation is equally likely.
    """
    result = list(items)
    (rng or random).shuffle(result)
    return result
