"""
Unit tests for the Fisher-Yates shuffle.
"""

import random
from collections import Counter

from practice_engine.selection import shuffled


class TestShuffled:
    def test_output_is_permutation(self):
        items = list(range(20))
        result = shuffled(items, random.Random(1))
        assert sorted(result) == items

    def test_input_not_mutated(self):
        items = ["a", "b", "c", "d"]
        shuffled(items, random.Random(2))
        assert items == ["a", "b", "c", "d"]

    def test_empty_and_single(self):
        assert shuffled([]) == []
        assert shuffled(["only"]) == ["only"]

    def test_accepts_any_iterable(self):
        result = shuffled((x for x in "abc"), random.Random(3))
        assert sorted(result) == ["a", "b", "c"]

    def test_every_position_roughly_uniform(self):
        """Each of 4 items should land in each position about a quarter of the time."""
        rng = random.Random(42)
        items = ["w", "x", "y", "z"]
        placements = Counter()
        for _ in range(12000):
            for position, item in enumerate(shuffled(items, rng)):
                placements[(item, position)] += 1

        for item in items:
            for position in range(len(items)):
                assert 2700 < placements[(item, position)] < 3300

    def test_all_permutations_reachable(self):
        rng = random.Random(5)
        seen = {tuple(shuffled([1, 2, 3], rng)) for _ in range(500)}
        assert len(seen) == 6
