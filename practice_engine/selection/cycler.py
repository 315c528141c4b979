"""
Question Pool Cycler.

Selects the next batch of questions for a student so that no question repeats
until the whole sub-topic pool has been used ("a cycle"):

1. Questions recorded under the highest cycle number are "answered in the
   current cycle"; everything else in the pool is unanswered.
2. Enough unanswered questions: shuffle them and take the batch. The cycle
   number is unchanged.
3. Too few: carry every unanswered question over, start the next cycle and
   top the batch up from the rest of the pool. The combined batch is shuffled
   again so carried and fresh questions are interleaved, not grouped.

Each selected question is then recorded as progress under the selection's
cycle number (see ``CycleSelection.progress_rows``).
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, Sequence

from practice_engine.models import Question, QuestionProgress

from .shuffle import shuffled


class EmptyPoolError(ValueError):
    """The sub-topic has no questions to select from."""


@dataclass(frozen=True)
class CycleSelection:
    """One batch chosen by the cycler."""
    questions: tuple[Question, ...]
    cycle_number: int
    previous_cycle: int  # Highest recorded cycle before this selection, 0 if none
    carried_over_ids: frozenset[str] = frozenset()

    @property
    def question_ids(self) -> tuple[str, ...]:
        return tuple(q.id for q in self.questions)

    @property
    def started_new_cycle(self) -> bool:
        return self.previous_cycle > 0 and self.cycle_number > self.previous_cycle

    def progress_rows(self, student_id: str, sub_topic_id: str) -> list[QuestionProgress]:
        return [
            QuestionProgress(
                student_id=student_id,
                sub_topic_id=sub_topic_id,
                question_id=qid,
                cycle_number=self.cycle_number,
            )
            for qid in self.question_ids
        ]


def current_cycle(progress: Iterable[QuestionProgress]) -> tuple[int, frozenset[str]]:
    """
    Highest recorded cycle and the question ids used within it.

    Returns ``(0, frozenset())`` when the student has no progress yet.
    """
    rows = list(progress)
    if not rows:
        return 0, frozenset()
    cycle = max(row.cycle_number for row in rows)
    return cycle, frozenset(row.question_id for row in rows if row.cycle_number == cycle)


class QuestionPoolCycler:
    """Non-repeating batch selection across sessions."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng

    def select(
        self,
        pool: Sequence[Question],
        progress: Iterable[QuestionProgress],
        requested_count: int,
    ) -> CycleSelection:
        """
        Pick ``requested_count`` questions (capped at the pool size).

        Args:
            pool: Every question of the sub-topic
            progress: The student's progress rows for the sub-topic
            requested_count: Batch size

        Raises:
            EmptyPoolError: ``pool`` is empty
            ValueError: ``requested_count`` < 1
        """
        if requested_count < 1:
            raise ValueError(f"requested_count must be positive, got {requested_count}")

        unique_pool = list({q.id: q for q in pool}.values())
        if not unique_pool:
            raise EmptyPoolError("Question pool is empty")

        previous_cycle, answered = current_cycle(progress)
        cycle = max(previous_cycle, 1)
        count = min(requested_count, len(unique_pool))

        unanswered = [q for q in unique_pool if q.id not in answered]

        if len(unanswered) >= count:
            batch = shuffled(unanswered, self.rng)[:count]
            return CycleSelection(
                questions=tuple(batch),
                cycle_number=cycle,
                previous_cycle=previous_cycle,
            )

        carried_ids = frozenset(q.id for q in unanswered)
        rest = [q for q in unique_pool if q.id not in carried_ids]
        fresh = shuffled(rest, self.rng)[: count - len(unanswered)]
        batch = shuffled(unanswered + fresh, self.rng)

        return CycleSelection(
            questions=tuple(batch),
            cycle_number=cycle + 1,
            previous_cycle=previous_cycle,
            carried_over_ids=carried_ids,
        )
