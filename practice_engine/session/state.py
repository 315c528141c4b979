"""
Pure state transitions for an in-memory practice session.

Answer submission is optimistic: ``apply_answer`` is applied before storage
confirms, then either ``confirm_answer`` swaps in the stored answer or
``rollback_answer`` compensates. Rollback subtracts only what the tentative
answer added, so answers applied in the meantime are kept.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from practice_engine.models import CompletionResult, PracticeAnswer, PracticeSession


def apply_answer(session: PracticeSession, answer: PracticeAnswer) -> PracticeSession:
    return replace(
        session,
        answers=session.answers + (answer,),
        answered_count=session.answered_count + 1,
        correct_count=session.correct_count + (1 if answer.is_correct else 0),
        total_time_seconds=session.total_time_seconds + (answer.time_spent_seconds or 0),
    )


def rollback_answer(session: PracticeSession, answer: PracticeAnswer) -> PracticeSession:
    if not any(a is answer for a in session.answers):
        return session
    return replace(
        session,
        answers=tuple(a for a in session.answers if a is not answer),
        answered_count=max(0, session.answered_count - 1),
        correct_count=max(0, session.correct_count - (1 if answer.is_correct else 0)),
        total_time_seconds=max(0, session.total_time_seconds - (answer.time_spent_seconds or 0)),
    )


def confirm_answer(
    session: PracticeSession,
    tentative: PracticeAnswer,
    stored: PracticeAnswer,
) -> PracticeSession:
    """Replace the tentative answer by the stored one. Counters already include it."""
    return replace(
        session,
        answers=tuple(stored if a is tentative else a for a in session.answers),
    )


def move_to(session: PracticeSession, index: int) -> PracticeSession | None:
    """New session at ``index``, or None when the index is out of bounds."""
    if not 0 <= index < session.total_questions:
        return None
    return replace(session, current_question_index=index)


def mark_completed(
    session: PracticeSession,
    result: CompletionResult,
    completed_at: datetime,
) -> PracticeSession:
    """Terminal transition. The server's counts replace the optimistic ones."""
    return replace(
        session,
        completed_at=completed_at,
        correct_count=result.correct_count,
        total_time_seconds=result.total_time_seconds or session.total_time_seconds,
        xp_earned=result.xp_earned,
        coins_earned=result.coins_earned,
    )


def attach_summary(session: PracticeSession, summary: str) -> PracticeSession:
    """The one change allowed after completion."""
    return replace(session, ai_summary=summary)
