"""
Per-student session context.

Each student (or browser tab, or CLI run) owns one ``SessionContext``. The
engine never keeps a current session of its own, so any number of contexts
can be driven side by side.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from practice_engine.models import Identity, PracticeAnswer, PracticeSession, Question, SessionState

from .history import SessionHistory


@dataclass
class SessionContext:
    """The current session (at most one) and the history cache of one student."""
    identity: Identity
    current: PracticeSession | None = None
    history: SessionHistory = field(default_factory=SessionHistory)

    @property
    def student_id(self) -> str:
        return self.identity.id

    @property
    def state(self) -> SessionState:
        if self.current is None:
            return SessionState.NO_SESSION
        if self.current.is_completed:
            return SessionState.COMPLETED
        return SessionState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def current_question(self) -> Question | None:
        return self.current.current_question if self.current else None

    @property
    def current_answer(self) -> PracticeAnswer | None:
        question = self.current_question
        if self.current is None or question is None:
            return None
        return self.current.answer_for(question.id)

    @property
    def is_current_question_answered(self) -> bool:
        return self.current_answer is not None

    def holds(self, session_id: str) -> bool:
        return self.current is not None and self.current.id == session_id
