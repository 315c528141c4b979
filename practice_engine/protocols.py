"""
Collaborator contracts consumed by the practice engine.

Every method is async and fallible: implementations raise
``CollaboratorError`` (or a subclass from ``practice_engine.errors``) when the
underlying store or service fails. ``InMemoryPracticeStore`` and
``SqlPracticeStore`` implement the storage-side protocols.
"""
from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from practice_engine.curriculum.models import GradeLevel
from practice_engine.models import CompletionResult, Identity, Question, QuestionProgress
from practice_engine.storage.records import AnswerRecord, NewAnswer, NewSessionRequest, SessionRecord


@runtime_checkable
class PracticeStorage(Protocol):
    """Durable practice records. The source of truth after any reload."""

    async def create_session_atomic(self, request: NewSessionRequest) -> str:
        """
        Create session, ordered question list and progress rows in one transaction.

        Raises:
            CycleConflictError: the prior cycle no longer matches the request
            CollaboratorError: nothing was created
        """
        ...

    async def insert_answer(self, answer: NewAnswer) -> AnswerRecord:
        ...

    async def update_current_index(self, session_id: str, index: int) -> None:
        ...

    async def complete_session_atomic(self, session_id: str) -> CompletionResult:
        """
        Finalize a session: count correct answers, compute and award rewards.

        Raises:
            RecordNotFoundError: unknown session
            SessionAlreadyCompletedError: ``completed_at`` already set
        """
        ...

    async def fetch_session(self, session_id: str) -> SessionRecord | None:
        ...

    async def fetch_answers(self, session_id: str) -> list[AnswerRecord]:
        ...

    async def fetch_progress(self, student_id: str, sub_topic_id: str) -> list[QuestionProgress]:
        ...

    async def upsert_progress(self, rows: Iterable[QuestionProgress]) -> int:
        """Insert progress rows, ignoring existing tuples. Returns rows inserted."""
        ...

    async def list_sessions(self, student_id: str) -> list[SessionRecord]:
        """All sessions of a student, newest first."""
        ...


@runtime_checkable
class QuestionProvider(Protocol):
    async def fetch_pool_for_sub_topic(self, sub_topic_id: str) -> list[Question]:
        ...


@runtime_checkable
class CurriculumProvider(Protocol):
    async def fetch_hierarchy(self) -> list[GradeLevel]:
        ...


@runtime_checkable
class EntitlementProvider(Protocol):
    async def fetch_tier(self, student_id: str) -> str | None:
        ...

    async def count_completed_sessions_today(self, student_id: str) -> int:
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    async def current_user(self) -> Identity | None:
        ...


@runtime_checkable
class SummaryRequester(Protocol):
    async def request_summary(self, session_id: str) -> str | None:
        ...
