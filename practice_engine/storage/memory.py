"""
In-process storage backend.

Implements the storage, question, curriculum, entitlement and identity
collaborators with plain dicts guarded by an ``asyncio.Lock``. Creation and
completion are all-or-nothing, exactly like the SQL backend, so the engine
behaves the same against either.

Failures can be injected per method with ``fail_next`` for tests.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from loguru import logger

from practice_engine.curriculum.models import GradeLevel
from practice_engine.errors import (
    CollaboratorError,
    CycleConflictError,
    RecordNotFoundError,
    SessionAlreadyCompletedError,
)
from practice_engine.models import CompletionResult, Identity, Question, QuestionProgress, StudentWallet
from practice_engine.rewards import RewardConfig, compute_rewards

from .records import AnswerRecord, NewAnswer, NewSessionRequest, SessionRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryPracticeStore:
    """Practice records, progress, tiers and wallets held in memory."""

    def __init__(
        self,
        rewards: RewardConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
        timezone_name: str = "UTC",
    ):
        self.rewards = rewards or RewardConfig()
        self._now = now
        self._tz = ZoneInfo(timezone_name)
        self._lock = asyncio.Lock()
        self._sessions: dict[str, SessionRecord] = {}
        self._answers: dict[str, list[AnswerRecord]] = {}
        self._progress: dict[tuple[str, str, str, int], QuestionProgress] = {}
        self._tiers: dict[str, str | None] = {}
        self._wallets: dict[str, StudentWallet] = {}
        self._failures: dict[str, CollaboratorError] = {}

    # ========================================
    # Test hooks
    # ========================================

    def fail_next(self, method: str, error: CollaboratorError | None = None) -> None:
        """Make the next call to ``method`` raise ``error``."""
        self._failures[method] = error or CollaboratorError(f"{method} unavailable")

    def _check_failure(self, method: str) -> None:
        error = self._failures.pop(method, None)
        if error is not None:
            raise error

    def set_tier(self, student_id: str, tier: str | None) -> None:
        self._tiers[student_id] = tier

    def wallet(self, student_id: str) -> StudentWallet:
        return self._wallets.setdefault(student_id, StudentWallet())

    def add_session(self, record: SessionRecord) -> None:
        """Seed a session record directly (history imports, fixtures)."""
        self._sessions[record.id] = record
        self._answers.setdefault(record.id, [])

    def _get(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise RecordNotFoundError(f"Session {session_id} not found")
        return record

    def _highest_cycle(self, student_id: str, sub_topic_id: str) -> int:
        return max(
            (
                row.cycle_number
                for (sid, stid, _, _), row in self._progress.items()
                if sid == student_id and stid == sub_topic_id
            ),
            default=0,
        )

    def _insert_progress(self, rows: Iterable[QuestionProgress]) -> int:
        inserted = 0
        for row in rows:
            key = (row.student_id, row.sub_topic_id, row.question_id, row.cycle_number)
            if key not in self._progress:
                self._progress[key] = row
                inserted += 1
        return inserted

    # ========================================
    # PracticeStorage
    # ========================================

    async def create_session_atomic(self, request: NewSessionRequest) -> str:
        self._check_failure("create_session_atomic")
        if not request.question_ids:
            raise CollaboratorError("Cannot create a session without questions")

        async with self._lock:
            actual = self._highest_cycle(request.student_id, request.sub_topic_id)
            if actual != request.expected_prior_cycle:
                raise CycleConflictError(request.expected_prior_cycle, actual)

            session_id = str(uuid.uuid4())
            self._sessions[session_id] = SessionRecord(
                id=session_id,
                student_id=request.student_id,
                sub_topic_id=request.sub_topic_id,
                grade_level_id=request.grade_level_id,
                subject_id=request.subject_id,
                question_ids=tuple(request.question_ids),
                created_at=self._now(),
            )
            self._answers[session_id] = []
            self._insert_progress(
                QuestionProgress(
                    student_id=request.student_id,
                    sub_topic_id=request.sub_topic_id,
                    question_id=qid,
                    cycle_number=request.cycle_number,
                )
                for qid in request.question_ids
            )

        logger.debug("Stored session {} with {} questions", session_id, len(request.question_ids))
        return session_id

    async def insert_answer(self, answer: NewAnswer) -> AnswerRecord:
        self._check_failure("insert_answer")
        async with self._lock:
            record = self._get(answer.session_id)
            if record.completed_at is not None:
                raise SessionAlreadyCompletedError(f"Session {answer.session_id} is already completed")
            stored = AnswerRecord(
                id=str(uuid.uuid4()),
                session_id=answer.session_id,
                question_id=answer.question_id,
                selected_option_ids=answer.selected_option_ids,
                text_answer=answer.text_answer,
                is_correct=answer.is_correct,
                answered_at=self._now(),
                time_spent_seconds=answer.time_spent_seconds,
            )
            self._answers[answer.session_id].append(stored)
        return stored

    async def update_current_index(self, session_id: str, index: int) -> None:
        self._check_failure("update_current_index")
        async with self._lock:
            record = self._get(session_id)
            self._sessions[session_id] = replace(record, current_question_index=index)

    async def complete_session_atomic(self, session_id: str) -> CompletionResult:
        self._check_failure("complete_session_atomic")
        async with self._lock:
            record = self._get(session_id)
            if record.completed_at is not None:
                raise SessionAlreadyCompletedError(f"Session {session_id} is already completed")

            answers = self._answers.get(session_id, [])
            correct = sum(1 for a in answers if a.is_correct)
            total_time = sum(a.time_spent_seconds or 0 for a in answers)
            xp, coins = compute_rewards(correct, self.rewards)
            completed_at = self._now()

            self._sessions[session_id] = replace(
                record,
                correct_count=correct,
                total_time_seconds=total_time,
                xp_earned=xp,
                coins_earned=coins,
                completed_at=completed_at,
            )
            wallet = self.wallet(record.student_id)
            wallet.xp += xp
            wallet.coins += coins
            wallet.practiced_days.add(completed_at.astimezone(self._tz).date().isoformat())

        return CompletionResult(
            xp_earned=xp,
            coins_earned=coins,
            correct_count=correct,
            total_time_seconds=total_time,
        )

    async def fetch_session(self, session_id: str) -> SessionRecord | None:
        self._check_failure("fetch_session")
        return self._sessions.get(session_id)

    async def fetch_answers(self, session_id: str) -> list[AnswerRecord]:
        self._check_failure("fetch_answers")
        return list(self._answers.get(session_id, []))

    async def fetch_progress(self, student_id: str, sub_topic_id: str) -> list[QuestionProgress]:
        self._check_failure("fetch_progress")
        return [
            row
            for row in self._progress.values()
            if row.student_id == student_id and row.sub_topic_id == sub_topic_id
        ]

    async def upsert_progress(self, rows: Iterable[QuestionProgress]) -> int:
        self._check_failure("upsert_progress")
        async with self._lock:
            return self._insert_progress(rows)

    async def list_sessions(self, student_id: str) -> list[SessionRecord]:
        self._check_failure("list_sessions")
        records = [r for r in self._sessions.values() if r.student_id == student_id]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(records, key=lambda r: r.created_at or oldest, reverse=True)

    # ========================================
    # EntitlementProvider
    # ========================================

    async def fetch_tier(self, student_id: str) -> str | None:
        self._check_failure("fetch_tier")
        return self._tiers.get(student_id)

    async def count_completed_sessions_today(self, student_id: str) -> int:
        self._check_failure("count_completed_sessions_today")
        today = self._now().astimezone(self._tz).date()
        return sum(
            1
            for r in self._sessions.values()
            if r.student_id == student_id
            and r.completed_at is not None
            and r.completed_at.astimezone(self._tz).date() == today
        )


class InMemoryQuestionBank:
    """Question pools and the curriculum tree, held in memory."""

    def __init__(self, grade_levels: Iterable[GradeLevel] = (), questions: Iterable[Question] = ()):
        self._grade_levels = list(grade_levels)
        self._questions: dict[str, Question] = {}
        self._failures: dict[str, CollaboratorError] = {}
        for question in questions:
            self.add_question(question)

    def fail_next(self, method: str, error: CollaboratorError | None = None) -> None:
        self._failures[method] = error or CollaboratorError(f"{method} unavailable")

    def _check_failure(self, method: str) -> None:
        error = self._failures.pop(method, None)
        if error is not None:
            raise error

    def add_question(self, question: Question) -> None:
        if question.sub_topic_id is None:
            raise ValueError(f"Question {question.id} has no sub-topic")
        self._questions[question.id] = question

    def delete_question(self, question_id: str) -> bool:
        """Soft delete: the question leaves every pool; answers keep its id."""
        question = self._questions.get(question_id)
        if question is None or question.is_deleted:
            return False
        self._questions[question_id] = replace(question, is_deleted=True)
        return True

    def set_hierarchy(self, grade_levels: Iterable[GradeLevel]) -> None:
        self._grade_levels = list(grade_levels)

    async def fetch_pool_for_sub_topic(self, sub_topic_id: str) -> list[Question]:
        self._check_failure("fetch_pool_for_sub_topic")
        return [q for q in self._questions.values() if q.sub_topic_id == sub_topic_id and not q.is_deleted]

    async def fetch_hierarchy(self) -> list[GradeLevel]:
        self._check_failure("fetch_hierarchy")
        return list(self._grade_levels)


class StaticIdentity:
    """Identity provider returning a fixed user (or nobody)."""

    def __init__(self, identity: Identity | None = None):
        self.identity = identity

    async def current_user(self) -> Identity | None:
        return self.identity
