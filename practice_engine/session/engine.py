"""
Practice Session Engine: orchestration of the session lifecycle.

States (per ``SessionContext``): NO_SESSION -> ACTIVE -> COMPLETED.
ACTIVE is also the state of a resumed, unfinished session.

Architecture:
- Permission -> practice_engine.entitlement (EntitlementGate)
- Hierarchy names -> practice_engine.curriculum (CurriculumCatalog)
- Batch selection -> practice_engine.selection (QuestionPoolCycler)
- Correctness -> practice_engine.evaluation
- In-memory transitions -> practice_engine.session.state
- Durable records -> PracticeStorage collaborator
"""
from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import ValidationError

from config import Settings, get_settings
from practice_engine.curriculum.catalog import CurriculumCatalog
from practice_engine.entitlement.gate import EntitlementGate
from practice_engine.errors import (
    CollaboratorError,
    CycleConflictError,
    ErrorKind,
    RecordNotFoundError,
    Result,
    SessionAlreadyCompletedError,
)
from practice_engine.evaluation import AnswerSelection, evaluate_answer, selection_shape_error
from practice_engine.models import PracticeAnswer, PracticeSession, SessionLimitStatus, UserRole
from practice_engine.protocols import IdentityProvider, PracticeStorage, QuestionProvider, SummaryRequester
from practice_engine.selection.cycler import CycleSelection, EmptyPoolError, QuestionPoolCycler
from practice_engine.storage.records import NewAnswer, NewSessionRequest, session_from_record

from . import state
from .context import SessionContext
from .history import SessionHistory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PracticeSessionEngine:
    """
    Drives practice sessions for any number of ``SessionContext`` objects.

    Shared, read-mostly state (entitlement caches, curriculum index) lives on
    the engine; everything mutable about a student's session lives on the
    context passed into each call.
    """

    def __init__(
        self,
        storage: PracticeStorage,
        questions: QuestionProvider,
        curriculum: CurriculumCatalog,
        gate: EntitlementGate,
        identity: IdentityProvider,
        summaries: SummaryRequester | None = None,
        cycler: QuestionPoolCycler | None = None,
        settings: Settings | None = None,
    ):
        self.storage = storage
        self.questions = questions
        self.curriculum = curriculum
        self.gate = gate
        self.identity = identity
        self.summaries = summaries
        self.cycler = cycler or QuestionPoolCycler()
        self.settings = settings or get_settings()
        self._background: set[asyncio.Task] = set()

    # ========================================
    # Context
    # ========================================

    async def open_context(self) -> Result[SessionContext]:
        """Create a context for the signed-in user."""
        try:
            user = await self.identity.current_user()
        except CollaboratorError as e:
            logger.error("Identity lookup failed: {}", e)
            return Result.failure(ErrorKind.REMOTE, f"Identity lookup failed: {e}")
        if user is None:
            return Result.failure(ErrorKind.UNAUTHENTICATED, "Not authenticated")
        return Result.success(
            SessionContext(identity=user, history=SessionHistory(self.settings.session_history_size))
        )

    async def check_session_limit(self, ctx: SessionContext, force: bool = False) -> SessionLimitStatus:
        if ctx.identity.role is not UserRole.STUDENT:
            return SessionLimitStatus(
                can_start_session=False, sessions_today=0, session_limit=0, remaining_sessions=0
            )
        return await self.gate.check_session_limit(ctx.student_id, force=force)

    # ========================================
    # Start
    # ========================================

    async def start_session(
        self,
        ctx: SessionContext,
        sub_topic_id: str,
        question_count: int | None = None,
    ) -> Result[PracticeSession]:
        """
        Start a new session on a sub-topic.

        The session, its ordered question list and the progress rows are
        created in one storage transaction; on any failure nothing exists.
        """
        if not ctx.identity.is_student:
            return Result.failure(ErrorKind.UNAUTHORIZED, "Only students can start practice sessions")
        if ctx.is_active:
            return Result.failure(
                ErrorKind.INVALID_STATE,
                "A session is already active; complete or end it first",
                session_id=ctx.current.id,
            )

        count = self.settings.default_question_count if question_count is None else question_count
        if count < 1:
            return Result.failure(ErrorKind.VALIDATION, f"Question count must be positive, got {count}")
        count = min(count, self.settings.max_question_count)

        limit = await self.gate.check_session_limit(ctx.student_id)
        if not limit.can_start_session:
            return Result.failure(
                ErrorKind.LIMIT_REACHED,
                "Daily session limit reached",
                session_limit=limit.session_limit,
                remaining_sessions=limit.remaining_sessions,
                sessions_today=limit.sessions_today,
            )

        try:
            hierarchy = await self.curriculum.resolve(sub_topic_id)
        except CollaboratorError as e:
            logger.error("Curriculum load failed: {}", e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to load curriculum: {e}")
        if hierarchy is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Topic not found", sub_topic_id=sub_topic_id)

        try:
            pool = await self.questions.fetch_pool_for_sub_topic(sub_topic_id)
        except CollaboratorError as e:
            logger.error("Question pool fetch failed for {}: {}", sub_topic_id, e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to load questions: {e}")
        if not pool:
            return Result.failure(ErrorKind.EMPTY_POOL, "No questions available for this topic")

        attempts = self.settings.cycle_conflict_retries + 1
        selection: CycleSelection | None = None
        session_id: str | None = None
        for attempt in range(attempts):
            try:
                progress = await self.storage.fetch_progress(ctx.student_id, sub_topic_id)
                selection = self.cycler.select(pool, progress, count)
                session_id = await self.storage.create_session_atomic(
                    NewSessionRequest(
                        student_id=ctx.student_id,
                        sub_topic_id=sub_topic_id,
                        grade_level_id=hierarchy.grade_level.id,
                        subject_id=hierarchy.subject.id,
                        question_ids=selection.question_ids,
                        cycle_number=selection.cycle_number,
                        expected_prior_cycle=selection.previous_cycle,
                    )
                )
                break
            except CycleConflictError as e:
                logger.warning(
                    "Cycle conflict starting session on {} (attempt {}/{}): {}",
                    sub_topic_id,
                    attempt + 1,
                    attempts,
                    e,
                )
            except EmptyPoolError:
                return Result.failure(ErrorKind.EMPTY_POOL, "No questions available for this topic")
            except CollaboratorError as e:
                logger.error("Session creation failed for {}: {}", ctx.student_id, e)
                return Result.failure(ErrorKind.REMOTE, f"Failed to start session: {e}")

        if session_id is None or selection is None:
            return Result.failure(
                ErrorKind.REMOTE,
                "Could not reserve questions: concurrent sessions kept advancing the cycle",
            )

        session = PracticeSession(
            id=session_id,
            student_id=ctx.student_id,
            sub_topic_id=sub_topic_id,
            question_ids=selection.question_ids,
            grade_level_id=hierarchy.grade_level.id,
            subject_id=hierarchy.subject.id,
            grade_level_name=hierarchy.grade_level.name,
            subject_name=hierarchy.subject.name,
            topic_name=hierarchy.topic.name,
            sub_topic_name=hierarchy.sub_topic.name,
            created_at=_utcnow(),
            questions=selection.questions,
        )
        ctx.current = session
        ctx.history.record(session)
        self.gate.invalidate_session_limit_cache(ctx.student_id)

        logger.info(
            "Session {} started: student={} sub_topic={} questions={} cycle={}",
            session_id,
            ctx.student_id,
            sub_topic_id,
            session.total_questions,
            selection.cycle_number,
        )
        return Result.success(session)

    # ========================================
    # Answers
    # ========================================

    async def submit_answer(
        self,
        ctx: SessionContext,
        selection: AnswerSelection | Mapping[str, Any],
        time_spent_seconds: int | None = None,
    ) -> Result[PracticeAnswer]:
        """
        Evaluate and record an answer to the current question.

        Counters update immediately so the UI can reveal correctness; a
        storage failure rolls the update back and returns REMOTE.
        """
        session = ctx.current
        if session is None or session.is_completed:
            return Result.failure(ErrorKind.INVALID_STATE, "No active session or question")
        question = session.current_question
        if question is None:
            return Result.failure(ErrorKind.NOT_FOUND, "No current question")

        if not isinstance(selection, AnswerSelection):
            try:
                selection = AnswerSelection.model_validate(selection)
            except ValidationError as e:
                return Result.failure(ErrorKind.VALIDATION, f"Malformed selection: {e}")
        if time_spent_seconds is not None and time_spent_seconds < 0:
            return Result.failure(ErrorKind.VALIDATION, "time_spent_seconds cannot be negative")

        problem = selection_shape_error(question, selection)
        if problem:
            return Result.failure(ErrorKind.VALIDATION, problem, question_id=question.id)

        is_correct = evaluate_answer(question, selection)
        option_ids = selection.option_ids or None
        text = selection.text

        tentative = PracticeAnswer(
            id=None,
            question_id=question.id,
            selected_option_ids=option_ids,
            text_answer=text,
            is_correct=is_correct,
            answered_at=_utcnow(),
            time_spent_seconds=time_spent_seconds,
        )
        ctx.current = state.apply_answer(session, tentative)

        try:
            record = await self.storage.insert_answer(
                NewAnswer(
                    session_id=session.id,
                    question_id=question.id,
                    selected_option_ids=option_ids,
                    text_answer=text,
                    is_correct=is_correct,
                    time_spent_seconds=time_spent_seconds,
                )
            )
        except CollaboratorError as e:
            if self._holds_open(ctx, session.id):
                ctx.current = state.rollback_answer(ctx.current, tentative)
            logger.error("Answer insert failed for session {}: {}", session.id, e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to submit answer: {e}")

        stored = PracticeAnswer(
            id=record.id,
            question_id=record.question_id,
            selected_option_ids=record.selected_option_ids,
            text_answer=record.text_answer,
            is_correct=record.is_correct,
            answered_at=record.answered_at or tentative.answered_at,
            time_spent_seconds=record.time_spent_seconds,
        )
        if self._holds_open(ctx, session.id):
            ctx.current = state.confirm_answer(ctx.current, tentative, stored)
        return Result.success(stored)

    @staticmethod
    def _holds_open(ctx: SessionContext, session_id: str) -> bool:
        """The context still holds ``session_id`` and it has not been completed since."""
        return ctx.holds(session_id) and not ctx.current.is_completed

    # ========================================
    # Navigation
    # ========================================

    async def next_question(self, ctx: SessionContext) -> bool:
        if ctx.current is None:
            return False
        return await self.go_to_question(ctx, ctx.current.current_question_index + 1)

    async def previous_question(self, ctx: SessionContext) -> bool:
        if ctx.current is None:
            return False
        return await self.go_to_question(ctx, ctx.current.current_question_index - 1)

    async def go_to_question(self, ctx: SessionContext, index: int) -> bool:
        """Move to ``index``. Out-of-bounds moves are no-ops returning False."""
        session = ctx.current
        if session is None or session.is_completed:
            return False
        moved = state.move_to(session, index)
        if moved is None:
            return False
        ctx.current = moved

        try:
            await self.storage.update_current_index(session.id, index)
        except CollaboratorError as e:
            logger.warning("Could not persist index {} for session {}: {}", index, session.id, e)
        return True

    # ========================================
    # Completion
    # ========================================

    async def complete_session(self, ctx: SessionContext) -> Result[PracticeSession]:
        """
        Finalize the active session.

        Rewards and the correct count come from storage, never from the
        in-memory counters.
        """
        session = ctx.current
        if session is None:
            return Result.failure(ErrorKind.INVALID_STATE, "No active session")
        if session.is_completed:
            return Result.failure(ErrorKind.ALREADY_COMPLETED, "Session is already completed")

        try:
            outcome = await self.storage.complete_session_atomic(session.id)
        except SessionAlreadyCompletedError:
            return Result.failure(ErrorKind.ALREADY_COMPLETED, "Session is already completed")
        except RecordNotFoundError:
            return Result.failure(ErrorKind.NOT_FOUND, "Session not found", session_id=session.id)
        except CollaboratorError as e:
            logger.error("Session completion failed for {}: {}", session.id, e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to complete session: {e}")

        completed = state.mark_completed(ctx.current if ctx.holds(session.id) else session, outcome, _utcnow())
        if ctx.holds(session.id):
            ctx.current = completed
        ctx.history.update(completed)
        self.gate.invalidate_session_limit_cache(ctx.student_id)

        logger.info(
            "Session {} completed: correct={}/{} xp={} coins={}",
            session.id,
            outcome.correct_count,
            completed.total_questions,
            outcome.xp_earned,
            outcome.coins_earned,
        )

        await self._schedule_summary(ctx, session.id)
        return Result.success(completed)

    async def _schedule_summary(self, ctx: SessionContext, session_id: str) -> None:
        if self.summaries is None:
            return
        status = await self.gate.get_subscription_status(ctx.student_id)
        if not status.can_view_detailed_results:
            return
        task = asyncio.create_task(self._request_summary(ctx, session_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _request_summary(self, ctx: SessionContext, session_id: str) -> None:
        try:
            summary = await self.summaries.request_summary(session_id)
        except CollaboratorError as e:
            logger.warning("AI summary failed for session {}: {}", session_id, e)
            return
        if not summary:
            return

        if ctx.holds(session_id):
            ctx.current = state.attach_summary(ctx.current, summary)
        cached = ctx.history.get(session_id)
        if cached is not None:
            ctx.history.update(state.attach_summary(cached, summary))
        logger.debug("AI summary attached to session {}", session_id)

    async def drain_background_tasks(self) -> None:
        """Wait for pending summary requests."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========================================
    # Loading
    # ========================================

    async def get_session(self, ctx: SessionContext, session_id: str) -> Result[PracticeSession]:
        """
        Full session detail: questions in session order and every answer.

        Questions deleted since the session was taken appear as placeholders.
        """
        try:
            record = await self.storage.fetch_session(session_id)
        except CollaboratorError as e:
            logger.error("Session fetch failed for {}: {}", session_id, e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to fetch session: {e}")
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Session not found", session_id=session_id)
        if record.student_id != ctx.student_id and ctx.identity.role is not UserRole.ADMIN:
            return Result.failure(ErrorKind.UNAUTHORIZED, "Session belongs to another student")

        try:
            answers = await self.storage.fetch_answers(session_id)
            pool = await self.questions.fetch_pool_for_sub_topic(record.sub_topic_id)
            hierarchy = await self.curriculum.resolve(record.sub_topic_id)
        except CollaboratorError as e:
            logger.error("Session detail load failed for {}: {}", session_id, e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to fetch session: {e}")

        return Result.success(session_from_record(record, hierarchy, pool, answers))

    async def resume_session(self, ctx: SessionContext, session_id: str) -> Result[PracticeSession]:
        """Reload an unfinished session into the context."""
        if ctx.is_active:
            return Result.failure(
                ErrorKind.INVALID_STATE,
                "A session is already active; complete or end it first",
                session_id=ctx.current.id,
            )

        loaded = await self.get_session(ctx, session_id)
        if not loaded.ok:
            return loaded
        session = loaded.value
        if session.student_id != ctx.student_id:
            return Result.failure(ErrorKind.UNAUTHORIZED, "Session belongs to another student")
        if session.is_completed:
            return Result.failure(ErrorKind.ALREADY_COMPLETED, "Session is already completed")

        ctx.current = session
        ctx.history.update(session)
        logger.info(
            "Session {} resumed at question {}/{}",
            session.id,
            session.current_question_number,
            session.total_questions,
        )
        return Result.success(session)

    def end_session(self, ctx: SessionContext) -> None:
        """Forget the in-memory session. Storage is untouched."""
        if ctx.current is not None:
            logger.debug("Session {} ended locally", ctx.current.id)
        ctx.current = None

    async def fetch_session_history(self, ctx: SessionContext) -> Result[list[PracticeSession]]:
        """Reload the student's sessions into the history cache, newest first."""
        try:
            records = await self.storage.list_sessions(ctx.student_id)
            await self.curriculum.ensure_loaded()
        except CollaboratorError as e:
            logger.error("History fetch failed for {}: {}", ctx.student_id, e)
            return Result.failure(ErrorKind.REMOTE, f"Failed to fetch session history: {e}")

        index = self.curriculum.index
        sessions = [session_from_record(r, index.resolve(r.sub_topic_id)) for r in records]
        ctx.history.replace_all(sessions)
        return Result.success(ctx.history.sessions())
