"""
PostgreSQL practice store.

Implements PracticeStorage, QuestionProvider, CurriculumProvider and
EntitlementProvider with ``text()`` queries on an ``AsyncSession``.

Session creation holds a transaction-scoped advisory lock per
(student, sub-topic) and re-reads the highest progress cycle under it, so two
concurrent starts cannot both claim the same cycle transition.
"""
from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, time as dt_time, timedelta
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from practice_engine.curriculum.models import GradeLevel, Subject, SubTopic, Topic
from practice_engine.errors import (
    CollaboratorError,
    CycleConflictError,
    RecordNotFoundError,
    SessionAlreadyCompletedError,
)
from practice_engine.models import CompletionResult, Question, QuestionOption, QuestionProgress, QuestionType
from practice_engine.rewards import RewardConfig, compute_rewards
from practice_engine.storage.records import AnswerRecord, NewAnswer, NewSessionRequest, SessionRecord

from .database import async_session_scope

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _mapping(row: Any) -> Any:
    return row._mapping if hasattr(row, "_mapping") else row


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


class SqlPracticeStore:
    """Storage and provider collaborators backed by PostgreSQL."""

    def __init__(
        self,
        scope: SessionScope = async_session_scope,
        rewards: RewardConfig | None = None,
        timezone_name: str | None = None,
        today: Callable[[ZoneInfo], date] | None = None,
    ):
        self._scope = scope
        self.rewards = rewards or RewardConfig.from_settings()
        self._tz = ZoneInfo(timezone_name or get_settings().timezone)
        self._today = today or (lambda tz: datetime.now(tz).date())

    def _day_bounds(self) -> tuple[datetime, datetime]:
        """Start and end of the current local day, as aware datetimes."""
        day = self._today(self._tz)
        start = datetime.combine(day, dt_time.min, tzinfo=self._tz)
        return start, start + timedelta(days=1)

    # ========================================
    # PracticeStorage
    # ========================================

    async def create_session_atomic(self, request: NewSessionRequest) -> str:
        if not request.question_ids:
            raise CollaboratorError("Cannot create a session without questions")
        try:
            async with self._scope() as session:
                await session.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
                    {"lock_key": f"practice:{request.student_id}:{request.sub_topic_id}"},
                )
                result = await session.execute(
                    text(
                        """
                        SELECT COALESCE(MAX(cycle_number), 0)
                        FROM student_question_progress
                        WHERE student_id = :student_id AND sub_topic_id = :sub_topic_id
                        """
                    ),
                    {"student_id": request.student_id, "sub_topic_id": request.sub_topic_id},
                )
                actual = result.scalar_one() or 0
                if actual != request.expected_prior_cycle:
                    raise CycleConflictError(request.expected_prior_cycle, actual)

                result = await session.execute(
                    text(
                        """
                        INSERT INTO practice_sessions (
                            student_id, sub_topic_id, grade_level_id, subject_id, total_questions
                        ) VALUES (:student_id, :sub_topic_id, :grade_level_id, :subject_id, :total_questions)
                        RETURNING id
                        """
                    ),
                    {
                        "student_id": request.student_id,
                        "sub_topic_id": request.sub_topic_id,
                        "grade_level_id": request.grade_level_id,
                        "subject_id": request.subject_id,
                        "total_questions": len(request.question_ids),
                    },
                )
                session_id = str(result.scalar_one())

                await session.execute(
                    text(
                        """
                        INSERT INTO session_questions (session_id, question_id, question_order)
                        VALUES (:session_id, :question_id, :question_order)
                        """
                    ),
                    [
                        {"session_id": session_id, "question_id": qid, "question_order": order}
                        for order, qid in enumerate(request.question_ids)
                    ],
                )
                await session.execute(
                    text(
                        """
                        INSERT INTO student_question_progress (
                            student_id, sub_topic_id, question_id, cycle_number
                        ) VALUES (:student_id, :sub_topic_id, :question_id, :cycle_number)
                        ON CONFLICT (student_id, sub_topic_id, question_id, cycle_number) DO NOTHING
                        """
                    ),
                    [
                        {
                            "student_id": request.student_id,
                            "sub_topic_id": request.sub_topic_id,
                            "question_id": qid,
                            "cycle_number": request.cycle_number,
                        }
                        for qid in request.question_ids
                    ],
                )
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to create session: {e}") from e

        logger.debug(
            "Created session {} (cycle {}, {} questions)",
            session_id,
            request.cycle_number,
            len(request.question_ids),
        )
        return session_id

    async def insert_answer(self, answer: NewAnswer) -> AnswerRecord:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text("SELECT completed_at FROM practice_sessions WHERE id = :session_id"),
                    {"session_id": answer.session_id},
                )
                row = result.first()
                if row is None:
                    raise RecordNotFoundError(f"Session {answer.session_id} not found")
                if _mapping(row)["completed_at"] is not None:
                    raise SessionAlreadyCompletedError(f"Session {answer.session_id} is already completed")

                result = await session.execute(
                    text(
                        """
                        INSERT INTO practice_answers (
                            session_id, question_id, selected_option_ids, text_answer,
                            is_correct, time_spent_seconds
                        ) VALUES (
                            :session_id, :question_id, :selected_option_ids, :text_answer,
                            :is_correct, :time_spent_seconds
                        )
                        RETURNING id, answered_at
                        """
                    ),
                    {
                        "session_id": answer.session_id,
                        "question_id": answer.question_id,
                        "selected_option_ids": list(answer.selected_option_ids)
                        if answer.selected_option_ids is not None
                        else None,
                        "text_answer": answer.text_answer,
                        "is_correct": answer.is_correct,
                        "time_spent_seconds": answer.time_spent_seconds,
                    },
                )
                inserted = _mapping(result.first())
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to insert answer: {e}") from e

        return AnswerRecord(
            id=str(inserted["id"]),
            session_id=answer.session_id,
            question_id=answer.question_id,
            selected_option_ids=answer.selected_option_ids,
            text_answer=answer.text_answer,
            is_correct=answer.is_correct,
            answered_at=inserted["answered_at"],
            time_spent_seconds=answer.time_spent_seconds,
        )

    async def update_current_index(self, session_id: str, index: int) -> None:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        UPDATE practice_sessions
                        SET current_question_index = :index
                        WHERE id = :session_id
                        """
                    ),
                    {"session_id": session_id, "index": index},
                )
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to update question index: {e}") from e
        if result.rowcount == 0:
            raise RecordNotFoundError(f"Session {session_id} not found")

    async def complete_session_atomic(self, session_id: str) -> CompletionResult:
        """
        Score and close a session in one transaction.

        Correct count and time come from the stored answers; rewards are
        credited to the student's profile and the day is marked as practiced.
        """
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT student_id, completed_at
                        FROM practice_sessions
                        WHERE id = :session_id
                        FOR UPDATE
                        """
                    ),
                    {"session_id": session_id},
                )
                row = result.first()
                if row is None:
                    raise RecordNotFoundError(f"Session {session_id} not found")
                row = _mapping(row)
                if row["completed_at"] is not None:
                    raise SessionAlreadyCompletedError(f"Session {session_id} is already completed")
                student_id = str(row["student_id"])

                result = await session.execute(
                    text(
                        """
                        SELECT
                            COUNT(*) FILTER (WHERE is_correct) AS correct_count,
                            COALESCE(SUM(time_spent_seconds), 0) AS total_time
                        FROM practice_answers
                        WHERE session_id = :session_id
                        """
                    ),
                    {"session_id": session_id},
                )
                totals = _mapping(result.first())
                correct = int(totals["correct_count"] or 0)
                total_time = int(totals["total_time"] or 0)
                xp, coins = compute_rewards(correct, self.rewards)

                await session.execute(
                    text(
                        """
                        UPDATE practice_sessions
                        SET completed_at = NOW(), correct_count = :correct_count,
                            total_time_seconds = :total_time, xp_earned = :xp, coins_earned = :coins
                        WHERE id = :session_id
                        """
                    ),
                    {
                        "session_id": session_id,
                        "correct_count": correct,
                        "total_time": total_time,
                        "xp": xp,
                        "coins": coins,
                    },
                )
                await session.execute(
                    text(
                        """
                        UPDATE student_profiles
                        SET xp = xp + :xp, coins = coins + :coins
                        WHERE id = :student_id
                        """
                    ),
                    {"student_id": student_id, "xp": xp, "coins": coins},
                )
                await session.execute(
                    text(
                        """
                        INSERT INTO daily_statuses (student_id, date, has_practiced)
                        VALUES (:student_id, :day, TRUE)
                        ON CONFLICT (student_id, date) DO UPDATE SET has_practiced = TRUE
                        """
                    ),
                    {"student_id": student_id, "day": self._today(self._tz)},
                )
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to complete session: {e}") from e

        logger.debug("Completed session {}: correct={} xp={} coins={}", session_id, correct, xp, coins)
        return CompletionResult(
            xp_earned=xp,
            coins_earned=coins,
            correct_count=correct,
            total_time_seconds=total_time,
        )

    async def fetch_session(self, session_id: str) -> SessionRecord | None:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text("SELECT * FROM practice_sessions WHERE id = :session_id"),
                    {"session_id": session_id},
                )
                row = result.first()
                if row is None:
                    return None
                result = await session.execute(
                    text(
                        """
                        SELECT question_id
                        FROM session_questions
                        WHERE session_id = :session_id
                        ORDER BY question_order
                        """
                    ),
                    {"session_id": session_id},
                )
                question_ids = tuple(str(r[0]) for r in result.fetchall())
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to fetch session: {e}") from e
        return self._row_to_session(row, question_ids)

    async def fetch_answers(self, session_id: str) -> list[AnswerRecord]:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT *
                        FROM practice_answers
                        WHERE session_id = :session_id
                        ORDER BY answered_at ASC
                        """
                    ),
                    {"session_id": session_id},
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to fetch answers: {e}") from e
        return [self._row_to_answer(row) for row in rows]

    async def fetch_progress(self, student_id: str, sub_topic_id: str) -> list[QuestionProgress]:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT question_id, cycle_number
                        FROM student_question_progress
                        WHERE student_id = :student_id AND sub_topic_id = :sub_topic_id
                        """
                    ),
                    {"student_id": student_id, "sub_topic_id": sub_topic_id},
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to fetch progress: {e}") from e
        return [
            QuestionProgress(
                student_id=student_id,
                sub_topic_id=sub_topic_id,
                question_id=str(row[0]),
                cycle_number=int(row[1]),
            )
            for row in rows
        ]

    async def upsert_progress(self, rows: Iterable[QuestionProgress]) -> int:
        params = [
            {
                "student_id": r.student_id,
                "sub_topic_id": r.sub_topic_id,
                "question_id": r.question_id,
                "cycle_number": r.cycle_number,
            }
            for r in rows
        ]
        if not params:
            return 0
        inserted = 0
        try:
            async with self._scope() as session:
                for param in params:
                    result = await session.execute(
                        text(
                            """
                            INSERT INTO student_question_progress (
                                student_id, sub_topic_id, question_id, cycle_number
                            ) VALUES (:student_id, :sub_topic_id, :question_id, :cycle_number)
                            ON CONFLICT (student_id, sub_topic_id, question_id, cycle_number) DO NOTHING
                            """
                        ),
                        param,
                    )
                    inserted += result.rowcount
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to upsert progress: {e}") from e
        return inserted

    async def list_sessions(self, student_id: str) -> list[SessionRecord]:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT ps.*,
                            ARRAY(
                                SELECT sq.question_id::text
                                FROM session_questions sq
                                WHERE sq.session_id = ps.id
                                ORDER BY sq.question_order
                            ) AS question_ids
                        FROM practice_sessions ps
                        WHERE ps.student_id = :student_id
                        ORDER BY ps.created_at DESC
                        """
                    ),
                    {"student_id": student_id},
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to list sessions: {e}") from e
        return [self._row_to_session(row, tuple(_mapping(row)["question_ids"] or ())) for row in rows]

    # ========================================
    # QuestionProvider / CurriculumProvider
    # ========================================

    async def fetch_pool_for_sub_topic(self, sub_topic_id: str) -> list[Question]:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT q.id, q.type, q.question, q.answer, q.explanation, q.image_path,
                            o.option_key, o.text AS option_text, o.image_path AS option_image_path,
                            o.is_correct
                        FROM questions q
                        LEFT JOIN question_options o ON o.question_id = q.id
                        WHERE q.sub_topic_id = :sub_topic_id AND NOT q.is_deleted
                        ORDER BY q.created_at, q.id, o.option_key
                        """
                    ),
                    {"sub_topic_id": sub_topic_id},
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to fetch questions: {e}") from e

        questions: dict[str, dict[str, Any]] = {}
        for row in rows:
            m = _mapping(row)
            qid = str(m["id"])
            entry = questions.setdefault(qid, {"row": m, "options": []})
            if m["option_key"] is not None:
                entry["options"].append(
                    QuestionOption(
                        id=m["option_key"],
                        text=m["option_text"],
                        image_path=m["option_image_path"],
                        is_correct=bool(m["is_correct"]),
                    )
                )

        pool = []
        for qid, entry in questions.items():
            m = entry["row"]
            try:
                qtype = QuestionType(m["type"])
            except ValueError:
                logger.warning("Skipping question {} with unknown type {!r}", qid, m["type"])
                continue
            pool.append(
                Question(
                    id=qid,
                    type=qtype,
                    prompt=m["question"],
                    options=tuple(entry["options"]),
                    answer=m["answer"],
                    explanation=m["explanation"],
                    image_path=m["image_path"],
                    sub_topic_id=sub_topic_id,
                )
            )
        return pool

    async def fetch_hierarchy(self) -> list[GradeLevel]:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT g.id AS grade_level_id, g.name AS grade_level_name,
                            s.id AS subject_id, s.name AS subject_name,
                            t.id AS topic_id, t.name AS topic_name,
                            st.id AS sub_topic_id, st.name AS sub_topic_name,
                            (
                                SELECT COUNT(*) FROM questions q
                                WHERE q.sub_topic_id = st.id AND NOT q.is_deleted
                            ) AS question_count
                        FROM grade_levels g
                        LEFT JOIN subjects s ON s.grade_level_id = g.id
                        LEFT JOIN topics t ON t.subject_id = s.id
                        LEFT JOIN sub_topics st ON st.topic_id = t.id
                        ORDER BY g.display_order, g.name, s.display_order, s.name,
                            t.display_order, t.name, st.display_order, st.name
                        """
                    )
                )
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to fetch curriculum: {e}") from e
        return _build_tree(rows)

    # ========================================
    # EntitlementProvider
    # ========================================

    async def fetch_tier(self, student_id: str) -> str | None:
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text("SELECT subscription_tier FROM student_profiles WHERE id = :student_id"),
                    {"student_id": student_id},
                )
                row = result.first()
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to fetch subscription tier: {e}") from e
        return row[0] if row is not None else None

    async def count_completed_sessions_today(self, student_id: str) -> int:
        start, end = self._day_bounds()
        try:
            async with self._scope() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT COUNT(*)
                        FROM practice_sessions
                        WHERE student_id = :student_id
                          AND completed_at >= :day_start
                          AND completed_at < :day_end
                        """
                    ),
                    {"student_id": student_id, "day_start": start, "day_end": end},
                )
                return int(result.scalar_one() or 0)
        except SQLAlchemyError as e:
            raise CollaboratorError(f"Failed to count sessions: {e}") from e

    # ========================================
    # Row conversion
    # ========================================

    def _row_to_session(self, row: Any, question_ids: tuple[str, ...]) -> SessionRecord:
        m = _mapping(row)
        return SessionRecord(
            id=str(m["id"]),
            student_id=str(m["student_id"]),
            sub_topic_id=str(m["sub_topic_id"]),
            grade_level_id=_str_or_none(m.get("grade_level_id")),
            subject_id=_str_or_none(m.get("subject_id")),
            question_ids=tuple(str(q) for q in question_ids),
            current_question_index=m.get("current_question_index") or 0,
            correct_count=m.get("correct_count") or 0,
            total_time_seconds=m.get("total_time_seconds") or 0,
            xp_earned=m.get("xp_earned"),
            coins_earned=m.get("coins_earned"),
            created_at=m.get("created_at"),
            completed_at=m.get("completed_at"),
            ai_summary=m.get("ai_summary"),
        )

    def _row_to_answer(self, row: Any) -> AnswerRecord:
        m = _mapping(row)
        selected = m.get("selected_option_ids")
        return AnswerRecord(
            id=str(m["id"]),
            session_id=str(m["session_id"]),
            question_id=_str_or_none(m.get("question_id")),
            selected_option_ids=tuple(selected) if selected is not None else None,
            text_answer=m.get("text_answer"),
            is_correct=bool(m["is_correct"]),
            answered_at=m.get("answered_at"),
            time_spent_seconds=m.get("time_spent_seconds"),
        )


def _build_tree(rows: Iterable[Any]) -> list[GradeLevel]:
    """Fold flat LEFT JOIN rows into the grade -> subject -> topic -> sub-topic tree."""
    grades: dict[str, dict[str, Any]] = {}
    for row in rows:
        m = _mapping(row)
        grade = grades.setdefault(
            str(m["grade_level_id"]), {"name": m["grade_level_name"], "subjects": {}}
        )
        if m["subject_id"] is None:
            continue
        subject = grade["subjects"].setdefault(
            str(m["subject_id"]), {"name": m["subject_name"], "topics": {}}
        )
        if m["topic_id"] is None:
            continue
        topic = subject["topics"].setdefault(
            str(m["topic_id"]), {"name": m["topic_name"], "sub_topics": []}
        )
        if m["sub_topic_id"] is None:
            continue
        topic["sub_topics"].append(
            SubTopic(
                id=str(m["sub_topic_id"]),
                name=m["sub_topic_name"],
                topic_id=str(m["topic_id"]),
                question_count=int(m["question_count"] or 0),
            )
        )

    return [
        GradeLevel(
            id=gid,
            name=g["name"],
            subjects=tuple(
                Subject(
                    id=sid,
                    name=s["name"],
                    grade_level_id=gid,
                    topics=tuple(
                        Topic(id=tid, name=t["name"], subject_id=sid, sub_topics=tuple(t["sub_topics"]))
                        for tid, t in s["topics"].items()
                    ),
                )
                for sid, s in g["subjects"].items()
            ),
        )
        for gid, g in grades.items()
    ]
