"""
Unit tests for the in-memory storage backend.
"""

from datetime import datetime, timedelta, timezone

import pytest

from practice_engine.errors import (
    CollaboratorError,
    CycleConflictError,
    RecordNotFoundError,
    SessionAlreadyCompletedError,
)
from practice_engine.models import QuestionProgress
from practice_engine.storage.memory import InMemoryPracticeStore
from practice_engine.storage.records import NewAnswer, NewSessionRequest

STUDENT_ID = "student-001"
SUB_TOPIC_ID = "st-fractions-add"


class FakeNow:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def new_session(question_ids=("q1", "q2"), cycle=1, expected=0):
    return NewSessionRequest(
        student_id=STUDENT_ID,
        sub_topic_id=SUB_TOPIC_ID,
        grade_level_id="g-p5",
        subject_id="s-math",
        question_ids=tuple(question_ids),
        cycle_number=cycle,
        expected_prior_cycle=expected,
    )


def new_answer(session_id, question_id="q1", is_correct=True, seconds=10):
    return NewAnswer(
        session_id=session_id,
        question_id=question_id,
        selected_option_ids=("a",),
        text_answer=None,
        is_correct=is_correct,
        time_spent_seconds=seconds,
    )


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_creates_session_and_progress(self, store):
        session_id = await store.create_session_atomic(new_session())

        record = await store.fetch_session(session_id)
        assert record.question_ids == ("q1", "q2")
        assert record.created_at is not None
        progress = await store.fetch_progress(STUDENT_ID, SUB_TOPIC_ID)
        assert {(p.question_id, p.cycle_number) for p in progress} == {("q1", 1), ("q2", 1)}

    @pytest.mark.asyncio
    async def test_stale_cycle_rejected(self, store):
        await store.create_session_atomic(new_session(("q1",), cycle=1, expected=0))

        with pytest.raises(CycleConflictError) as exc_info:
            await store.create_session_atomic(new_session(("q2",), cycle=1, expected=0))

        assert exc_info.value.actual == 1
        assert len(await store.list_sessions(STUDENT_ID)) == 1

    @pytest.mark.asyncio
    async def test_empty_question_list_rejected(self, store):
        with pytest.raises(CollaboratorError):
            await store.create_session_atomic(new_session(()))
        assert await store.list_sessions(STUDENT_ID) == []


class TestProgress:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store):
        rows = [QuestionProgress(STUDENT_ID, SUB_TOPIC_ID, "q1", 1)]

        assert await store.upsert_progress(rows) == 1
        assert await store.upsert_progress(rows) == 0
        assert len(await store.fetch_progress(STUDENT_ID, SUB_TOPIC_ID)) == 1

    @pytest.mark.asyncio
    async def test_same_question_in_two_cycles(self, store):
        rows = [
            QuestionProgress(STUDENT_ID, SUB_TOPIC_ID, "q1", 1),
            QuestionProgress(STUDENT_ID, SUB_TOPIC_ID, "q1", 2),
        ]
        assert await store.upsert_progress(rows) == 2


class TestAnswersAndCompletion:
    @pytest.mark.asyncio
    async def test_complete_totals_and_rewards(self, store):
        session_id = await store.create_session_atomic(new_session(("q1", "q2", "q3")))
        await store.insert_answer(new_answer(session_id, "q1", True, 10))
        await store.insert_answer(new_answer(session_id, "q2", True, None))
        await store.insert_answer(new_answer(session_id, "q3", False, 7))

        result = await store.complete_session_atomic(session_id)

        assert (result.correct_count, result.total_time_seconds) == (2, 17)
        assert (result.xp_earned, result.coins_earned) == (55, 20)
        record = await store.fetch_session(session_id)
        assert record.completed_at is not None
        assert record.xp_earned == 55
        assert store.wallet(STUDENT_ID).coins == 20

    @pytest.mark.asyncio
    async def test_complete_twice_raises(self, store):
        session_id = await store.create_session_atomic(new_session())
        await store.complete_session_atomic(session_id)

        with pytest.raises(SessionAlreadyCompletedError):
            await store.complete_session_atomic(session_id)
        assert store.wallet(STUDENT_ID).xp == 25

    @pytest.mark.asyncio
    async def test_answer_after_completion_raises(self, store):
        session_id = await store.create_session_atomic(new_session())
        await store.complete_session_atomic(session_id)

        with pytest.raises(SessionAlreadyCompletedError):
            await store.insert_answer(new_answer(session_id))

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.complete_session_atomic("missing")
        with pytest.raises(RecordNotFoundError):
            await store.update_current_index("missing", 1)
        assert await store.fetch_session("missing") is None

    @pytest.mark.asyncio
    async def test_fail_next_is_one_shot(self, store):
        store.fail_next("fetch_answers")

        with pytest.raises(CollaboratorError):
            await store.fetch_answers("s1")
        assert await store.fetch_answers("s1") == []


class TestSessionsToday:
    @pytest.mark.asyncio
    async def test_counts_only_completions_today(self):
        clock = FakeNow(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))
        store = InMemoryPracticeStore(now=clock)

        yesterday = await store.create_session_atomic(new_session(("q1",), expected=0))
        clock.now -= timedelta(days=1)
        await store.complete_session_atomic(yesterday)
        clock.now += timedelta(days=1)

        await store.create_session_atomic(new_session(("q2",), expected=1))
        done = await store.create_session_atomic(new_session(("q3",), expected=1))
        await store.complete_session_atomic(done)

        assert await store.count_completed_sessions_today(STUDENT_ID) == 1

    @pytest.mark.asyncio
    async def test_day_boundary_follows_timezone(self):
        clock = FakeNow(datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc))
        store = InMemoryPracticeStore(now=clock, timezone_name="Asia/Singapore")

        session_id = await store.create_session_atomic(new_session(("q1",)))
        await store.complete_session_atomic(session_id)

        # 23:00 in Singapore; an hour later is the next local day.
        assert await store.count_completed_sessions_today(STUDENT_ID) == 1
        clock.now += timedelta(hours=1)
        assert await store.count_completed_sessions_today(STUDENT_ID) == 0

    @pytest.mark.asyncio
    async def test_tier_defaults_to_none(self, store):
        assert await store.fetch_tier(STUDENT_ID) is None
        store.set_tier(STUDENT_ID, "plus")
        assert await store.fetch_tier(STUDENT_ID) == "plus"
