from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import SQLAlchemyError

from practice_engine.errors import (
    CollaboratorError,
    CycleConflictError,
    RecordNotFoundError,
    SessionAlreadyCompletedError,
)
from practice_engine.models import QuestionProgress, QuestionType
from practice_engine.rewards import RewardConfig
from practice_engine.storage.records import NewAnswer, NewSessionRequest
from practice_engine.storage.sql.store import SqlPracticeStore, _build_tree

TODAY = date(2026, 3, 10)


class FakeResult:
    def __init__(self, scalar_value=None, rowcount=0, first_row=None, rows=None):
        self._scalar_value = scalar_value
        self.rowcount = rowcount
        self._first_row = first_row
        self._rows = rows or []

    def scalar_one(self):
        return self._scalar_value

    def first(self):
        return self._first_row

    def fetchall(self):
        return self._rows


def row(**fields):
    return SimpleNamespace(_mapping=fields)


def make_store(session, timezone_name="UTC"):
    @asynccontextmanager
    async def scope():
        yield session

    return SqlPracticeStore(
        scope=scope,
        rewards=RewardConfig(),
        timezone_name=timezone_name,
        today=lambda tz: TODAY,
    )


def sql_of(session, call_index):
    return str(session.execute.call_args_list[call_index].args[0])


def new_session_request(expected_prior_cycle=0):
    return NewSessionRequest(
        student_id="student-001",
        sub_topic_id="st-1",
        grade_level_id="g-1",
        subject_id="s-1",
        question_ids=("q1", "q2"),
        cycle_number=1,
        expected_prior_cycle=expected_prior_cycle,
    )


@pytest.mark.asyncio
async def test_create_session_returns_id():
    session = AsyncMock()
    session.execute.side_effect = [
        FakeResult(),
        FakeResult(scalar_value=0),
        FakeResult(scalar_value="sess-1"),
        FakeResult(),
        FakeResult(),
    ]
    store = make_store(session)

    session_id = await store.create_session_atomic(new_session_request())

    assert session_id == "sess-1"
    assert session.execute.call_count == 5
    assert "pg_advisory_xact_lock" in sql_of(session, 0)
    question_params = session.execute.call_args_list[3].args[1]
    assert [p["question_order"] for p in question_params] == [0, 1]


@pytest.mark.asyncio
async def test_create_session_rejects_stale_cycle():
    session = AsyncMock()
    session.execute.side_effect = [FakeResult(), FakeResult(scalar_value=2)]
    store = make_store(session)

    with pytest.raises(CycleConflictError) as exc_info:
        await store.create_session_atomic(new_session_request(expected_prior_cycle=1))

    assert exc_info.value.actual == 2
    assert session.execute.call_count == 2


@pytest.mark.asyncio
async def test_create_session_translates_database_errors():
    session = AsyncMock()
    session.execute.side_effect = SQLAlchemyError("connection reset")
    store = make_store(session)

    with pytest.raises(CollaboratorError) as exc_info:
        await store.create_session_atomic(new_session_request())

    assert not isinstance(exc_info.value, CycleConflictError)


@pytest.mark.asyncio
async def test_insert_answer_returns_record():
    answered_at = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
    session = AsyncMock()
    session.execute.side_effect = [
        FakeResult(first_row=row(completed_at=None)),
        FakeResult(first_row=row(id="ans-1", answered_at=answered_at)),
    ]
    store = make_store(session)

    record = await store.insert_answer(
        NewAnswer(
            session_id="sess-1",
            question_id="q1",
            selected_option_ids=("a", "c"),
            text_answer=None,
            is_correct=True,
            time_spent_seconds=12,
        )
    )

    assert record.id == "ans-1"
    assert record.answered_at == answered_at
    assert session.execute.call_args_list[1].args[1]["selected_option_ids"] == ["a", "c"]


@pytest.mark.asyncio
async def test_insert_answer_into_completed_session():
    session = AsyncMock()
    session.execute.return_value = FakeResult(first_row=row(completed_at=datetime.now(timezone.utc)))
    store = make_store(session)

    with pytest.raises(SessionAlreadyCompletedError):
        await store.insert_answer(NewAnswer("sess-1", "q1", ("a",), None, True))


@pytest.mark.asyncio
async def test_update_index_unknown_session():
    session = AsyncMock()
    session.execute.return_value = FakeResult(rowcount=0)
    store = make_store(session)

    with pytest.raises(RecordNotFoundError):
        await store.update_current_index("missing", 2)


@pytest.mark.asyncio
async def test_complete_session_scores_from_stored_answers():
    session = AsyncMock()
    session.execute.side_effect = [
        FakeResult(first_row=row(student_id="student-001", completed_at=None)),
        FakeResult(first_row=row(correct_count=7, total_time=95)),
        FakeResult(rowcount=1),
        FakeResult(rowcount=1),
        FakeResult(rowcount=1),
    ]
    store = make_store(session)

    result = await store.complete_session_atomic("sess-1")

    assert (result.correct_count, result.total_time_seconds) == (7, 95)
    assert (result.xp_earned, result.coins_earned) == (130, 45)
    assert "FOR UPDATE" in sql_of(session, 0)
    assert session.execute.call_args_list[3].args[1] == {"student_id": "student-001", "xp": 130, "coins": 45}
    assert session.execute.call_args_list[4].args[1]["day"] == TODAY


@pytest.mark.asyncio
async def test_complete_session_not_found():
    session = AsyncMock()
    session.execute.return_value = FakeResult(first_row=None)
    store = make_store(session)

    with pytest.raises(RecordNotFoundError):
        await store.complete_session_atomic("missing")


@pytest.mark.asyncio
async def test_complete_session_twice():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        first_row=row(student_id="student-001", completed_at=datetime.now(timezone.utc))
    )
    store = make_store(session)

    with pytest.raises(SessionAlreadyCompletedError):
        await store.complete_session_atomic("sess-1")
    assert session.execute.call_count == 1


@pytest.mark.asyncio
async def test_fetch_session_orders_questions():
    session = AsyncMock()
    session.execute.side_effect = [
        FakeResult(
            first_row=row(
                id="sess-1",
                student_id="student-001",
                sub_topic_id="st-1",
                grade_level_id="g-1",
                subject_id=None,
                current_question_index=3,
                correct_count=2,
                completed_at=None,
            )
        ),
        FakeResult(rows=[("q2",), ("q1",)]),
    ]
    store = make_store(session)

    record = await store.fetch_session("sess-1")

    assert record.question_ids == ("q2", "q1")
    assert record.current_question_index == 3
    assert record.subject_id is None


@pytest.mark.asyncio
async def test_fetch_session_missing():
    session = AsyncMock()
    session.execute.return_value = FakeResult(first_row=None)
    store = make_store(session)

    assert await store.fetch_session("missing") is None
    assert session.execute.call_count == 1


@pytest.mark.asyncio
async def test_fetch_progress_maps_rows():
    session = AsyncMock()
    session.execute.return_value = FakeResult(rows=[("q1", 1), ("q2", 2)])
    store = make_store(session)

    progress = await store.fetch_progress("student-001", "st-1")

    assert progress == [
        QuestionProgress("student-001", "st-1", "q1", 1),
        QuestionProgress("student-001", "st-1", "q2", 2),
    ]


@pytest.mark.asyncio
async def test_upsert_progress_counts_inserted_rows():
    session = AsyncMock()
    session.execute.side_effect = [FakeResult(rowcount=1), FakeResult(rowcount=0)]
    store = make_store(session)

    inserted = await store.upsert_progress(
        [
            QuestionProgress("student-001", "st-1", "q1", 1),
            QuestionProgress("student-001", "st-1", "q2", 1),
        ]
    )

    assert inserted == 1
    assert await store.upsert_progress([]) == 0
    assert session.execute.call_count == 2


@pytest.mark.asyncio
async def test_fetch_pool_groups_options_and_skips_unknown_types():
    session = AsyncMock()
    base = dict(answer=None, explanation=None, image_path=None, option_image_path=None)
    session.execute.return_value = FakeResult(
        rows=[
            row(id="q1", type="mcq", question="1+1?", option_key="a", option_text="2", is_correct=True, **base),
            row(id="q1", type="mcq", question="1+1?", option_key="b", option_text="3", is_correct=False, **base),
            row(id="q2", type="essay", question="Discuss", option_key=None, option_text=None, is_correct=None, **base),
            row(
                id="q3",
                type="short_answer",
                question="Capital of France?",
                option_key=None,
                option_text=None,
                is_correct=None,
                **{**base, "answer": "Paris"},
            ),
        ]
    )
    store = make_store(session)

    pool = await store.fetch_pool_for_sub_topic("st-1")

    assert [q.id for q in pool] == ["q1", "q3"]
    assert pool[0].type is QuestionType.SINGLE_CHOICE
    assert pool[0].correct_option_ids == frozenset({"a"})
    assert pool[1].answer == "Paris"
    assert pool[1].options == ()


@pytest.mark.asyncio
async def test_fetch_tier():
    session = AsyncMock()
    session.execute.side_effect = [FakeResult(first_row=("pro",)), FakeResult(first_row=None)]
    store = make_store(session)

    assert await store.fetch_tier("student-001") == "pro"
    assert await store.fetch_tier("nobody") is None


@pytest.mark.asyncio
async def test_count_completed_today_uses_local_day():
    session = AsyncMock()
    session.execute.return_value = FakeResult(scalar_value=2)
    store = make_store(session, timezone_name="Asia/Singapore")

    assert await store.count_completed_sessions_today("student-001") == 2

    params = session.execute.call_args.args[1]
    assert params["day_start"] == datetime(2026, 3, 10, tzinfo=ZoneInfo("Asia/Singapore"))
    assert params["day_end"] == datetime(2026, 3, 11, tzinfo=ZoneInfo("Asia/Singapore"))


def test_build_tree_folds_join_rows():
    def node(grade, subject=None, topic=None, sub_topic=None, count=0):
        return row(
            grade_level_id=grade,
            grade_level_name=f"Grade {grade}",
            subject_id=subject,
            subject_name=subject and f"Subject {subject}",
            topic_id=topic,
            topic_name=topic and f"Topic {topic}",
            sub_topic_id=sub_topic,
            sub_topic_name=sub_topic and f"Sub {sub_topic}",
            question_count=count,
        )

    tree = _build_tree(
        [
            node("g1", "s1", "t1", "st1", 12),
            node("g1", "s1", "t1", "st2", 0),
            node("g1", "s1", "t2"),
            node("g2"),
        ]
    )

    assert [g.id for g in tree] == ["g1", "g2"]
    topics = tree[0].subjects[0].topics
    assert [t.id for t in topics] == ["t1", "t2"]
    assert [(st.id, st.question_count) for st in topics[0].sub_topics] == [("st1", 12), ("st2", 0)]
    assert topics[1].sub_topics == ()
    assert tree[1].subjects == ()
