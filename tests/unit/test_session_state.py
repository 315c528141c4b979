"""
Unit tests for session state transitions, session history, rewards and results.
"""

from datetime import datetime, timedelta, timezone

import pytest

from practice_engine.errors import ErrorKind, PracticeFailure, Result
from practice_engine.models import CompletionResult, PracticeAnswer, PracticeSession
from practice_engine.rewards import RewardConfig, compute_level, compute_rewards
from practice_engine.session import DateRangeFilter, SessionHistory, state

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


def make_session(session_id="sess-1", created_at=NOW, **overrides):
    fields = dict(
        id=session_id,
        student_id="student-001",
        sub_topic_id="st-1",
        question_ids=("q1", "q2", "q3"),
        grade_level_name="Primary 5",
        subject_name="Mathematics",
        topic_name="Fractions",
        sub_topic_name="Adding Fractions",
        created_at=created_at,
    )
    fields.update(overrides)
    return PracticeSession(**fields)


def make_answer(question_id="q1", is_correct=True, seconds=12, answer_id=None):
    return PracticeAnswer(
        id=answer_id,
        question_id=question_id,
        selected_option_ids=("a",),
        text_answer=None,
        is_correct=is_correct,
        time_spent_seconds=seconds,
    )


class TestAnswerTransitions:
    def test_apply_bumps_counters(self):
        session = state.apply_answer(make_session(), make_answer(is_correct=True, seconds=12))

        assert session.answered_count == 1
        assert session.correct_count == 1
        assert session.total_time_seconds == 12
        assert session.answers[0].is_pending

    def test_incorrect_answer_does_not_bump_correct(self):
        session = state.apply_answer(make_session(), make_answer(is_correct=False, seconds=None))
        assert session.correct_count == 0
        assert session.total_time_seconds == 0

    def test_rollback_restores_counters(self):
        tentative = make_answer()
        session = state.rollback_answer(state.apply_answer(make_session(), tentative), tentative)

        assert session.answers == ()
        assert session.answered_count == 0
        assert session.correct_count == 0
        assert session.total_time_seconds == 0

    def test_rollback_keeps_later_answers(self):
        """Only the failed answer's contribution is removed."""
        first = make_answer("q1", is_correct=True, seconds=5)
        second = make_answer("q2", is_correct=True, seconds=7)
        session = state.apply_answer(state.apply_answer(make_session(), first), second)

        session = state.rollback_answer(session, first)

        assert session.answers == (second,)
        assert session.answered_count == 1
        assert session.correct_count == 1
        assert session.total_time_seconds == 7

    def test_rollback_of_unknown_answer_is_noop(self):
        session = state.apply_answer(make_session(), make_answer())
        assert state.rollback_answer(session, make_answer()) is session

    def test_confirm_swaps_in_stored_answer(self):
        tentative = make_answer()
        stored = make_answer(answer_id="ans-1")
        session = state.confirm_answer(state.apply_answer(make_session(), tentative), tentative, stored)

        assert session.answers == (stored,)
        assert session.answered_count == 1
        assert not session.answers[0].is_pending


class TestNavigationAndCompletion:
    def test_move_within_bounds(self):
        assert state.move_to(make_session(), 2).current_question_index == 2

    @pytest.mark.parametrize("index", [-1, 3, 10])
    def test_move_out_of_bounds(self, index):
        assert state.move_to(make_session(), index) is None

    def test_mark_completed_uses_server_counts(self):
        session = state.apply_answer(make_session(), make_answer(is_correct=True, seconds=10))
        result = CompletionResult(xp_earned=40, coins_earned=15, correct_count=0, total_time_seconds=9)

        completed = state.mark_completed(session, result, NOW)

        assert completed.is_completed
        assert completed.correct_count == 0
        assert completed.total_time_seconds == 9
        assert completed.xp_earned == 40
        assert completed.coins_earned == 15

    def test_attach_summary(self):
        completed = make_session(completed_at=NOW)
        assert state.attach_summary(completed, "Well done").ai_summary == "Well done"

    def test_results_score(self):
        session = make_session(
            answers=(make_answer("q1", True), make_answer("q2", False), make_answer("q3", True)),
        )
        results = session.results()
        assert (results.total, results.answered, results.correct, results.incorrect) == (3, 3, 2, 1)
        assert results.score == 67


class TestSessionHistory:
    def test_newest_first(self):
        history = SessionHistory()
        history.record(make_session("old", created_at=NOW - timedelta(days=2)))
        history.record(make_session("new", created_at=NOW))

        assert [s.id for s in history.sessions()] == ["new", "old"]

    def test_bounded(self):
        history = SessionHistory(max_entries=2)
        for i in range(3):
            history.record(make_session(f"s{i}", created_at=NOW + timedelta(minutes=i)))

        assert len(history) == 2
        assert "s0" not in history

    def test_update_replaces_entry(self):
        history = SessionHistory()
        history.record(make_session("s1"))
        history.update(make_session("s1", completed_at=NOW))

        assert len(history) == 1
        assert history.get("s1").is_completed

    def test_replace_all(self):
        history = SessionHistory()
        history.record(make_session("stale"))
        history.replace_all([make_session("a"), make_session("b")])
        assert "stale" not in history
        assert len(history) == 2

    def test_filter_by_names(self):
        history = SessionHistory()
        history.record(make_session("math"))
        history.record(make_session("sci", subject_name="Science", topic_name="Plants"))

        assert [s.id for s in history.filtered(subject_name="Science")] == ["sci"]
        assert [s.id for s in history.filtered(topic_name="Fractions")] == ["math"]
        assert history.subjects() == ["Mathematics", "Science"]
        assert history.topics(subject_name="Science") == ["Plants"]
        assert history.grade_levels() == ["Primary 5"]

    @pytest.mark.parametrize(
        "date_range,expected",
        [
            (DateRangeFilter.TODAY, ["today"]),
            (DateRangeFilter.LAST_7_DAYS, ["today", "week"]),
            (DateRangeFilter.LAST_30_DAYS, ["today", "week", "month"]),
            (DateRangeFilter.ALL_TIME, ["today", "week", "month", "old"]),
        ],
    )
    def test_filter_by_date_range(self, date_range, expected):
        history = SessionHistory()
        history.record(make_session("old", created_at=NOW - timedelta(days=90)))
        history.record(make_session("month", created_at=NOW - timedelta(days=20)))
        history.record(make_session("week", created_at=NOW - timedelta(days=3)))
        history.record(make_session("today", created_at=NOW - timedelta(hours=2)))

        assert [s.id for s in history.filtered(date_range=date_range, now=NOW)] == expected


class TestRewards:
    @pytest.mark.parametrize(
        "correct,xp,coins",
        [(10, 175, 60), (7, 130, 45), (5, 100, 35), (0, 25, 10)],
    )
    def test_default_rewards(self, correct, xp, coins):
        assert compute_rewards(correct) == (xp, coins)

    def test_custom_config(self):
        config = RewardConfig(base_xp=0, bonus_xp_per_correct=10, base_coins=1, bonus_coins_per_correct=1)
        assert compute_rewards(3, config) == (30, 4)

    def test_negative_count_clamped(self):
        assert compute_rewards(-2) == (25, 10)

    @pytest.mark.parametrize("xp,level", [(0, 1), (499, 1), (500, 2), (1250, 3)])
    def test_level(self, xp, level):
        assert compute_level(xp) == level


class TestResult:
    def test_unwrap_success(self):
        assert Result.success(3).unwrap() == 3

    def test_unwrap_failure_raises(self):
        result = Result.failure(ErrorKind.NOT_FOUND, "Session not found", session_id="s1")

        with pytest.raises(PracticeFailure) as exc_info:
            result.unwrap()

        assert exc_info.value.error.details == {"session_id": "s1"}
        assert exc_info.value.error.user_message == "The requested record was not found."

    def test_limit_message_names_the_limit(self):
        result = Result.failure(ErrorKind.LIMIT_REACHED, "limit", session_limit=10)
        assert "all 10 practice sessions" in result.error.user_message
