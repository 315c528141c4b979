"""
Typed records exchanged with the storage collaborator.

Backends return these instead of raw rows; each entity has exactly one
conversion into the engine model (``answer_from_record``,
``session_from_record``), so persistence fields never leak into the engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from practice_engine.curriculum.models import SubTopicHierarchy
from practice_engine.models import PracticeAnswer, PracticeSession, Question


@dataclass(frozen=True)
class NewSessionRequest:
    """
    Everything ``create_session_atomic`` needs.

    ``expected_prior_cycle`` is the highest progress cycle the selection was
    computed from; the backend rejects the request with ``CycleConflictError``
    if its own read inside the transaction disagrees.
    """
    student_id: str
    sub_topic_id: str
    grade_level_id: str | None
    subject_id: str | None
    question_ids: tuple[str, ...]
    cycle_number: int
    expected_prior_cycle: int


@dataclass(frozen=True)
class SessionRecord:
    id: str
    student_id: str
    sub_topic_id: str
    grade_level_id: str | None
    subject_id: str | None
    question_ids: tuple[str, ...]
    current_question_index: int = 0
    correct_count: int = 0
    total_time_seconds: int = 0
    xp_earned: int | None = None
    coins_earned: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    ai_summary: str | None = None


@dataclass(frozen=True)
class NewAnswer:
    session_id: str
    question_id: str | None
    selected_option_ids: tuple[str, ...] | None
    text_answer: str | None
    is_correct: bool
    time_spent_seconds: int | None = None


@dataclass(frozen=True)
class AnswerRecord:
    id: str
    session_id: str
    question_id: str | None
    selected_option_ids: tuple[str, ...] | None
    text_answer: str | None
    is_correct: bool
    answered_at: datetime | None = None
    time_spent_seconds: int | None = None


def answer_from_record(record: AnswerRecord) -> PracticeAnswer:
    return PracticeAnswer(
        id=record.id,
        question_id=record.question_id,
        selected_option_ids=record.selected_option_ids,
        text_answer=record.text_answer,
        is_correct=record.is_correct,
        answered_at=record.answered_at,
        time_spent_seconds=record.time_spent_seconds,
    )


def order_questions(
    question_ids: Sequence[str],
    available: Iterable[Question],
    sub_topic_id: str | None = None,
) -> tuple[Question, ...]:
    """Questions in session order; ids missing from ``available`` become placeholders."""
    by_id = {q.id: q for q in available}
    return tuple(
        by_id.get(qid) or Question.placeholder(qid, sub_topic_id, index)
        for index, qid in enumerate(question_ids)
    )


def session_from_record(
    record: SessionRecord,
    hierarchy: SubTopicHierarchy | None = None,
    questions: Sequence[Question] = (),
    answer_records: Sequence[AnswerRecord] = (),
) -> PracticeSession:
    """
    Build the engine session from a stored record.

    Counters come from the answers when they are supplied; a completed
    session keeps the server's correct count.
    """
    answers = tuple(answer_from_record(a) for a in answer_records)
    if answer_records:
        answered_count = len(answers)
        correct_count = sum(1 for a in answers if a.is_correct)
        total_time = sum(a.time_spent_seconds or 0 for a in answers)
    else:
        answered_count = 0
        correct_count = record.correct_count
        total_time = record.total_time_seconds
    if record.completed_at is not None:
        correct_count = record.correct_count
        total_time = record.total_time_seconds or total_time

    names = {}
    if hierarchy is not None:
        names = {
            "grade_level_name": hierarchy.grade_level.name,
            "subject_name": hierarchy.subject.name,
            "topic_name": hierarchy.topic.name,
            "sub_topic_name": hierarchy.sub_topic.name,
        }

    last_index = max(len(record.question_ids) - 1, 0)
    return PracticeSession(
        id=record.id,
        student_id=record.student_id,
        sub_topic_id=record.sub_topic_id,
        question_ids=tuple(record.question_ids),
        grade_level_id=record.grade_level_id,
        subject_id=record.subject_id,
        current_question_index=min(max(record.current_question_index, 0), last_index),
        answered_count=answered_count,
        correct_count=correct_count,
        total_time_seconds=total_time,
        xp_earned=record.xp_earned,
        coins_earned=record.coins_earned,
        created_at=record.created_at,
        completed_at=record.completed_at,
        ai_summary=record.ai_summary,
        questions=order_questions(record.question_ids, questions, record.sub_topic_id),
        answers=answers,
        **names,
    )
