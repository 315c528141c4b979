"""
SQLAlchemy models for the PostgreSQL backend.

Tables:
- grade_levels / subjects / topics / sub_topics: the curriculum tree
- questions / question_options: question bank (options keyed 'a'..'d')
- student_profiles: role, subscription tier, XP and coin balances
- practice_sessions / session_questions: a session and its fixed question order
- practice_answers: append-only answers (question_id kept when a question is deleted)
- student_question_progress: questions presented per cycle, unique per tuple
- daily_statuses: one row per student per practiced day

Questions are soft-deleted (``is_deleted``) so session history keeps its order.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import (
    ARRAY,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _uuid_pk() -> Mapped[UUID]:
    return mapped_column(PG_UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid())


# ========================================
# Curriculum
# ========================================

class GradeLevelRow(Base):
    __tablename__ = "grade_levels"

    id: Mapped[UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    subjects: Mapped[List["SubjectRow"]] = relationship(back_populates="grade_level")


class SubjectRow(Base):
    __tablename__ = "subjects"

    id: Mapped[UUID] = _uuid_pk()
    grade_level_id: Mapped[UUID] = mapped_column(ForeignKey("grade_levels.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    grade_level: Mapped["GradeLevelRow"] = relationship(back_populates="subjects")
    topics: Mapped[List["TopicRow"]] = relationship(back_populates="subject")


class TopicRow(Base):
    __tablename__ = "topics"

    id: Mapped[UUID] = _uuid_pk()
    subject_id: Mapped[UUID] = mapped_column(ForeignKey("subjects.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    subject: Mapped["SubjectRow"] = relationship(back_populates="topics")
    sub_topics: Mapped[List["SubTopicRow"]] = relationship(back_populates="topic")


class SubTopicRow(Base):
    __tablename__ = "sub_topics"

    id: Mapped[UUID] = _uuid_pk()
    topic_id: Mapped[UUID] = mapped_column(ForeignKey("topics.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    topic: Mapped["TopicRow"] = relationship(back_populates="sub_topics")


# ========================================
# Question bank
# ========================================

class QuestionRow(Base):
    __tablename__ = "questions"

    id: Mapped[UUID] = _uuid_pk()
    sub_topic_id: Mapped[UUID] = mapped_column(ForeignKey("sub_topics.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # mcq | mrq | short_answer
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[Optional[str]] = mapped_column(Text)  # short_answer only
    explanation: Mapped[Optional[str]] = mapped_column(Text)
    image_path: Mapped[Optional[str]] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    options: Mapped[List["QuestionOptionRow"]] = relationship(
        back_populates="question", order_by="QuestionOptionRow.option_key"
    )


class QuestionOptionRow(Base):
    __tablename__ = "question_options"
    __table_args__ = (UniqueConstraint("question_id", "option_key"),)

    id: Mapped[UUID] = _uuid_pk()
    question_id: Mapped[UUID] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"))
    option_key: Mapped[str] = mapped_column(String(1), nullable=False)  # 'a'..'d'
    text: Mapped[Optional[str]] = mapped_column(Text)
    image_path: Mapped[Optional[str]] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")

    question: Mapped["QuestionRow"] = relationship(back_populates="options")


# ========================================
# Students
# ========================================

class StudentProfileRow(Base):
    __tablename__ = "student_profiles"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String(20), default="student", server_default="student")
    subscription_tier: Mapped[Optional[str]] = mapped_column(String(20))
    parent_id: Mapped[Optional[UUID]] = mapped_column(PG_UUID(as_uuid=True))
    xp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    coins: Mapped[int] = mapped_column(Integer, default=0, server_default="0")


class DailyStatusRow(Base):
    __tablename__ = "daily_statuses"
    __table_args__ = (UniqueConstraint("student_id", "date"),)

    id: Mapped[UUID] = _uuid_pk()
    student_id: Mapped[UUID] = mapped_column(ForeignKey("student_profiles.id", ondelete="CASCADE"))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    has_practiced: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")


# ========================================
# Practice
# ========================================

class PracticeSessionRow(Base):
    __tablename__ = "practice_sessions"
    __table_args__ = (Index("idx_practice_sessions_student_completed", "student_id", "completed_at"),)

    id: Mapped[UUID] = _uuid_pk()
    student_id: Mapped[UUID] = mapped_column(ForeignKey("student_profiles.id", ondelete="CASCADE"))
    sub_topic_id: Mapped[UUID] = mapped_column(ForeignKey("sub_topics.id", ondelete="CASCADE"))
    grade_level_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("grade_levels.id", ondelete="CASCADE"))
    subject_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("subjects.id", ondelete="CASCADE"))
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    current_question_index: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Calculated on completion
    correct_count: Mapped[Optional[int]] = mapped_column(Integer)
    total_time_seconds: Mapped[Optional[int]] = mapped_column(Integer)
    xp_earned: Mapped[Optional[int]] = mapped_column(Integer)
    coins_earned: Mapped[Optional[int]] = mapped_column(Integer)
    ai_summary: Mapped[Optional[str]] = mapped_column(Text)

    questions: Mapped[List["SessionQuestionRow"]] = relationship(
        back_populates="session", order_by="SessionQuestionRow.question_order"
    )


class SessionQuestionRow(Base):
    __tablename__ = "session_questions"
    __table_args__ = (
        UniqueConstraint("session_id", "question_id"),
        UniqueConstraint("session_id", "question_order"),
    )

    id: Mapped[UUID] = _uuid_pk()
    session_id: Mapped[UUID] = mapped_column(ForeignKey("practice_sessions.id", ondelete="CASCADE"))
    question_id: Mapped[UUID] = mapped_column(ForeignKey("questions.id"))
    question_order: Mapped[int] = mapped_column(Integer, nullable=False)

    session: Mapped["PracticeSessionRow"] = relationship(back_populates="questions")


class PracticeAnswerRow(Base):
    __tablename__ = "practice_answers"

    id: Mapped[UUID] = _uuid_pk()
    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("practice_sessions.id", ondelete="CASCADE"), index=True
    )
    question_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("questions.id", ondelete="SET NULL"))
    selected_option_ids: Mapped[Optional[List[str]]] = mapped_column(ARRAY(String(1)))
    text_answer: Mapped[Optional[str]] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_seconds: Mapped[Optional[int]] = mapped_column(Integer)
    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class StudentQuestionProgressRow(Base):
    __tablename__ = "student_question_progress"
    __table_args__ = (
        UniqueConstraint("student_id", "sub_topic_id", "question_id", "cycle_number"),
        Index("idx_student_question_progress_lookup", "student_id", "sub_topic_id", "cycle_number"),
    )

    id: Mapped[UUID] = _uuid_pk()
    student_id: Mapped[UUID] = mapped_column(ForeignKey("student_profiles.id", ondelete="CASCADE"))
    sub_topic_id: Mapped[UUID] = mapped_column(ForeignKey("sub_topics.id", ondelete="CASCADE"))
    question_id: Mapped[UUID] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"))
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
