"""
Engine-side data model for practice sessions.

Question types:
- mcq: single choice, exactly one option flagged correct
- mrq: multiple response, any number of options flagged correct
- short_answer: free text compared against a canonical answer

Sessions and answers here carry no persistence fields; the storage layer maps
its own records onto these types (see ``practice_engine.storage.records``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuestionType(str, Enum):
    """Supported question types."""
    SINGLE_CHOICE = "mcq"
    MULTI_CHOICE = "mrq"
    SHORT_ANSWER = "short_answer"

    @property
    def has_options(self) -> bool:
        return self is not QuestionType.SHORT_ANSWER


class UserRole(str, Enum):
    STUDENT = "student"
    PARENT = "parent"
    ADMIN = "admin"


class SubscriptionTier(str, Enum):
    """Subscription tiers, lowest first."""
    CORE = "core"
    PLUS = "plus"
    PRO = "pro"
    MAX = "max"  # Deprecated, kept for existing subscribers

    @classmethod
    def parse(cls, value: str | None) -> SubscriptionTier:
        """Resolve a stored tier string, falling back to the lowest tier."""
        if not value:
            return cls.CORE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.CORE


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Identity:
    """The signed-in user."""
    id: str
    role: UserRole = UserRole.STUDENT

    @property
    def is_student(self) -> bool:
        return self.role is UserRole.STUDENT


@dataclass(frozen=True)
class QuestionOption:
    """One answer option of a choice question."""
    id: str  # 'a', 'b', 'c', 'd'
    text: str | None = None
    image_path: str | None = None
    is_correct: bool = False

    def is_filled(self) -> bool:
        return bool(self.text and self.text.strip()) or bool(self.image_path)


@dataclass(frozen=True)
class Question:
    """A question as read from the question bank. Never mutated by the engine."""
    id: str
    type: QuestionType
    prompt: str
    options: tuple[QuestionOption, ...] = ()
    answer: str | None = None
    explanation: str | None = None
    image_path: str | None = None
    sub_topic_id: str | None = None
    is_deleted: bool = False

    @property
    def correct_option_ids(self) -> frozenset[str]:
        return frozenset(o.id for o in self.options if o.is_correct)

    @property
    def option_ids(self) -> frozenset[str]:
        return frozenset(o.id for o in self.options)

    def option(self, option_id: str) -> QuestionOption | None:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None

    def display_options(self) -> tuple[QuestionOption, ...]:
        """Options worth showing: blank option slots are dropped."""
        return tuple(o for o in self.options if o.is_filled())

    @classmethod
    def placeholder(cls, question_id: str | None, sub_topic_id: str | None, index: int = 0) -> Question:
        """Stand-in for an answered question that has since been deleted."""
        return cls(
            id=question_id or f"deleted-{index}",
            type=QuestionType.SINGLE_CHOICE,
            prompt="[Question has been deleted]",
            sub_topic_id=sub_topic_id,
            is_deleted=True,
        )


@dataclass(frozen=True)
class PracticeAnswer:
    """A submitted answer. Answers are append-only."""
    id: str | None
    question_id: str | None
    selected_option_ids: tuple[str, ...] | None
    text_answer: str | None
    is_correct: bool
    answered_at: datetime | None = None
    time_spent_seconds: int | None = None

    @property
    def is_pending(self) -> bool:
        """True while the answer is applied locally but not yet stored."""
        return self.id is None


@dataclass(frozen=True)
class SessionResults:
    total: int
    answered: int
    correct: int
    incorrect: int
    score: int  # Percentage of answered questions, rounded


@dataclass(frozen=True)
class PracticeSession:
    """
    One practice attempt at a fixed, ordered batch of questions.

    ``question_ids`` is fixed at creation. ``questions`` holds the loaded
    question objects in the same order (placeholders for deleted ones).
    Once ``completed_at`` is set only ``ai_summary`` may still change.
    """
    id: str
    student_id: str
    sub_topic_id: str
    question_ids: tuple[str, ...]
    grade_level_id: str | None = None
    subject_id: str | None = None
    grade_level_name: str = "Unknown"
    subject_name: str = "Unknown"
    topic_name: str = "Unknown"
    sub_topic_name: str = "Unknown"
    current_question_index: int = 0
    answered_count: int = 0
    correct_count: int = 0
    total_time_seconds: int = 0
    xp_earned: int | None = None
    coins_earned: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    ai_summary: str | None = None
    questions: tuple[Question, ...] = ()
    answers: tuple[PracticeAnswer, ...] = ()

    @property
    def total_questions(self) -> int:
        return len(self.question_ids)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def current_question(self) -> Question | None:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def current_question_number(self) -> int:
        return self.current_question_index + 1

    def answer_for(self, question_id: str) -> PracticeAnswer | None:
        for answer in self.answers:
            if answer.question_id == question_id:
                return answer
        return None

    def results(self) -> SessionResults:
        answered = len(self.answers)
        correct = sum(1 for a in self.answers if a.is_correct)
        return SessionResults(
            total=self.total_questions,
            answered=answered,
            correct=correct,
            incorrect=answered - correct,
            score=round(correct / answered * 100) if answered else 0,
        )


@dataclass(frozen=True)
class QuestionProgress:
    """Records that a question was presented to a student within a cycle."""
    student_id: str
    sub_topic_id: str
    question_id: str
    cycle_number: int


@dataclass(frozen=True)
class SubscriptionStatus:
    """Tier-derived entitlements for one student."""
    tier: SubscriptionTier
    sessions_per_day: int
    can_view_detailed_results: bool
    is_linked_to_parent: bool = False


@dataclass(frozen=True)
class SessionLimitStatus:
    can_start_session: bool
    sessions_today: int
    session_limit: int
    remaining_sessions: int


@dataclass(frozen=True)
class CompletionResult:
    """Server-computed outcome of completing a session."""
    xp_earned: int
    coins_earned: int
    correct_count: int
    total_time_seconds: int = 0


@dataclass
class StudentWallet:
    """XP and coin balances, as kept by the storage collaborator."""
    xp: int = 0
    coins: int = 0
    practiced_days: set[str] = field(default_factory=set)
