"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import random
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from practice_engine.bootstrap import build_memory_engine  # noqa: E402
from practice_engine.curriculum.models import GradeLevel, Subject, SubTopic, Topic  # noqa: E402
from practice_engine.models import (  # noqa: E402
    Identity,
    Question,
    QuestionOption,
    QuestionType,
    UserRole,
)
from practice_engine.selection import QuestionPoolCycler  # noqa: E402
from practice_engine.storage.memory import InMemoryPracticeStore, InMemoryQuestionBank  # noqa: E402

STUDENT_ID = "student-001"
SUB_TOPIC_ID = "st-fractions-add"
EMPTY_SUB_TOPIC_ID = "st-fractions-empty"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def make_mcq(question_id: str, sub_topic_id: str = SUB_TOPIC_ID, correct: str = "a") -> Question:
    return Question(
        id=question_id,
        type=QuestionType.SINGLE_CHOICE,
        prompt=f"Question {question_id}",
        options=tuple(
            QuestionOption(id=key, text=f"Option {key}", is_correct=key == correct) for key in "abcd"
        ),
        explanation="Because.",
        sub_topic_id=sub_topic_id,
    )


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def settings():
    """Settings with defaults, independent of the environment."""
    return Settings(
        _env_file=None,
        summary_api_url=None,
        timezone="UTC",
        log_level="INFO",
    )


@pytest.fixture
def curriculum_tree():
    """Primary 5 > Mathematics > Fractions > {Adding Fractions, Empty}."""
    topic = Topic(
        id="t-fractions",
        name="Fractions",
        subject_id="s-math",
        sub_topics=(
            SubTopic(id=SUB_TOPIC_ID, name="Adding Fractions", topic_id="t-fractions", question_count=15),
            SubTopic(id=EMPTY_SUB_TOPIC_ID, name="Empty", topic_id="t-fractions"),
        ),
    )
    subject = Subject(id="s-math", name="Mathematics", grade_level_id="g-p5", topics=(topic,))
    return [GradeLevel(id="g-p5", name="Primary 5", subjects=(subject,))]


@pytest.fixture
def question_pool():
    """Fifteen single choice questions, option 'a' correct."""
    return [make_mcq(f"q{i:02d}") for i in range(1, 16)]


@pytest.fixture
def student():
    return Identity(id=STUDENT_ID, role=UserRole.STUDENT)


@pytest.fixture
def bank(curriculum_tree, question_pool):
    return InMemoryQuestionBank(curriculum_tree, question_pool)


@pytest.fixture
def store():
    return InMemoryPracticeStore()


@pytest.fixture
def engine(bank, store, student, settings):
    """Engine over the in-memory backend with a seeded cycler."""
    return build_memory_engine(
        bank,
        store=store,
        user=student,
        settings=settings,
        cycler=QuestionPoolCycler(random.Random(7)),
    )


@pytest.fixture
def make_question():
    """Factory for single choice questions."""
    return make_mcq
