"""
Curriculum tree: grade level -> subject -> topic -> sub-topic.

Nodes are frozen; edits produce new nodes and the index rebuilds its lookups.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SubTopic:
    id: str
    name: str
    topic_id: str
    question_count: int = 0


@dataclass(frozen=True)
class Topic:
    id: str
    name: str
    subject_id: str
    sub_topics: tuple[SubTopic, ...] = ()


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    grade_level_id: str
    topics: tuple[Topic, ...] = ()


@dataclass(frozen=True)
class GradeLevel:
    id: str
    name: str
    subjects: tuple[Subject, ...] = ()


CurriculumNode = GradeLevel | Subject | Topic | SubTopic


@dataclass(frozen=True)
class SubTopicHierarchy:
    """A sub-topic together with its ancestors."""
    grade_level: GradeLevel
    subject: Subject
    topic: Topic
    sub_topic: SubTopic
