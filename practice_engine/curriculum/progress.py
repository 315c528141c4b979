"""Roll-ups of practice coverage across the curriculum tree."""
from __future__ import annotations

from typing import Mapping

from .models import Subject, SubTopic, Topic


def is_sub_topic_fully_practiced(sub_topic: SubTopic, answered_counts: Mapping[str, int]) -> bool:
    return sub_topic.question_count > 0 and answered_counts.get(sub_topic.id, 0) >= sub_topic.question_count


def topic_progress(topic: Topic, answered_counts: Mapping[str, int]) -> tuple[int, int]:
    """Return ``(total, completed)`` sub-topics."""
    total = len(topic.sub_topics)
    completed = sum(1 for s in topic.sub_topics if is_sub_topic_fully_practiced(s, answered_counts))
    return total, completed


def is_topic_fully_practiced(topic: Topic, answered_counts: Mapping[str, int]) -> bool:
    total, completed = topic_progress(topic, answered_counts)
    return total > 0 and completed >= total


def subject_progress(subject: Subject, answered_counts: Mapping[str, int]) -> tuple[int, int]:
    """Return ``(total, completed)`` topics."""
    total = len(subject.topics)
    completed = sum(1 for t in subject.topics if is_topic_fully_practiced(t, answered_counts))
    return total, completed


def is_subject_fully_practiced(subject: Subject, answered_counts: Mapping[str, int]) -> bool:
    total, completed = subject_progress(subject, answered_counts)
    return total > 0 and completed >= total
