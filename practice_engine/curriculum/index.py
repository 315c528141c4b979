"""
Curriculum Index: O(1) sub-topic -> ancestry lookups.

Built by one pass over the loaded tree. Every edit (add, update or delete at
any level) rebuilds the lookup maps so they never drift from the tree.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from loguru import logger

from .models import CurriculumNode, GradeLevel, Subject, SubTopic, SubTopicHierarchy, Topic


def _upsert_child(children: tuple, node, child_attr: str | None) -> tuple:
    """Replace the child with the same id, or append. Updates without children keep the old ones."""
    for i, existing in enumerate(children):
        if existing.id == node.id:
            if child_attr and not getattr(node, child_attr):
                node = replace(node, **{child_attr: getattr(existing, child_attr)})
            return children[:i] + (node,) + children[i + 1:]
    return children + (node,)


class CurriculumIndex:
    """Lookup maps over a grade -> subject -> topic -> sub-topic tree."""

    def __init__(self, grade_levels: Iterable[GradeLevel] | None = None):
        self._grade_levels: tuple[GradeLevel, ...] = ()
        self._sub_topics: dict[str, SubTopicHierarchy] = {}
        self._topics: dict[str, tuple[GradeLevel, Subject, Topic]] = {}
        self._loaded = False
        if grade_levels is not None:
            self.build(grade_levels)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def grade_levels(self) -> tuple[GradeLevel, ...]:
        return self._grade_levels

    def __len__(self) -> int:
        return len(self._sub_topics)

    def build(self, grade_levels: Iterable[GradeLevel]) -> None:
        """(Re)build every lookup from the given tree."""
        self._grade_levels = tuple(grade_levels)
        sub_topics: dict[str, SubTopicHierarchy] = {}
        topics: dict[str, tuple[GradeLevel, Subject, Topic]] = {}

        for grade_level in self._grade_levels:
            for subject in grade_level.subjects:
                for topic in subject.topics:
                    topics[topic.id] = (grade_level, subject, topic)
                    for sub_topic in topic.sub_topics:
                        sub_topics[sub_topic.id] = SubTopicHierarchy(
                            grade_level=grade_level,
                            subject=subject,
                            topic=topic,
                            sub_topic=sub_topic,
                        )

        self._sub_topics = sub_topics
        self._topics = topics
        self._loaded = True
        logger.debug(
            "Curriculum index built: {} grade levels, {} topics, {} sub-topics",
            len(self._grade_levels),
            len(topics),
            len(sub_topics),
        )

    def clear(self) -> None:
        self._grade_levels = ()
        self._sub_topics = {}
        self._topics = {}
        self._loaded = False

    def resolve(self, sub_topic_id: str) -> SubTopicHierarchy | None:
        """Ancestry of a sub-topic, or None if unknown or not loaded."""
        return self._sub_topics.get(sub_topic_id)

    def resolve_topic(self, topic_id: str) -> tuple[GradeLevel, Subject, Topic] | None:
        return self._topics.get(topic_id)

    def sub_topic_ids(self) -> Sequence[str]:
        return list(self._sub_topics)

    # ========================================
    # Tree edits
    # ========================================

    def upsert(self, node: CurriculumNode) -> None:
        """
        Add or update a node at any level, located by its parent id.

        Raises:
            KeyError: the parent of ``node`` is not in the tree
        """
        grades = self._grade_levels

        if isinstance(node, GradeLevel):
            grades = _upsert_child(grades, node, "subjects")

        elif isinstance(node, Subject):
            grades = self._edit_grade(grades, node.grade_level_id, node)

        elif isinstance(node, Topic):
            grades = self._edit_subject(grades, node.subject_id, node)

        elif isinstance(node, SubTopic):
            grades = self._edit_topic(grades, node.topic_id, node)

        else:
            raise TypeError(f"Not a curriculum node: {node!r}")

        self.build(grades)

    def remove(self, node_id: str) -> bool:
        """Delete a node (and its descendants) at any level. Returns True if found."""
        found = False
        new_grades = []

        for grade in self._grade_levels:
            if grade.id == node_id:
                found = True
                continue
            new_subjects = []
            for subject in grade.subjects:
                if subject.id == node_id:
                    found = True
                    continue
                new_topics = []
                for topic in subject.topics:
                    if topic.id == node_id:
                        found = True
                        continue
                    kept = tuple(s for s in topic.sub_topics if s.id != node_id)
                    if len(kept) != len(topic.sub_topics):
                        found = True
                        topic = replace(topic, sub_topics=kept)
                    new_topics.append(topic)
                new_subjects.append(replace(subject, topics=tuple(new_topics)))
            new_grades.append(replace(grade, subjects=tuple(new_subjects)))

        if found:
            self.build(new_grades)
        return found

    @staticmethod
    def _edit_grade(grades: tuple[GradeLevel, ...], grade_id: str, subject: Subject) -> tuple:
        for i, grade in enumerate(grades):
            if grade.id == grade_id:
                grade = replace(grade, subjects=_upsert_child(grade.subjects, subject, "topics"))
                return grades[:i] + (grade,) + grades[i + 1:]
        raise KeyError(f"Unknown grade level: {grade_id}")

    @staticmethod
    def _edit_subject(grades: tuple[GradeLevel, ...], subject_id: str, topic: Topic) -> tuple:
        for gi, grade in enumerate(grades):
            for si, subject in enumerate(grade.subjects):
                if subject.id == subject_id:
                    subject = replace(subject, topics=_upsert_child(subject.topics, topic, "sub_topics"))
                    subjects = grade.subjects[:si] + (subject,) + grade.subjects[si + 1:]
                    return grades[:gi] + (replace(grade, subjects=subjects),) + grades[gi + 1:]
        raise KeyError(f"Unknown subject: {subject_id}")

    def _edit_topic(self, grades: tuple[GradeLevel, ...], topic_id: str, sub_topic: SubTopic) -> tuple:
        located = self._topics.get(topic_id)
        if located is None:
            raise KeyError(f"Unknown topic: {topic_id}")
        _, subject, topic = located
        topic = replace(topic, sub_topics=_upsert_child(topic.sub_topics, sub_topic, None))
        return self._edit_subject(grades, subject.id, topic)
