"""
Bounded, newest-first cache of a student's practice sessions, with the
filters used by the history views.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from practice_engine.models import PracticeSession


class DateRangeFilter(str, Enum):
    TODAY = "today"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    ALL_TIME = "alltime"

    def start(self, now: datetime) -> datetime | None:
        """Earliest ``created_at`` included by the filter, or None for all time."""
        if self is DateRangeFilter.TODAY:
            return now.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is DateRangeFilter.LAST_7_DAYS:
            return now - timedelta(days=7)
        if self is DateRangeFilter.LAST_30_DAYS:
            return now - timedelta(days=30)
        return None


def _created_key(session: PracticeSession) -> float:
    return session.created_at.timestamp() if session.created_at else 0.0


class SessionHistory:
    """Sessions keyed by id; the oldest are evicted beyond ``max_entries``."""

    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries
        self._sessions: OrderedDict[str, PracticeSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def record(self, session: PracticeSession) -> None:
        """Insert (or refresh) a session as the newest entry."""
        self._sessions.pop(session.id, None)
        self._sessions[session.id] = session
        while len(self._sessions) > self.max_entries:
            self._sessions.popitem(last=False)

    def update(self, session: PracticeSession) -> None:
        """Replace an entry in place, or record it if absent."""
        if session.id in self._sessions:
            self._sessions[session.id] = session
        else:
            self.record(session)

    def replace_all(self, sessions: Iterable[PracticeSession]) -> None:
        self._sessions.clear()
        for session in sorted(sessions, key=_created_key):
            self.record(session)

    def get(self, session_id: str) -> PracticeSession | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[PracticeSession]:
        """Newest first by creation time."""
        return sorted(self._sessions.values(), key=_created_key, reverse=True)

    def filtered(
        self,
        grade_level_name: str | None = None,
        subject_name: str | None = None,
        topic_name: str | None = None,
        date_range: DateRangeFilter | None = None,
        now: datetime | None = None,
    ) -> list[PracticeSession]:
        start = date_range.start(now or datetime.now().astimezone()) if date_range else None
        result = []
        for session in self.sessions():
            if grade_level_name and session.grade_level_name != grade_level_name:
                continue
            if subject_name and session.subject_name != subject_name:
                continue
            if topic_name and session.topic_name != topic_name:
                continue
            if start is not None and session.created_at is not None and session.created_at < start:
                continue
            result.append(session)
        return result

    def grade_levels(self) -> list[str]:
        return sorted({s.grade_level_name for s in self._sessions.values()})

    def subjects(self, grade_level_name: str | None = None) -> list[str]:
        return sorted({
            s.subject_name
            for s in self._sessions.values()
            if not grade_level_name or s.grade_level_name == grade_level_name
        })

    def topics(self, grade_level_name: str | None = None, subject_name: str | None = None) -> list[str]:
        return sorted({
            s.topic_name
            for s in self._sessions.values()
            if (not grade_level_name or s.grade_level_name == grade_level_name)
            and (not subject_name or s.subject_name == subject_name)
        })
