"""
Session lifecycle.

Modules:
- engine: PracticeSessionEngine, the state machine driving each context
- context: SessionContext, one student's current session and history
- state: pure transitions (optimistic answer, rollback, navigation, completion)
- history: bounded session history with filters
"""
from .context import SessionContext
from .engine import PracticeSessionEngine
from .history import DateRangeFilter, SessionHistory

__all__ = ["DateRangeFilter", "PracticeSessionEngine", "SessionContext", "SessionHistory"]
