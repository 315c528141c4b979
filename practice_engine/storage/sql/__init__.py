"""PostgreSQL storage backend (SQLAlchemy async + asyncpg)."""

from .database import async_session_scope, dispose_engine, init_db, run_migration
from .store import SqlPracticeStore

__all__ = ["SqlPracticeStore", "async_session_scope", "dispose_engine", "init_db", "run_migration"]
