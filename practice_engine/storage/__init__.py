"""
Storage backends.

- records: typed records exchanged with the engine
- memory: in-process backend (tests, demos)
- sql: PostgreSQL backend on SQLAlchemy async sessions
"""
