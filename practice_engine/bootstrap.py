"""
Wiring: build a ``PracticeSessionEngine`` over a concrete backend.
"""
from __future__ import annotations

from dataclasses import dataclass

from config import Settings, get_settings
from practice_engine.curriculum import CurriculumCatalog
from practice_engine.entitlement import EntitlementGate
from practice_engine.integrations import SessionSummaryClient
from practice_engine.models import Identity
from practice_engine.protocols import IdentityProvider
from practice_engine.rewards import RewardConfig
from practice_engine.selection import QuestionPoolCycler
from practice_engine.session import PracticeSessionEngine
from practice_engine.storage.memory import InMemoryPracticeStore, InMemoryQuestionBank, StaticIdentity


@dataclass
class SqlRuntime:
    engine: PracticeSessionEngine
    summaries: SessionSummaryClient | None

    async def aclose(self) -> None:
        """Wait for summary tasks, then release HTTP and database resources."""
        from practice_engine.storage.sql import dispose_engine

        await self.engine.drain_background_tasks()
        if self.summaries is not None:
            await self.summaries.close()
        await dispose_engine()


def build_sql_engine(identity: IdentityProvider, settings: Settings | None = None) -> SqlRuntime:
    """Engine over PostgreSQL, with AI summaries when an endpoint is configured."""
    from practice_engine.storage.sql import SqlPracticeStore

    settings = settings or get_settings()
    store = SqlPracticeStore(
        rewards=RewardConfig(**settings.get_reward_config()),
        timezone_name=settings.timezone,
    )
    summaries = SessionSummaryClient.from_settings(settings)
    engine = PracticeSessionEngine(
        storage=store,
        questions=store,
        curriculum=CurriculumCatalog(store, ttl_seconds=settings.curriculum_cache_ttl_seconds),
        gate=EntitlementGate.from_settings(store, settings),
        identity=identity,
        summaries=summaries,
        settings=settings,
    )
    return SqlRuntime(engine=engine, summaries=summaries)


def build_memory_engine(
    bank: InMemoryQuestionBank,
    store: InMemoryPracticeStore | None = None,
    user: Identity | None = None,
    settings: Settings | None = None,
    cycler: QuestionPoolCycler | None = None,
) -> PracticeSessionEngine:
    """Engine over the in-memory backend."""
    settings = settings or get_settings()
    store = store or InMemoryPracticeStore(
        rewards=RewardConfig(**settings.get_reward_config()),
        timezone_name=settings.timezone,
    )
    return PracticeSessionEngine(
        storage=store,
        questions=bank,
        curriculum=CurriculumCatalog(bank, ttl_seconds=settings.curriculum_cache_ttl_seconds),
        gate=EntitlementGate.from_settings(store, settings),
        identity=StaticIdentity(user),
        cycler=cycler,
        settings=settings,
    )
