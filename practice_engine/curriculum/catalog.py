"""
Curriculum Catalog: lazily loads the tree from the curriculum provider and
serves lookups from a ``CurriculumIndex``.
"""
from __future__ import annotations

import time
from typing import TYPE_CHECKING, Callable

from loguru import logger

from .index import CurriculumIndex
from .models import CurriculumNode, GradeLevel, SubTopicHierarchy

if TYPE_CHECKING:
    from practice_engine.protocols import CurriculumProvider


class CurriculumCatalog:
    """Provider-backed cache of the curriculum tree."""

    def __init__(
        self,
        provider: CurriculumProvider,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._index = CurriculumIndex()
        self._loaded_at: float | None = None

    @property
    def index(self) -> CurriculumIndex:
        return self._index

    def is_stale(self) -> bool:
        if not self._index.is_loaded or self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at > self.ttl_seconds

    async def refresh(self) -> tuple[GradeLevel, ...]:
        """
        Reload the tree from the provider.

        Raises:
            CollaboratorError: the provider failed
        """
        tree = await self.provider.fetch_hierarchy()
        self._index.build(tree)
        self._loaded_at = self._clock()
        logger.info("Curriculum loaded: {} sub-topics", len(self._index))
        return self._index.grade_levels

    async def ensure_loaded(self) -> None:
        if self.is_stale():
            await self.refresh()

    async def grade_levels(self) -> tuple[GradeLevel, ...]:
        await self.ensure_loaded()
        return self._index.grade_levels

    async def resolve(self, sub_topic_id: str) -> SubTopicHierarchy | None:
        """
        Resolve a sub-topic, loading the tree first if needed.

        A miss on a fresh index triggers one reload, since the sub-topic may
        have been created after the last fetch.
        """
        if self.is_stale():
            await self.refresh()
            return self._index.resolve(sub_topic_id)

        hierarchy = self._index.resolve(sub_topic_id)
        if hierarchy is None:
            await self.refresh()
            hierarchy = self._index.resolve(sub_topic_id)
        return hierarchy

    def apply(self, node: CurriculumNode) -> None:
        """Reflect a curriculum add/update made elsewhere."""
        self._index.upsert(node)

    def discard(self, node_id: str) -> bool:
        """Reflect a curriculum delete made elsewhere."""
        return self._index.remove(node_id)

    def invalidate(self) -> None:
        self._index.clear()
        self._loaded_at = None
