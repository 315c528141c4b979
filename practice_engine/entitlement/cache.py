"""
Small async TTL cache keyed by id, with a loader coroutine and explicit invalidation.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    fetched_at: float


class AsyncTTLCache(Generic[K, V]):
    """
    Values are fresh for ``ttl_seconds`` after they were loaded.

    The loader's exceptions propagate and nothing is cached for that key;
    callers decide whether to fail open.
    """

    def __init__(
        self,
        ttl_seconds: float,
        loader: Callable[[K], Awaitable[V]],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._loader = loader
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}

    def is_fresh(self, key: K) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        return self._clock() - entry.fetched_at <= self.ttl_seconds

    def peek(self, key: K) -> V | None:
        """The cached value if fresh, without loading."""
        if self.is_fresh(key):
            return self._entries[key].value
        return None

    async def get(self, key: K, force: bool = False) -> V:
        if not force and self.is_fresh(key):
            return self._entries[key].value
        value = await self._loader(key)
        self._entries[key] = _Entry(value=value, fetched_at=self._clock())
        return value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = _Entry(value=value, fetched_at=self._clock())

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries and self.is_fresh(key)  # type: ignore[arg-type]
