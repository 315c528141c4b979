"""
Entitlement Gate: may this student start another session today?

Two caches per student:
- subscription status (tier, sessions per day, detailed results), minutes
- session limit (sessions completed today vs. allowance), seconds, and
  invalidated whenever a session is created or completed

Both lookups fail open. A tier lookup error yields the lowest tier; a count
error lets the student start. Availability wins over strict enforcement here,
the storage transaction remains the authority.
"""
from __future__ import annotations

import time
from typing import Callable, Iterable, Mapping

from loguru import logger

from config import Settings, get_settings
from practice_engine.errors import CollaboratorError
from practice_engine.models import SessionLimitStatus, SubscriptionStatus, SubscriptionTier
from practice_engine.protocols import EntitlementProvider

from .cache import AsyncTTLCache


class EntitlementGate:
    """Tier resolution and daily session limits with TTL caches."""

    def __init__(
        self,
        provider: EntitlementProvider,
        tier_limits: Mapping[str, int] | None = None,
        detailed_results_tiers: Iterable[str] | None = None,
        subscription_ttl_seconds: float = 120.0,
        session_limit_ttl_seconds: float = 30.0,
        fallback_sessions_per_day: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Plan values left as None come from ``config.Settings``."""
        settings = get_settings()
        if detailed_results_tiers is None:
            detailed_results_tiers = settings.get_detailed_results_tiers()
        self.provider = provider
        self.tier_limits = dict(tier_limits if tier_limits is not None else settings.get_tier_limits())
        self.detailed_results_tiers = frozenset(t.lower() for t in detailed_results_tiers)
        self.fallback_sessions_per_day = (
            fallback_sessions_per_day
            if fallback_sessions_per_day is not None
            else settings.fallback_sessions_per_day
        )
        self._status_cache: AsyncTTLCache[str, SubscriptionStatus] = AsyncTTLCache(
            subscription_ttl_seconds, self._load_status, clock
        )
        self._limit_cache: AsyncTTLCache[str, SessionLimitStatus] = AsyncTTLCache(
            session_limit_ttl_seconds, self._load_limit, clock
        )

    @classmethod
    def from_settings(
        cls,
        provider: EntitlementProvider,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> EntitlementGate:
        settings = settings or get_settings()
        return cls(
            provider,
            tier_limits=settings.get_tier_limits(),
            detailed_results_tiers=settings.get_detailed_results_tiers(),
            subscription_ttl_seconds=settings.subscription_cache_ttl_seconds,
            session_limit_ttl_seconds=settings.session_limit_cache_ttl_seconds,
            fallback_sessions_per_day=settings.fallback_sessions_per_day,
            clock=clock,
        )

    def sessions_per_day(self, tier: SubscriptionTier) -> int:
        return self.tier_limits.get(tier.value, self.fallback_sessions_per_day)

    def status_for_tier(self, tier: SubscriptionTier) -> SubscriptionStatus:
        return SubscriptionStatus(
            tier=tier,
            sessions_per_day=self.sessions_per_day(tier),
            can_view_detailed_results=tier.value in self.detailed_results_tiers,
        )

    # ========================================
    # Subscription status
    # ========================================

    async def get_subscription_status(self, student_id: str, force: bool = False) -> SubscriptionStatus:
        return await self._status_cache.get(student_id, force=force)

    async def _load_status(self, student_id: str) -> SubscriptionStatus:
        try:
            raw_tier = await self.provider.fetch_tier(student_id)
        except CollaboratorError as e:
            logger.warning("Tier lookup failed for {}, using lowest tier: {}", student_id, e)
            return self.status_for_tier(SubscriptionTier.CORE)

        tier = SubscriptionTier.parse(raw_tier)
        if raw_tier and tier.value != raw_tier.strip().lower():
            logger.warning("Unknown tier {!r} for {}, using {}", raw_tier, student_id, tier.value)
        return self.status_for_tier(tier)

    # ========================================
    # Session limit
    # ========================================

    async def check_session_limit(self, student_id: str, force: bool = False) -> SessionLimitStatus:
        """
        Daily limit check. Served from cache while fresh.

        Count failures are not cached: the next check retries the query.
        """
        try:
            return await self._limit_cache.get(student_id, force=force)
        except CollaboratorError as e:
            status = await self.get_subscription_status(student_id)
            logger.warning("Session count failed for {}, allowing start: {}", student_id, e)
            return SessionLimitStatus(
                can_start_session=True,
                sessions_today=0,
                session_limit=status.sessions_per_day,
                remaining_sessions=status.sessions_per_day,
            )

    async def _load_limit(self, student_id: str) -> SessionLimitStatus:
        status = await self.get_subscription_status(student_id)
        sessions_today = await self.provider.count_completed_sessions_today(student_id)
        limit = status.sessions_per_day
        return SessionLimitStatus(
            can_start_session=sessions_today < limit,
            sessions_today=sessions_today,
            session_limit=limit,
            remaining_sessions=max(0, limit - sessions_today),
        )

    def invalidate_session_limit_cache(self, student_id: str) -> None:
        """Drop the cached count so the next check re-queries. The tier cache is kept."""
        self._limit_cache.invalidate(student_id)

    def reset(self) -> None:
        self._status_cache.clear()
        self._limit_cache.clear()
