"""Subscription entitlements and daily session limits."""

from .cache import AsyncTTLCache
from .gate import EntitlementGate

__all__ = ["AsyncTTLCache", "EntitlementGate"]
