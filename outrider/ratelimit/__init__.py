"""Per-endpoint sliding-window rate limiting."""

from __future__ import annotations

from .config import RateLimitConfig
from .errors import RateLimitStoreError
from .limiter import (
    EndpointRateLimiter,
    RateLimiterStats,
    RateLimitResult,
    build_rate_limiter,
    limiter_key,
)
from .store import InMemoryWindowStore, RedisWindowStore, WindowDecision, WindowStore

__all__ = [
    "EndpointRateLimiter",
    "InMemoryWindowStore",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimitStoreError",
    "RateLimiterStats",
    "RedisWindowStore",
    "WindowDecision",
    "WindowStore",
    "build_rate_limiter",
    "limiter_key",
]
