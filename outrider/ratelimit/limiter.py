"""Sliding-window admission control keyed by endpoint."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
import typing as typ

import redis.exceptions

from outrider.common.endpoints import InvalidEndpointError, endpoint_key

from .config import RateLimitConfig
from .errors import RateLimitStoreError
from .store import InMemoryWindowStore, WindowStore

logger = logging.getLogger(__name__)

type Clock = typ.Callable[[], int]
type Sleep = typ.Callable[[float], typ.Awaitable[None]]


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitResult:
    """Answer to a single admission request."""

    allowed: bool
    remaining: int
    wait_ms: int


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimiterStats:
    """Aggregate counters since the limiter was created."""

    checks: int
    allowed: int
    denied: int
    store_errors: int
    endpoints: int


def limiter_key(endpoint: str) -> str:
    """Return the normalised window key for *endpoint*.

    Values that do not parse as URLs are keyed by their lowercase text so a
    malformed endpoint still gets a budget of its own.
    """
    try:
        return endpoint_key(endpoint)
    except InvalidEndpointError:
        return endpoint.strip().lower().rstrip("/")


class EndpointRateLimiter:
    """Per-endpoint sliding-window limiter that fails open.

    Parameters
    ----------
    store:
        Counter store performing the atomic prune-count-admit step. Defaults
        to a process-local store.
    config:
        Window size and admission budget.
    clock:
        Millisecond wall clock; injectable for tests.
    sleep:
        Coroutine used by :meth:`wait_for_limit` between checks.

    """

    def __init__(
        self,
        store: WindowStore | None = None,
        *,
        config: RateLimitConfig | None = None,
        clock: Clock = _wall_clock_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Create a limiter over *store*."""
        self._store = store if store is not None else InMemoryWindowStore()
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._checks = 0
        self._allowed = 0
        self._denied = 0
        self._store_errors = 0
        self._endpoints: set[str] = set()

    @property
    def config(self) -> RateLimitConfig:
        """Return the active limits."""
        return self._config

    async def check_limit(self, endpoint: str) -> RateLimitResult:
        """Try to admit one request to *endpoint*.

        A store failure admits the request and logs a warning; limiter
        outages never block traffic.
        """
        key = limiter_key(endpoint)
        self._checks += 1
        self._endpoints.add(key)
        limit = self._config.max_requests

        try:
            decision = await self._store.admit(
                key,
                now_ms=self._clock(),
                window_ms=self._config.window_ms,
                limit=limit,
            )
        except (RateLimitStoreError, redis.exceptions.RedisError, OSError) as exc:
            self._store_errors += 1
            self._allowed += 1
            logger.warning(
                "Rate-limit store failed for endpoint=%s; allowing request: %s",
                key,
                exc,
            )
            return RateLimitResult(allowed=True, remaining=limit, wait_ms=0)

        if decision.admitted:
            self._allowed += 1
            return RateLimitResult(
                allowed=True, remaining=max(0, limit - decision.count), wait_ms=0
            )

        self._denied += 1
        logger.debug(
            "Rate limit reached for endpoint=%s count=%d wait_ms=%d",
            key,
            decision.count,
            decision.wait_ms,
        )
        return RateLimitResult(allowed=False, remaining=0, wait_ms=decision.wait_ms)

    async def wait_for_limit(self, endpoint: str, max_wait_ms: int) -> RateLimitResult:
        """Check repeatedly until admitted or *max_wait_ms* has elapsed.

        Returns the last result, which is a denial when the budget ran out.
        """
        deadline = self._clock() + max(0, max_wait_ms)
        while True:
            result = await self.check_limit(endpoint)
            if result.allowed:
                return result
            remaining = deadline - self._clock()
            if remaining <= 0:
                return result
            await self._sleep(min(result.wait_ms, remaining) / 1000)

    async def reset(self, endpoint: str) -> None:
        """Clear the window for one endpoint."""
        key = limiter_key(endpoint)
        await self._store.reset(key)
        self._endpoints.discard(key)

    async def reset_all(self) -> None:
        """Clear every window and the aggregate counters."""
        await self._store.reset_all()
        self._endpoints.clear()
        self._checks = self._allowed = self._denied = self._store_errors = 0

    def stats(self) -> RateLimiterStats:
        """Return aggregate counters."""
        return RateLimiterStats(
            checks=self._checks,
            allowed=self._allowed,
            denied=self._denied,
            store_errors=self._store_errors,
            endpoints=len(self._endpoints),
        )

    async def aclose(self) -> None:
        """Release the counter store's connections."""
        await self._store.aclose()


def build_rate_limiter(
    config: RateLimitConfig | None = None,
    *,
    local_store: WindowStore | None = None,
) -> EndpointRateLimiter:
    """Assemble a limiter using Redis when ``redis_url`` is configured.

    The caller owns the returned limiter and should ``aclose`` it.

    Parameters
    ----------
    config
        Limits and store location; read from the environment when omitted.
    local_store
        Store used when no Redis URL is configured. Pass the same store to
        every limiter built in a process so they draw on one budget.

    """
    config = config or RateLimitConfig.from_env()
    if config.redis_url is None:
        return EndpointRateLimiter(local_store, config=config)

    from redis.asyncio import Redis

    from .store import RedisWindowStore

    client = Redis.from_url(config.redis_url)
    return EndpointRateLimiter(
        RedisWindowStore(client, key_prefix=config.key_prefix), config=config
    )


__all__ = [
    "EndpointRateLimiter",
    "RateLimitResult",
    "RateLimiterStats",
    "build_rate_limiter",
    "limiter_key",
]
