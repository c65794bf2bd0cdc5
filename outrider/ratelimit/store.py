"""Counter stores backing the sliding-window limiter.

A store owns the timestamped admissions for each key and performs the
prune-count-admit step atomically. :class:`RedisWindowStore` keeps one
sorted set per key and runs the whole step inside a Lua script so several
processes can share a budget. :class:`InMemoryWindowStore` serves single
process deployments and tests.
"""

from __future__ import annotations

import collections
import dataclasses
import itertools
import threading
import typing as typ
import uuid

import redis.exceptions

from .errors import RateLimitStoreError

if typ.TYPE_CHECKING:
    from redis.asyncio import Redis


@dataclasses.dataclass(frozen=True, slots=True)
class WindowDecision:
    """Outcome of one atomic admission attempt.

    ``count`` is the number of admissions inside the window after the
    attempt. ``wait_ms`` is zero when admitted, otherwise the time until the
    oldest admission leaves the window.
    """

    admitted: bool
    count: int
    wait_ms: int


class WindowStore(typ.Protocol):
    """Atomic sliding-window counter keyed by string."""

    async def admit(
        self, key: str, *, now_ms: int, window_ms: int, limit: int
    ) -> WindowDecision:
        """Prune, count and conditionally record an admission for *key*."""
        ...

    async def reset(self, key: str) -> None:
        """Forget every admission for *key*."""
        ...

    async def reset_all(self) -> None:
        """Forget every admission for every key."""
        ...

    async def aclose(self) -> None:
        """Release connections held by the store."""
        ...


def _wait_ms(oldest_ms: int | None, *, now_ms: int, window_ms: int) -> int:
    if oldest_ms is None:
        return window_ms
    return max(1, oldest_ms + window_ms - now_ms)


class InMemoryWindowStore:
    """Process-local store holding admission timestamps in deques.

    ``admit`` never yields to the event loop and holds a thread lock, which
    makes it atomic for coroutines and for worker threads sharing one store.
    Keys whose admissions have all left the window are dropped, on access
    and by a periodic sweep, so idle endpoints do not accumulate.
    """

    def __init__(self, *, sweep_every: int = 1024) -> None:
        """Create an empty store."""
        self._windows: dict[str, collections.deque[int]] = {}
        self._sweep_every = sweep_every
        self._since_sweep = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Return the number of keys with admissions still tracked."""
        return len(self._windows)

    async def admit(
        self, key: str, *, now_ms: int, window_ms: int, limit: int
    ) -> WindowDecision:
        """Prune, count and conditionally record an admission for *key*."""
        with self._lock:
            return self._admit(key, now_ms=now_ms, window_ms=window_ms, limit=limit)

    def _admit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> WindowDecision:
        cutoff = now_ms - window_ms
        self._maybe_sweep(cutoff)
        window = self._windows.get(key)
        if window is not None:
            while window and window[0] <= cutoff:
                window.popleft()
            if not window:
                del self._windows[key]
                window = None

        count = len(window) if window is not None else 0
        if count < limit:
            if window is None:
                window = self._windows[key] = collections.deque()
            window.append(now_ms)
            return WindowDecision(admitted=True, count=count + 1, wait_ms=0)

        oldest = window[0] if window else None
        return WindowDecision(
            admitted=False,
            count=count,
            wait_ms=_wait_ms(oldest, now_ms=now_ms, window_ms=window_ms),
        )

    def _maybe_sweep(self, cutoff: int) -> None:
        self._since_sweep += 1
        if self._since_sweep < self._sweep_every:
            return
        self._since_sweep = 0
        expired = [key for key, window in self._windows.items() if window[-1] <= cutoff]
        for key in expired:
            del self._windows[key]

    async def reset(self, key: str) -> None:
        """Forget every admission for *key*."""
        with self._lock:
            self._windows.pop(key, None)

    async def reset_all(self) -> None:
        """Forget every admission for every key."""
        with self._lock:
            self._windows.clear()

    async def aclose(self) -> None:
        """Nothing to release; admissions stay for later callers."""


# KEYS[1]: sorted set of admissions for one endpoint
# ARGV[1]: now (ms)  ARGV[2]: window (ms)  ARGV[3]: limit  ARGV[4]: member id
#
# Returns {admitted (1|0), count, oldest score or -1}. Entries whose score is
# at or before now - window are outside the window.
SLIDING_WINDOW_SCRIPT = (
    "local key = KEYS[1]\n"
    "local now = tonumber(ARGV[1])\n"
    "local window = tonumber(ARGV[2])\n"
    "local limit = tonumber(ARGV[3])\n"
    "redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)\n"
    "local count = redis.call('ZCARD', key)\n"
    "if count < limit then\n"
    "  redis.call('ZADD', key, now, ARGV[4])\n"
    "  redis.call('PEXPIRE', key, window)\n"
    "  return {1, count + 1, -1}\n"
    "end\n"
    "local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')\n"
    "local oldest_score = -1\n"
    "if oldest[2] then oldest_score = tonumber(oldest[2]) end\n"
    "return {0, count, oldest_score}\n"
)


class RedisWindowStore:
    """Redis-backed store sharing budgets across processes."""

    def __init__(self, client: Redis, *, key_prefix: str = "outrider:ratelimit") -> None:
        """Bind the store to a ``redis.asyncio`` client."""
        self._client = client
        self._prefix = key_prefix
        self._script = client.register_script(SLIDING_WINDOW_SCRIPT)
        self._sequence = itertools.count()
        self._instance = uuid.uuid4().hex[:12]

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _member(self, now_ms: int) -> str:
        # Members must be unique even for admissions in the same millisecond.
        return f"{now_ms}:{self._instance}:{next(self._sequence)}"

    async def admit(
        self, key: str, *, now_ms: int, window_ms: int, limit: int
    ) -> WindowDecision:
        """Run the sliding-window script for *key*.

        Raises
        ------
        RateLimitStoreError
            If Redis is unreachable or returns an unexpected reply.

        """
        redis_key = self._key(key)
        try:
            reply = await self._script(
                keys=[redis_key],
                args=[now_ms, window_ms, limit, self._member(now_ms)],
            )
        except redis.exceptions.RedisError as exc:
            raise RateLimitStoreError.unavailable(redis_key, exc) from exc

        try:
            admitted, count, oldest = (int(part) for part in reply)
        except (TypeError, ValueError) as exc:
            raise RateLimitStoreError.unexpected_reply(redis_key, reply) from exc

        if admitted:
            return WindowDecision(admitted=True, count=count, wait_ms=0)
        return WindowDecision(
            admitted=False,
            count=count,
            wait_ms=_wait_ms(
                oldest if oldest >= 0 else None, now_ms=now_ms, window_ms=window_ms
            ),
        )

    async def reset(self, key: str) -> None:
        """Delete the sorted set for *key*."""
        redis_key = self._key(key)
        try:
            await self._client.delete(redis_key)
        except redis.exceptions.RedisError as exc:
            raise RateLimitStoreError.unavailable(redis_key, exc) from exc

    async def reset_all(self) -> None:
        """Delete every sorted set under this store's prefix."""
        pattern = f"{self._prefix}:*"
        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if keys:
                await self._client.delete(*keys)
        except redis.exceptions.RedisError as exc:
            raise RateLimitStoreError.unavailable(pattern, exc) from exc

    async def aclose(self) -> None:
        """Close the Redis client and its connection pool."""
        await self._client.aclose()


__all__ = [
    "SLIDING_WINDOW_SCRIPT",
    "InMemoryWindowStore",
    "RedisWindowStore",
    "WindowDecision",
    "WindowStore",
]
