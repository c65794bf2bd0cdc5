"""Configuration for per-endpoint rate limiting.

>>> config = RateLimitConfig()
>>> (config.max_requests, config.window_ms)
(10, 60000)

"""

from __future__ import annotations

import dataclasses as dc

from outrider.common.env import parse_positive_int, read_str


@dc.dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Sliding-window limits applied to every endpoint key.

    Attributes
    ----------
    max_requests
        Admissions allowed per endpoint within one window. Default 10.
    window_ms
        Length of the sliding window in milliseconds. Default one minute.
    key_prefix
        Prefix for counter-store keys so several deployments can share one
        Redis database.
    redis_url
        Counter store location. ``None`` selects the in-process store.

    """

    max_requests: int = 10
    window_ms: int = 60_000
    key_prefix: str = "outrider:ratelimit"
    redis_url: str | None = None

    @classmethod
    def from_env(cls) -> RateLimitConfig:
        """Create configuration from ``OUTRIDER_RATE_LIMIT_*`` variables.

        Reads ``OUTRIDER_RATE_LIMIT_MAX``, ``OUTRIDER_RATE_LIMIT_WINDOW_MS``,
        ``OUTRIDER_RATE_LIMIT_PREFIX`` and ``OUTRIDER_REDIS_URL``.

        Raises
        ------
        ValueError
            If either numeric variable is not a positive integer.

        """
        return cls(
            max_requests=parse_positive_int("OUTRIDER_RATE_LIMIT_MAX", 10),
            window_ms=parse_positive_int("OUTRIDER_RATE_LIMIT_WINDOW_MS", 60_000),
            key_prefix=read_str("OUTRIDER_RATE_LIMIT_PREFIX") or "outrider:ratelimit",
            redis_url=read_str("OUTRIDER_REDIS_URL"),
        )


__all__ = ["RateLimitConfig"]
