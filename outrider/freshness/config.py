"""Configuration for freshness checking."""

from __future__ import annotations

import dataclasses as dc

from outrider.common.env import parse_positive_float, parse_positive_int


@dc.dataclass(frozen=True, slots=True)
class FreshnessConfig:
    """Worker concurrency, retry policy and scan tiers.

    Attributes
    ----------
    concurrency
        Jobs processed at once per worker run.
    max_retries
        Failed attempts after which a job is dropped.
    retry_delay_s
        Base retry delay, doubled per further attempt.
    max_rate_limit_wait_ms
        How long a job waits for request budget before it is deferred.
    rate_limit_defer_s
        Delay applied to a job deferred for lack of budget.
    jobs_per_run
        Upper bound on jobs claimed by one worker run.
    in_flight_timeout_s
        Age after which a claimed job is considered abandoned.
    scan_batch_size
        Records selected per tier by one staleness scan.
    recent_min_hours, recent_max_hours
        Sync-age bounds of the ``recent`` tier.
    normal_max_hours
        Upper sync-age bound of the ``normal`` tier; older is ``background``.
    scan_lease_s
        How long a staleness scan may hold the shared run lease before
        another runner can take it over.

    """

    concurrency: int = 5
    max_retries: int = 3
    retry_delay_s: float = 5.0
    max_rate_limit_wait_ms: int = 120_000
    rate_limit_defer_s: float = 60.0
    jobs_per_run: int = 50
    in_flight_timeout_s: int = 600
    scan_batch_size: int = 500
    recent_min_hours: int = 6
    recent_max_hours: int = 24
    normal_max_hours: int = 168
    scan_lease_s: int = 3600

    @classmethod
    def from_env(cls) -> FreshnessConfig:
        """Create configuration from ``OUTRIDER_FRESHNESS_*`` environment variables.

        Raises
        ------
        ValueError
            If a variable is set but not a positive number.

        """
        return cls(
            concurrency=parse_positive_int("OUTRIDER_FRESHNESS_CONCURRENCY", 5),
            max_retries=parse_positive_int("OUTRIDER_FRESHNESS_MAX_RETRIES", 3),
            retry_delay_s=parse_positive_float("OUTRIDER_FRESHNESS_RETRY_DELAY_S", 5.0),
            max_rate_limit_wait_ms=parse_positive_int(
                "OUTRIDER_FRESHNESS_MAX_RATE_LIMIT_WAIT_MS", 120_000
            ),
            jobs_per_run=parse_positive_int("OUTRIDER_FRESHNESS_JOBS_PER_RUN", 50),
            scan_batch_size=parse_positive_int("OUTRIDER_FRESHNESS_SCAN_BATCH_SIZE", 500),
            scan_lease_s=parse_positive_int("OUTRIDER_FRESHNESS_SCAN_LEASE_S", 3600),
        )


__all__ = ["FreshnessConfig"]
