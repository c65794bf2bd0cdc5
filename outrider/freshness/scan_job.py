"""Periodic selection of stale records into the freshness queue."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import typing as typ

from outrider.common.time import utcnow

from .config import FreshnessConfig
from .models import CheckType, FreshnessJob, FreshnessPriority
from .observability import FreshnessEventLogger

if typ.TYPE_CHECKING:
    from .protocols import RunGuard, StaleRecordSource
    from .queue import FreshnessQueue

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class FreshnessScanResult:
    """Records enqueued per tier by one scan."""

    recent: int = 0
    normal: int = 0
    background: int = 0
    enqueued: int = 0
    skipped: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class _Tier:
    priority: FreshnessPriority
    newest: dt.timedelta
    oldest: dt.timedelta | None


class FreshnessScanJob:
    """Enqueue records whose last sync falls into an age tier.

    Records synced within ``recent_min_hours`` are skipped. Older records
    are enqueued as ``recent``, ``normal`` or ``background`` checks, at most
    ``scan_batch_size`` per tier. A run that starts while another is still
    in progress returns immediately; with a *guard* this holds across every
    process sharing it, otherwise only within this instance.
    """

    def __init__(
        self,
        source: StaleRecordSource,
        queue: FreshnessQueue,
        *,
        config: FreshnessConfig | None = None,
        guard: RunGuard | None = None,
        event_logger: FreshnessEventLogger | None = None,
        clock: typ.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Assemble the scan from its record source and target queue."""
        self._guard = guard
        self._source = source
        self._queue = queue
        self._config = config or FreshnessConfig()
        self._events = event_logger or FreshnessEventLogger()
        self._clock = clock
        self._running = False

    def _tiers(self) -> tuple[_Tier, ...]:
        config = self._config
        recent_min = dt.timedelta(hours=config.recent_min_hours)
        recent_max = dt.timedelta(hours=config.recent_max_hours)
        normal_max = dt.timedelta(hours=config.normal_max_hours)
        return (
            _Tier(FreshnessPriority.RECENT, recent_min, recent_max),
            _Tier(FreshnessPriority.NORMAL, recent_max, normal_max),
            _Tier(FreshnessPriority.BACKGROUND, normal_max, None),
        )

    async def run(self) -> FreshnessScanResult:
        """Select stale records per tier and enqueue them."""
        if self._running:
            self._events.log_scan_skipped()
            return FreshnessScanResult(skipped=True)

        self._running = True
        try:
            token = await self._guard.acquire() if self._guard is not None else None
            if self._guard is not None and token is None:
                self._events.log_scan_skipped()
                return FreshnessScanResult(skipped=True)
            started = self._clock()
            try:
                result = await self._enqueue_tiers(started)
            finally:
                if self._guard is not None and token is not None:
                    await self._guard.release(token)
        finally:
            self._running = False

        self._events.log_scan_completed(result, self._clock() - started)
        return result

    async def _enqueue_tiers(self, started: dt.datetime) -> FreshnessScanResult:
        result = FreshnessScanResult()
        for tier in self._tiers():
            count = await self._enqueue_tier(tier, started)
            match tier.priority:
                case FreshnessPriority.RECENT:
                    result.recent = count
                case FreshnessPriority.NORMAL:
                    result.normal = count
                case _:
                    result.background = count
            result.enqueued += count
        return result

    async def _enqueue_tier(self, tier: _Tier, now: dt.datetime) -> int:
        records = await self._source.select_stale(
            synced_before=now - tier.newest,
            synced_after=now - tier.oldest if tier.oldest is not None else None,
            limit=self._config.scan_batch_size,
        )
        if not records:
            return 0
        jobs = [
            FreshnessJob.from_scan(
                uri=record.uri,
                endpoint=record.endpoint,
                priority=tier.priority,
                check_type=CheckType.STALENESS,
                last_synced_at=record.last_synced_at,
            )
            for record in records
        ]
        await self._queue.enqueue_batch(jobs)
        logger.debug("Enqueued %d %s freshness checks", len(jobs), tier.priority.name)
        return len(jobs)


__all__ = ["FreshnessScanJob", "FreshnessScanResult"]
