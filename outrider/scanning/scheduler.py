"""Periodic scan scheduling.

Each tick releases abandoned scan leases, probes pending endpoints so they
can become ``active``, then selects due endpoints and scans them with a
bounded pool. The registry's ``scanning`` state is the only per-endpoint
guard, so several schedulers may tick against the same registry.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import typing as typ

from outrider.common.http import ResponseShapeError, TransportError
from outrider.common.time import utcnow

from .config import ScanConfig
from .models import TickResult
from .observability import ScanEventLogger

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from outrider.discovery.directory import CancellationToken
    from outrider.ratelimit import EndpointRateLimiter
    from outrider.registry.service import EndpointRegistry

    from .client import SyncClient
    from .scanner import EndpointScanner

logger = logging.getLogger(__name__)

_PROBE_WAIT_MS = 5_000


class ScanScheduler:
    """Drive probes and scans from the registry on a periodic tick."""

    def __init__(  # noqa: PLR0913
        self,
        registry: EndpointRegistry,
        scanner: EndpointScanner,
        client: SyncClient,
        limiter: EndpointRateLimiter,
        *,
        config: ScanConfig | None = None,
        event_logger: ScanEventLogger | None = None,
    ) -> None:
        """Assemble the scheduler from its collaborators."""
        self._registry = registry
        self._scanner = scanner
        self._client = client
        self._limiter = limiter
        self._config = config or ScanConfig()
        self._events = event_logger or ScanEventLogger()

    async def tick(self) -> TickResult:
        """Run one scheduling round and summarise it."""
        started = utcnow()
        result = TickResult()

        result.released = await self._registry.release_stale_scans(
            dt.timedelta(seconds=self._config.stale_scan_after_s)
        )

        probes = await self._registry.get_endpoints_for_probe(
            self._config.probe_batch_size,
            include_unreachable=self._config.probe_unreachable,
        )
        result.probed = len(probes)
        probe_results = await self._bounded(self.probe(entry.endpoint) for entry in probes)
        result.probes_succeeded = sum(1 for succeeded in probe_results if succeeded)

        due = await self._registry.get_endpoints_for_scan(
            self._config.batch_size,
            include_relay_connected=self._config.include_relay_connected,
        )
        result.selected = len(due)
        for outcome in await self._bounded(self._scanner.scan(entry.endpoint) for entry in due):
            result.record(outcome)

        self._events.log_tick_completed(result, utcnow() - started)
        return result

    async def probe(self, endpoint: str) -> bool:
        """Check that *endpoint* answers and promote it to ``active`` if so.

        A failed probe is recorded as a failure so unresponsive endpoints
        back off and eventually become ``unreachable``.
        """
        admission = await self._limiter.wait_for_limit(endpoint, _PROBE_WAIT_MS)
        if not admission.allowed:
            logger.debug("Probe of %s postponed: request budget exhausted", endpoint)
            return False
        try:
            await self._client.describe_server(endpoint)
        except (TransportError, ResponseShapeError) as exc:
            await self._registry.mark_scan_failed(endpoint, str(exc))
            self._events.log_probe(endpoint, exc)
            return False
        promoted = await self._registry.mark_probe_succeeded(endpoint)
        self._events.log_probe(endpoint, None)
        return promoted

    async def run_forever(
        self, interval_s: float, *, token: CancellationToken | None = None
    ) -> None:
        """Tick every *interval_s* seconds until *token* is cancelled."""
        while token is None or not token.cancelled:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(interval_s)

    async def _bounded[T](self, coroutines: cabc.Iterable[cabc.Awaitable[T]]) -> list[T]:
        semaphore = asyncio.Semaphore(self._config.concurrency)

        async def run(coroutine: cabc.Awaitable[T]) -> T:
            async with semaphore:
                return await coroutine

        gathered = await asyncio.gather(
            *(run(coroutine) for coroutine in coroutines), return_exceptions=True
        )
        results: list[T] = []
        for outcome in gathered:
            if isinstance(outcome, Exception):
                logger.error("Scheduled task failed", exc_info=outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        return results


__all__ = ["ScanScheduler"]
