"""Single-endpoint scans.

A scan owns its endpoint for its whole duration: it starts by winning the
``active -> scanning`` compare-and-set and always ends by releasing the
endpoint through the registry, whether the scan completed, failed or was
deferred.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import typing as typ

from outrider.common.http import ResponseShapeError, TransportError
from outrider.common.time import utcnow
from outrider.freshness.models import CheckType, FreshnessJob, FreshnessPriority

from .config import HOURS_WITH_CONTENT, HOURS_WITHOUT_CONTENT, ScanConfig
from .models import ScannedRecord, ScanOutcome, ScanStatus
from .observability import ScanEventLogger

if typ.TYPE_CHECKING:
    from outrider.freshness.queue import FreshnessQueue
    from outrider.ratelimit import EndpointRateLimiter
    from outrider.registry.service import EndpointRegistry

    from .client import RemoteRecord, SyncClient
    from .models import ScannedRecordSink

logger = logging.getLogger(__name__)

_HTTP_BAD_REQUEST = 400
_HTTP_NOT_FOUND = 404
_HTTP_NOT_IMPLEMENTED = 501


class ScanBudgetExhaustedError(RuntimeError):
    """Raised inside a scan when the endpoint's request budget stays exhausted."""

    def __init__(self, endpoint: str, wait_ms: int) -> None:
        """Record the endpoint and how long the limiter asked to wait."""
        super().__init__(f"Request budget for {endpoint} exhausted; retry in {wait_ms}ms")
        self.endpoint = endpoint
        self.wait_ms = wait_ms


class EndpointScanner:
    """Scan one endpoint's repositories for records.

    Parameters
    ----------
    registry:
        Registry holding the endpoint's scan state.
    client:
        XRPC client used for remote calls.
    limiter:
        Per-endpoint rate limiter gating every remote call.
    sink:
        Receives each record collected.
    config:
        Scan bounds and pacing.
    freshness_queue:
        When set together with ``config.enqueue_freshness``, scanned records
        are scheduled for background freshness checks.

    """

    def __init__(  # noqa: PLR0913
        self,
        registry: EndpointRegistry,
        client: SyncClient,
        limiter: EndpointRateLimiter,
        sink: ScannedRecordSink,
        *,
        config: ScanConfig | None = None,
        freshness_queue: FreshnessQueue | None = None,
        event_logger: ScanEventLogger | None = None,
    ) -> None:
        """Assemble the scanner from its collaborators."""
        self._registry = registry
        self._client = client
        self._limiter = limiter
        self._sink = sink
        self._config = config or ScanConfig()
        self._freshness_queue = freshness_queue
        self._events = event_logger or ScanEventLogger()

    async def scan(self, endpoint: str) -> ScanOutcome:
        """Scan *endpoint* and record the result in the registry.

        Remote failures are charged to the endpoint through
        ``mark_scan_failed``. An exhausted request budget or a local error
        defers the endpoint without counting a failure.
        """
        if not await self._registry.mark_scan_started(endpoint):
            return ScanOutcome(endpoint=endpoint, status=ScanStatus.SKIPPED)

        started = utcnow()
        self._events.log_scan_started(endpoint)
        try:
            async with asyncio.timeout(self._config.scan_timeout_s):
                repos_scanned, records_found = await self._scan_endpoint(endpoint)
        except (TransportError, ResponseShapeError, TimeoutError) as exc:
            await self._registry.mark_scan_failed(endpoint, str(exc) or type(exc).__name__)
            self._events.log_scan_failed(endpoint, exc, utcnow() - started)
            return ScanOutcome(endpoint=endpoint, status=ScanStatus.FAILED, error=str(exc))
        except ScanBudgetExhaustedError as exc:
            return await self._defer(endpoint, str(exc))
        except Exception as exc:
            logger.exception("Scan of %s failed with an internal error", endpoint)
            return await self._defer(endpoint, f"internal error: {type(exc).__name__}")

        outcome = ScanOutcome(
            endpoint=endpoint,
            status=ScanStatus.COMPLETED,
            repos_scanned=repos_scanned,
            records_found=records_found,
        )
        recorded = await self._registry.mark_scan_completed(
            endpoint,
            has_content=outcome.has_content,
            content_count=records_found,
            next_scan_hours=HOURS_WITH_CONTENT if outcome.has_content else HOURS_WITHOUT_CONTENT,
        )
        if not recorded:
            return ScanOutcome(
                endpoint=endpoint,
                status=ScanStatus.SKIPPED,
                repos_scanned=repos_scanned,
                records_found=records_found,
                error="scan lease lost before completion",
            )
        self._events.log_scan_completed(outcome, utcnow() - started)
        return outcome

    async def _defer(self, endpoint: str, reason: str) -> ScanOutcome:
        await self._registry.mark_scan_deferred(
            endpoint, dt.timedelta(hours=self._config.defer_hours)
        )
        self._events.log_scan_deferred(endpoint, reason)
        return ScanOutcome(endpoint=endpoint, status=ScanStatus.DEFERRED, error=reason)

    async def _scan_endpoint(self, endpoint: str) -> tuple[int, int]:
        repos = await self._list_repos(endpoint)
        if not self._config.collections:
            return len(repos), len(repos)

        records = 0
        scanned = 0
        for repo in repos:
            remaining = self._config.max_records - records
            if remaining <= 0:
                logger.debug("Record limit reached for %s", endpoint)
                break
            records += await self._scan_repo(endpoint, repo, remaining)
            scanned += 1
        return scanned, records

    async def _admit(self, endpoint: str) -> None:
        result = await self._limiter.wait_for_limit(
            endpoint, self._config.rate_limit_wait_ms
        )
        if not result.allowed:
            raise ScanBudgetExhaustedError(endpoint, result.wait_ms)

    async def _list_repos(self, endpoint: str) -> list[str]:
        repos: list[str] = []
        cursor: str | None = None
        while len(repos) < self._config.max_repos:
            await self._admit(endpoint)
            try:
                page = await self._client.list_repos(
                    endpoint, cursor=cursor, limit=self._config.repo_page_size
                )
            except TransportError as exc:
                if exc.status_code in {_HTTP_BAD_REQUEST, _HTTP_NOT_IMPLEMENTED}:
                    logger.debug("Endpoint %s does not support repository listing", endpoint)
                    return repos
                if repos:
                    logger.debug(
                        "Repository listing on %s stopped after %d repos: %s",
                        endpoint,
                        len(repos),
                        exc,
                    )
                    return repos
                raise
            repos.extend(page.repos)
            if not page.cursor or not page.repos:
                break
            cursor = page.cursor
        return repos[: self._config.max_repos]

    async def _scan_repo(self, endpoint: str, repo: str, limit: int) -> int:
        collected = 0
        for collection in self._config.collections:
            cursor: str | None = None
            while collected < limit:
                await self._admit(endpoint)
                try:
                    page = await self._client.list_records(
                        endpoint,
                        repo=repo,
                        collection=collection,
                        cursor=cursor,
                        limit=self._config.record_page_size,
                    )
                except TransportError as exc:
                    # Some endpoints answer 400 rather than 404 for unknown collections.
                    if exc.status_code in {_HTTP_BAD_REQUEST, _HTTP_NOT_FOUND}:
                        break
                    raise
                for remote in page.records[: limit - collected]:
                    await self._deliver(endpoint, repo, collection, remote.uri, remote)
                    collected += 1
                if not page.cursor or not page.records:
                    break
                cursor = page.cursor
        return collected

    async def _deliver(
        self, endpoint: str, repo: str, collection: str, uri: str, remote: RemoteRecord
    ) -> None:
        record = ScannedRecord(
            endpoint=endpoint,
            repo=repo,
            collection=collection,
            rkey=uri.rsplit("/", 1)[-1],
            uri=uri,
            cid=remote.cid,
            value=remote.value,
        )
        await self._sink.accept(record)
        if self._freshness_queue is not None and self._config.enqueue_freshness:
            await self._freshness_queue.enqueue(
                FreshnessJob.from_scan(
                    uri=uri,
                    endpoint=endpoint,
                    priority=FreshnessPriority.BACKGROUND,
                    check_type=CheckType.FULL,
                    last_synced_at=utcnow(),
                )
            )


__all__ = ["EndpointScanner", "ScanBudgetExhaustedError"]
