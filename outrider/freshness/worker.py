"""Verify indexed records against their source endpoints.

A check re-fetches one record. A missing record produces exactly one
deletion signal; a different content identifier produces a change signal;
otherwise the local copy is marked as checked. Transport failures are
retried with backoff and an exhausted request budget defers the job without
using an attempt.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
import logging
import typing as typ

from outrider.commits.errors import FormatError
from outrider.commits.parser import parse_path
from outrider.common.http import ResponseShapeError, TransportError
from outrider.common.time import utcnow

from .config import FreshnessConfig
from .errors import InvalidRecordUriError
from .models import (
    DELETION_PROVENANCE,
    CheckOutcome,
    CheckResult,
    CheckType,
    FreshnessMetrics,
)
from .observability import FreshnessEventLogger

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from outrider.ratelimit import EndpointRateLimiter
    from outrider.scanning.client import SyncClient

    from .models import ClaimedJob, FreshnessJob
    from .protocols import FreshnessSignals, LocalRecordStore
    from .queue import FreshnessQueue

logger = logging.getLogger(__name__)

_URI_SCHEME = "at://"


@dataclasses.dataclass(frozen=True, slots=True)
class RecordUri:
    """Components of an ``at://repo/collection/rkey`` identifier."""

    repo: str
    collection: str
    rkey: str


def parse_record_uri(uri: str) -> RecordUri:
    """Split a record identifier into repository, collection and key.

    Raises
    ------
    InvalidRecordUriError
        If *uri* is not an ``at://`` identifier naming a single record.

    Examples
    --------
    >>> parse_record_uri("at://did:plc:abc/app.example.post/3k2a")
    RecordUri(repo='did:plc:abc', collection='app.example.post', rkey='3k2a')

    """
    if not uri.startswith(_URI_SCHEME):
        raise InvalidRecordUriError(uri, "missing at:// scheme")
    repo, _, path = uri.removeprefix(_URI_SCHEME).partition("/")
    if not repo:
        raise InvalidRecordUriError(uri, "empty repository")
    try:
        parsed = parse_path(path)
    except FormatError as exc:
        raise InvalidRecordUriError(uri, str(exc)) from exc
    return RecordUri(repo=repo, collection=parsed.collection, rkey=parsed.rkey)


@dataclasses.dataclass(slots=True)
class _Counters:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    refreshed: int = 0
    unchanged: int = 0
    deleted: int = 0
    rate_limited: int = 0


class FreshnessWorker:
    """Claim freshness jobs and apply their verdicts.

    Parameters
    ----------
    queue:
        Source of claimed jobs.
    client:
        Client used to re-fetch records.
    limiter:
        Per-endpoint request budget shared with scanning.
    local_store:
        The local index's stored content identifiers.
    signals:
        Receiver of change and deletion signals.

    """

    def __init__(  # noqa: PLR0913
        self,
        queue: FreshnessQueue,
        client: SyncClient,
        limiter: EndpointRateLimiter,
        local_store: LocalRecordStore,
        signals: FreshnessSignals,
        *,
        config: FreshnessConfig | None = None,
        event_logger: FreshnessEventLogger | None = None,
        clock: typ.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Assemble the worker from its collaborators."""
        self._queue = queue
        self._client = client
        self._limiter = limiter
        self._local = local_store
        self._signals = signals
        self._config = config or FreshnessConfig()
        self._events = event_logger or FreshnessEventLogger()
        self._clock = clock
        self._counters = _Counters()

    async def enqueue(self, job: FreshnessJob) -> bool:
        """Add one job to the queue."""
        return await self._queue.enqueue(job)

    async def enqueue_batch(self, jobs: cabc.Iterable[FreshnessJob]) -> int:
        """Add several jobs to the queue in one transaction."""
        return await self._queue.enqueue_batch(jobs)

    async def process_job(self, claimed: ClaimedJob) -> CheckResult:
        """Check one claimed job and settle it in the queue."""
        job = claimed.job
        admission = await self._limiter.wait_for_limit(
            job.endpoint, self._config.max_rate_limit_wait_ms
        )
        if not admission.allowed:
            await self._queue.defer(
                claimed, dt.timedelta(seconds=self._config.rate_limit_defer_s)
            )
            self._counters.rate_limited += 1
            return CheckResult(uri=job.uri, outcome=CheckOutcome.RATE_LIMITED)

        self._counters.processed += 1
        try:
            target = parse_record_uri(job.uri)
        except InvalidRecordUriError as exc:
            # Retrying cannot fix a malformed identifier.
            await self._queue.complete(claimed)
            self._counters.failed += 1
            self._events.log_check_failed(job.uri, exc, retried=False)
            return CheckResult(uri=job.uri, outcome=CheckOutcome.ERROR, error=str(exc))

        previous_cid = await self._local.current_cid(job.uri)
        try:
            remote = await self._client.get_record(
                job.endpoint,
                repo=target.repo,
                collection=target.collection,
                rkey=target.rkey,
            )
        except (TransportError, ResponseShapeError) as exc:
            retried = await self._queue.retry(claimed, str(exc))
            self._counters.failed += 1
            self._events.log_check_failed(job.uri, exc, retried=retried)
            return CheckResult(uri=job.uri, outcome=CheckOutcome.ERROR, error=str(exc))

        if remote is None:
            await self._signals.record_deleted(
                job.uri, provenance=DELETION_PROVENANCE, detected_at=self._clock()
            )
            self._counters.deleted += 1
            result = CheckResult(
                uri=job.uri, outcome=CheckOutcome.DELETED, previous_cid=previous_cid
            )
        elif job.check_type is CheckType.DELETION or remote.cid == previous_cid:
            await self._local.mark_checked(job.uri, self._clock())
            self._counters.unchanged += 1
            result = CheckResult(
                uri=job.uri,
                outcome=CheckOutcome.UNCHANGED,
                previous_cid=previous_cid,
                current_cid=remote.cid,
            )
        else:
            await self._signals.record_changed(
                job.uri,
                previous_cid=previous_cid,
                current_cid=remote.cid,
                record=remote.value,
            )
            self._counters.refreshed += 1
            result = CheckResult(
                uri=job.uri,
                outcome=CheckOutcome.CHANGED,
                previous_cid=previous_cid,
                current_cid=remote.cid,
            )

        await self._queue.complete(claimed)
        self._counters.succeeded += 1
        self._events.log_check(result)
        return result

    async def run_once(self, max_jobs: int | None = None) -> int:
        """Drain available jobs, processing up to ``concurrency`` at a time.

        Returns the number of jobs claimed.
        """
        started = self._clock()
        limit = max_jobs if max_jobs is not None else self._config.jobs_per_run
        await self._queue.release_stale(
            dt.timedelta(seconds=self._config.in_flight_timeout_s)
        )

        claimed_total = 0
        while claimed_total < limit:
            batch = await self._queue.claim_batch(
                min(self._config.concurrency, limit - claimed_total)
            )
            if not batch:
                break
            claimed_total += len(batch)
            gathered = await asyncio.gather(
                *(self.process_job(claimed) for claimed in batch),
                return_exceptions=True,
            )
            await self._settle_failures(batch, gathered)

        self._events.log_run_completed(
            claimed_total, await self.metrics(), self._clock() - started
        )
        return claimed_total

    async def _settle_failures(
        self, batch: list[ClaimedJob], gathered: list[CheckResult | BaseException]
    ) -> None:
        for claimed, outcome in zip(batch, gathered, strict=True):
            if isinstance(outcome, Exception):
                logger.error(
                    "Freshness check for %s failed unexpectedly",
                    claimed.job.uri,
                    exc_info=outcome,
                )
                self._counters.failed += 1
                retried = await self._queue.retry(claimed, str(outcome))
                self._events.log_check_failed(claimed.job.uri, outcome, retried=retried)
            elif isinstance(outcome, BaseException):
                raise outcome

    async def metrics(self) -> FreshnessMetrics:
        """Return worker counters with the current queue depth."""
        counts = await self._queue.counts()
        counters = self._counters
        return FreshnessMetrics(
            processed=counters.processed,
            succeeded=counters.succeeded,
            failed=counters.failed,
            refreshed=counters.refreshed,
            unchanged=counters.unchanged,
            deleted=counters.deleted,
            rate_limited=counters.rate_limited,
            waiting=counts.waiting,
            delayed=counts.delayed,
            active=counts.active,
        )


__all__ = ["FreshnessWorker", "RecordUri", "parse_record_uri"]
