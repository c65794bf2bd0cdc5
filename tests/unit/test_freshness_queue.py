"""Unit tests for the durable freshness job queue."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest

from outrider.freshness import (
    CheckType,
    FreshnessJob,
    FreshnessPriority,
    FreshnessQueue,
    JobOrigin,
    QueueCounts,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tests.helpers.fakes import MutableClock

PDS = "https://pds.example.com"
URI = "at://did:plc:abc/app.example.post/3k2a"


@pytest.fixture
def queue(
    session_factory: async_sessionmaker[AsyncSession], clock: MutableClock
) -> FreshnessQueue:
    """Return a queue with a short, predictable retry policy."""
    return FreshnessQueue(session_factory, max_retries=3, retry_delay_s=5.0, clock=clock)


def _scan_job(
    uri: str = URI, priority: FreshnessPriority = FreshnessPriority.NORMAL
) -> FreshnessJob:
    return FreshnessJob.from_scan(uri=uri, endpoint=PDS, priority=priority)


class TestEnqueue:
    """Tests for enqueueing and de-duplication."""

    @pytest.mark.asyncio
    async def test_duplicate_enqueue_keeps_one_job_at_the_most_urgent_priority(
        self, queue: FreshnessQueue
    ) -> None:
        """A direct request upgrades a queued scan job instead of duplicating it."""
        assert await queue.enqueue(_scan_job()) is True
        assert await queue.enqueue(FreshnessJob.direct(uri=URI, endpoint=PDS)) is False

        claimed = await queue.claim_batch(10)

        assert len(claimed) == 1
        job = claimed[0].job
        assert job.priority is FreshnessPriority.URGENT
        assert job.origin is JobOrigin.DIRECT
        assert job.check_type is CheckType.FULL

    @pytest.mark.asyncio
    async def test_less_urgent_enqueue_does_not_downgrade(
        self, queue: FreshnessQueue
    ) -> None:
        """A background re-enqueue leaves a recent job's priority alone."""
        await queue.enqueue(_scan_job(priority=FreshnessPriority.RECENT))
        await queue.enqueue(_scan_job(priority=FreshnessPriority.BACKGROUND))

        claimed = await queue.claim()

        assert claimed is not None
        assert claimed.job.priority is FreshnessPriority.RECENT

    @pytest.mark.asyncio
    async def test_enqueue_batch_counts_new_rows(self, queue: FreshnessQueue) -> None:
        """Batch enqueue merges duplicates within and across batches."""
        await queue.enqueue(_scan_job("at://did:plc:a/app.example.post/1"))

        created = await queue.enqueue_batch(
            [
                _scan_job("at://did:plc:a/app.example.post/1"),
                _scan_job("at://did:plc:a/app.example.post/2"),
                _scan_job("at://did:plc:a/app.example.post/2"),
                _scan_job("at://did:plc:a/app.example.post/3"),
            ]
        )

        assert created == 2
        assert await queue.counts() == QueueCounts(waiting=3)


class TestClaimAndComplete:
    """Tests for claiming and finishing jobs."""

    @pytest.mark.asyncio
    async def test_claims_follow_priority(self, queue: FreshnessQueue) -> None:
        """More urgent jobs are claimed first; a claimed job is not reclaimed."""
        base = "at://did:plc:a/app.example.post"
        await queue.enqueue(_scan_job(f"{base}/bg", FreshnessPriority.BACKGROUND))
        await queue.enqueue(_scan_job(f"{base}/recent", FreshnessPriority.RECENT))

        first = await queue.claim()
        second = await queue.claim()

        assert first is not None
        assert second is not None
        assert first.job.uri.endswith("/recent")
        assert second.job.uri.endswith("/bg")
        assert await queue.claim() is None
        assert await queue.counts() == QueueCounts(active=2)

    @pytest.mark.asyncio
    async def test_complete_removes_the_job(self, queue: FreshnessQueue) -> None:
        """A finished job leaves the queue."""
        await queue.enqueue(_scan_job())
        claimed = await queue.claim()
        assert claimed is not None

        assert await queue.complete(claimed) is True
        assert await queue.counts() == QueueCounts()

    @pytest.mark.asyncio
    async def test_reenqueue_while_in_flight_runs_the_job_again(
        self, queue: FreshnessQueue
    ) -> None:
        """Completion of a superseded claim puts the job back in the queue."""
        await queue.enqueue(_scan_job())
        claimed = await queue.claim()
        assert claimed is not None

        assert await queue.enqueue(_scan_job()) is False
        assert await queue.complete(claimed) is False
        assert await queue.counts() == QueueCounts(waiting=1)

        again = await queue.claim()
        assert again is not None
        assert again.generation > claimed.generation
        assert await queue.complete(again) is True
        assert await queue.counts() == QueueCounts()


class TestRetryAndDefer:
    """Tests for failed and postponed attempts."""

    @pytest.mark.asyncio
    async def test_retries_back_off_then_drop(
        self, queue: FreshnessQueue, clock: MutableClock
    ) -> None:
        """Delays double per attempt and the third failure drops the job."""
        await queue.enqueue(_scan_job())
        delays: list[float] = []

        for _ in range(2):
            claimed = await queue.claim()
            assert claimed is not None
            assert await queue.retry(claimed, "HTTP 502") is True
            assert await queue.counts() == QueueCounts(delayed=1)
            waited = 0.0
            while await queue.counts() != QueueCounts(waiting=1):
                clock.advance(seconds=1)
                waited += 1
            delays.append(waited)

        claimed = await queue.claim()
        assert claimed is not None
        assert claimed.attempts == 2
        assert await queue.retry(claimed, "HTTP 502") is False

        assert delays == [5.0, 10.0]
        assert await queue.counts() == QueueCounts()

    @pytest.mark.asyncio
    async def test_defer_does_not_use_an_attempt(
        self, queue: FreshnessQueue, clock: MutableClock
    ) -> None:
        """A deferred job becomes claimable after the delay with its attempts intact."""
        await queue.enqueue(_scan_job())
        claimed = await queue.claim()
        assert claimed is not None

        await queue.defer(claimed, dt.timedelta(seconds=60))

        assert await queue.claim() is None
        clock.advance(seconds=60)
        again = await queue.claim()
        assert again is not None
        assert again.attempts == 0

    @pytest.mark.asyncio
    async def test_stale_claims_are_released(
        self, queue: FreshnessQueue, clock: MutableClock
    ) -> None:
        """Claims older than the timeout return to the queue."""
        await queue.enqueue(_scan_job())
        assert await queue.claim() is not None
        clock.advance(minutes=5)
        assert await queue.release_stale(dt.timedelta(minutes=10)) == 0

        clock.advance(minutes=6)

        assert await queue.release_stale(dt.timedelta(minutes=10)) == 1
        assert await queue.claim() is not None
