"""Durable, de-duplicated queue of freshness jobs.

The queue holds at most one job per record identifier. Enqueueing a record
that already has a job keeps the more urgent priority; enqueueing while the
job is in flight bumps its generation so completion re-queues it instead of
deleting it. Claims are compare-and-set updates, so several workers can drain
one queue.
"""

from __future__ import annotations

import datetime as dt
import logging
import typing as typ

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outrider.common.time import utcnow

from .errors import FreshnessQueueError
from .models import (
    CheckType,
    ClaimedJob,
    FreshnessJob,
    FreshnessPriority,
    JobOrigin,
    QueueCounts,
)
from .storage import FreshnessJobRecord, JobState

if typ.TYPE_CHECKING:
    import collections.abc as cabc

type SessionFactory = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)

_CLAIM_CANDIDATES = 8


class FreshnessQueue:
    """Freshness jobs stored in the ``freshness_jobs`` table.

    Parameters
    ----------
    session_factory:
        Async session factory for the queue database.
    max_retries:
        Failed attempts after which a job is dropped.
    retry_delay_s:
        Base delay before the first retry; doubled per further attempt.
    clock:
        Source of the current UTC time; injectable for tests.

    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        max_retries: int = 3,
        retry_delay_s: float = 5.0,
        clock: typ.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Configure the queue with its session factory and retry policy."""
        self._sf = session_factory
        self._max_retries = max_retries
        self._retry_delay_s = retry_delay_s
        self._clock = clock

    async def enqueue(self, job: FreshnessJob) -> bool:
        """Add *job*, merging it with any job already held for its record.

        Returns
        -------
        bool
            ``True`` when a new row was created rather than merged.

        """
        try:
            async with self._sf() as session, session.begin():
                return await self._upsert(session, job)
        except IntegrityError:
            # A concurrent enqueue inserted the row; merge into it instead.
            try:
                async with self._sf() as session, session.begin():
                    return await self._upsert(session, job)
            except SQLAlchemyError as exc:
                raise FreshnessQueueError.for_operation("enqueue", exc, uri=job.uri) from exc
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("enqueue", exc, uri=job.uri) from exc

    async def enqueue_batch(self, jobs: cabc.Iterable[FreshnessJob]) -> int:
        """Add several jobs in one transaction, returning how many were new."""
        created = 0
        try:
            async with self._sf() as session, session.begin():
                for job in jobs:
                    if await self._upsert(session, job):
                        created += 1
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("enqueue_batch", exc) from exc
        return created

    async def _upsert(self, session: AsyncSession, job: FreshnessJob) -> bool:
        now = self._clock()
        record = await session.scalar(
            select(FreshnessJobRecord).where(FreshnessJobRecord.uri == job.uri)
        )
        if record is None:
            session.add(
                FreshnessJobRecord(
                    uri=job.uri,
                    endpoint=job.endpoint,
                    priority=int(job.priority),
                    check_type=job.check_type.value,
                    origin=job.origin.value,
                    last_synced_at=job.last_synced_at,
                    state=JobState.QUEUED.value,
                    generation=0,
                    attempts=0,
                    available_at=now,
                    enqueued_at=now,
                )
            )
            await session.flush()
            return True

        record.generation += 1
        if job.priority < record.priority:
            record.priority = int(job.priority)
            record.origin = job.origin.value
            record.check_type = job.check_type.value
            if record.state == JobState.QUEUED.value:
                record.available_at = min(record.available_at, now)
        if job.last_synced_at is not None:
            record.last_synced_at = job.last_synced_at
        return False

    async def claim(self) -> ClaimedJob | None:
        """Move the most urgent available job to ``in_flight`` and return it."""
        claimed = await self.claim_batch(1)
        return claimed[0] if claimed else None

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        """Claim up to *limit* available jobs, most urgent first.

        Candidates another worker claims first are skipped.
        """
        now = self._clock()
        stmt = (
            select(FreshnessJobRecord)
            .where(
                FreshnessJobRecord.state == JobState.QUEUED.value,
                FreshnessJobRecord.available_at <= now,
            )
            .order_by(
                FreshnessJobRecord.priority.asc(),
                FreshnessJobRecord.available_at.asc(),
                FreshnessJobRecord.id.asc(),
            )
            .limit(max(limit, 1) * _CLAIM_CANDIDATES)
        )
        claimed: list[ClaimedJob] = []
        try:
            async with self._sf() as session, session.begin():
                candidates = (await session.scalars(stmt)).all()
                for record in candidates:
                    if len(claimed) >= limit:
                        break
                    result = await session.execute(
                        update(FreshnessJobRecord)
                        .where(
                            FreshnessJobRecord.id == record.id,
                            FreshnessJobRecord.state == JobState.QUEUED.value,
                        )
                        .values(state=JobState.IN_FLIGHT.value, claimed_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        claimed.append(_to_claimed(record))
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("claim", exc) from exc
        return claimed

    async def complete(self, claimed: ClaimedJob) -> bool:
        """Finish a claimed job.

        Returns ``True`` when the job was removed, ``False`` when it was
        re-enqueued during processing and has been put back in the queue.
        """
        now = self._clock()
        try:
            async with self._sf() as session, session.begin():
                removed = await session.execute(
                    delete(FreshnessJobRecord)
                    .where(
                        FreshnessJobRecord.id == claimed.id,
                        FreshnessJobRecord.generation == claimed.generation,
                    )
                    .execution_options(synchronize_session=False)
                )
                if removed.rowcount == 1:
                    return True
                await session.execute(
                    update(FreshnessJobRecord)
                    .where(FreshnessJobRecord.id == claimed.id)
                    .values(
                        state=JobState.QUEUED.value,
                        attempts=0,
                        available_at=now,
                        claimed_at=None,
                        last_error=None,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation(
                "complete", exc, uri=claimed.job.uri
            ) from exc
        logger.debug("Job for %s re-enqueued while in flight; queued again", claimed.job.uri)
        return False

    async def retry(self, claimed: ClaimedJob, error: str) -> bool:
        """Record a failed attempt, rescheduling with exponential backoff.

        Returns ``False`` when the job used its last attempt and was dropped.
        """
        attempts = claimed.attempts + 1
        if attempts >= self._max_retries:
            dropped = await self.complete(claimed)
            if dropped:
                logger.warning(
                    "Dropping freshness job for %s after %d attempts: %s",
                    claimed.job.uri,
                    attempts,
                    error,
                )
            return not dropped

        delay = dt.timedelta(seconds=self._retry_delay_s * 2 ** (attempts - 1))
        await self._release(claimed, "retry", delay, attempts=attempts, error=error)
        return True

    async def defer(self, claimed: ClaimedJob, delay: dt.timedelta) -> None:
        """Return a claimed job to the queue without using an attempt."""
        await self._release(claimed, "defer", delay, attempts=claimed.attempts, error=None)

    async def _release(
        self,
        claimed: ClaimedJob,
        operation: str,
        delay: dt.timedelta,
        *,
        attempts: int,
        error: str | None,
    ) -> None:
        now = self._clock()
        stmt = (
            update(FreshnessJobRecord)
            .where(FreshnessJobRecord.id == claimed.id)
            .values(
                state=JobState.QUEUED.value,
                attempts=attempts,
                available_at=now + delay,
                claimed_at=None,
                last_error=error,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sf() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation(
                operation, exc, uri=claimed.job.uri
            ) from exc

    async def release_stale(self, older_than: dt.timedelta) -> int:
        """Return jobs claimed longer than *older_than* ago to the queue."""
        now = self._clock()
        stmt = (
            update(FreshnessJobRecord)
            .where(
                FreshnessJobRecord.state == JobState.IN_FLIGHT.value,
                FreshnessJobRecord.claimed_at <= now - older_than,
            )
            .values(state=JobState.QUEUED.value, available_at=now, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sf() as session, session.begin():
                released = (await session.execute(stmt)).rowcount
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("release_stale", exc) from exc
        if released:
            logger.warning("Released %d stale freshness jobs", released)
        return released

    async def counts(self) -> QueueCounts:
        """Return how many jobs are waiting, delayed and in flight."""
        now = self._clock()
        queued = FreshnessJobRecord.state == JobState.QUEUED.value
        stmt = select(
            func.sum(case((and_(queued, FreshnessJobRecord.available_at <= now), 1), else_=0)),
            func.sum(case((and_(queued, FreshnessJobRecord.available_at > now), 1), else_=0)),
            func.sum(
                case((FreshnessJobRecord.state == JobState.IN_FLIGHT.value, 1), else_=0)
            ),
        ).select_from(FreshnessJobRecord)
        try:
            async with self._sf() as session:
                row = (await session.execute(stmt)).one()
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("counts", exc) from exc
        waiting, delayed, active = (int(value or 0) for value in row)
        return QueueCounts(waiting=waiting, delayed=delayed, active=active)


def _to_claimed(record: FreshnessJobRecord) -> ClaimedJob:
    return ClaimedJob(
        id=record.id,
        generation=record.generation,
        attempts=record.attempts,
        job=FreshnessJob(
            uri=record.uri,
            endpoint=record.endpoint,
            priority=FreshnessPriority(record.priority),
            check_type=CheckType(record.check_type),
            origin=JobOrigin(record.origin),
            last_synced_at=record.last_synced_at,
        ),
    )


__all__ = ["FreshnessQueue", "SessionFactory"]
