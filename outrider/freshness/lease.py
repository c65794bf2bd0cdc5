"""Database lease keeping a periodic job to one runner at a time."""

from __future__ import annotations

import datetime as dt
import logging
import typing as typ
import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from outrider.common.time import utcnow

from .errors import FreshnessQueueError
from .storage import JobLeaseRecord

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class SqlRunLease:
    """Named lease row shared by every process using one database.

    :meth:`acquire` takes the row only when it is absent or its lease has
    expired, so a holder that dies without releasing blocks other runners
    for at most ``ttl``.

    Parameters
    ----------
    session_factory:
        Async session factory for the database holding ``job_leases``.
    name:
        Job name; runners using the same name exclude each other.
    ttl:
        How long an unreleased lease is honoured.

    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        name: str,
        *,
        ttl: dt.timedelta,
        clock: typ.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Bind the lease to its row."""
        self._sf = session_factory
        self._name = name
        self._ttl = ttl
        self._clock = clock

    async def acquire(self) -> str | None:
        """Take the lease, returning a holder token, or ``None`` if it is held."""
        now = self._clock()
        token = uuid.uuid4().hex
        expires_at = now + self._ttl
        stmt = (
            update(JobLeaseRecord)
            .where(JobLeaseRecord.name == self._name, JobLeaseRecord.expires_at <= now)
            .values(holder=token, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sf() as session, session.begin():
                taken = (await session.execute(stmt)).rowcount == 1
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("acquire_lease", exc) from exc
        if taken:
            return token

        try:
            async with self._sf() as session, session.begin():
                session.add(
                    JobLeaseRecord(name=self._name, holder=token, expires_at=expires_at)
                )
        except IntegrityError:
            logger.debug("Lease %s is held elsewhere", self._name)
            return None
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("acquire_lease", exc) from exc
        return token

    async def release(self, token: str) -> None:
        """Give the lease up if *token* still holds it."""
        stmt = (
            update(JobLeaseRecord)
            .where(JobLeaseRecord.name == self._name, JobLeaseRecord.holder == token)
            .values(holder=None, expires_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sf() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise FreshnessQueueError.for_operation("release_lease", exc) from exc


__all__ = ["SqlRunLease"]
