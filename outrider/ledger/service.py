"""SQL-backed sync ledger.

One object plays every collaborator role the periodic jobs need: it applies
ingested operations, accepts scanned records, answers the freshness worker's
content-identifier lookups, stores its change and deletion signals and feeds
the staleness scan.
"""

from __future__ import annotations

import datetime as dt
import logging
import typing as typ

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from outrider.common.time import utcnow
from outrider.freshness.models import StaleRecord

from .errors import LedgerStorageError
from .storage import SyncedRecord

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from outrider.commits.errors import ParseError
    from outrider.commits.models import CommitEvent, RepoOperation
    from outrider.scanning.models import ScannedRecord

logger = logging.getLogger(__name__)

COMMIT_DELETION_PROVENANCE = "commit"


class SyncLedger:
    """Track what was synced from where, and when.

    Parameters
    ----------
    session_factory:
        Async session factory for the ledger database.
    clock:
        Source of the current UTC time; injectable for tests.

    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: typ.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Store the session factory used for ledger operations."""
        self._sf = session_factory
        self._clock = clock

    async def apply(self, operation: RepoOperation) -> None:
        """Apply one ingested operation in commit order."""
        if operation.operation.action == "delete":
            await self._soft_delete(
                operation.uri, COMMIT_DELETION_PROVENANCE, self._clock()
            )
            return
        await self._upsert(
            operation.uri,
            repo=operation.repo,
            collection=operation.collection,
            rkey=operation.rkey,
            endpoint=None,
            cid=operation.operation.cid,
            seq=operation.seq,
        )

    async def accept(self, record: ScannedRecord) -> None:
        """Store a record collected by an endpoint scan."""
        await self._upsert(
            record.uri,
            repo=record.repo,
            collection=record.collection,
            rkey=record.rkey,
            endpoint=record.endpoint,
            cid=record.cid,
            seq=None,
        )

    async def reject(self, event: CommitEvent, error: ParseError) -> None:
        """Note a commit that could not be decoded so it can be backfilled."""
        logger.warning(
            "Rejected commit repo=%s commit=%s seq=%d: %s",
            event.repo,
            event.commit,
            event.seq,
            error,
        )

    async def current_cid(self, uri: str) -> str | None:
        """Return the stored content identifier of a live record."""
        stmt = select(SyncedRecord.cid).where(
            SyncedRecord.uri == uri, SyncedRecord.deleted_at.is_(None)
        )
        try:
            async with self._sf() as session:
                return await session.scalar(stmt)
        except SQLAlchemyError as exc:
            raise LedgerStorageError.for_operation("current_cid", exc, uri=uri) from exc

    async def mark_checked(self, uri: str, checked_at: dt.datetime) -> None:
        """Record a verification that found the record unchanged."""
        await self._update(
            "mark_checked",
            uri,
            last_checked_at=checked_at,
            last_synced_at=checked_at,
        )

    async def record_changed(
        self,
        uri: str,
        *,
        previous_cid: str | None,
        current_cid: str | None,
        record: typ.Any,
    ) -> None:
        """Store the endpoint's newer content identifier for *uri*.

        The endpoint still serves the record, so a soft deletion recorded
        earlier is cleared.
        """
        now = self._clock()
        await self._update(
            "record_changed",
            uri,
            cid=current_cid,
            last_synced_at=now,
            last_checked_at=now,
            deleted_at=None,
            deletion_provenance=None,
        )
        logger.debug("Record %s changed from %s to %s", uri, previous_cid, current_cid)

    async def record_deleted(
        self, uri: str, *, provenance: str, detected_at: dt.datetime
    ) -> None:
        """Soft-delete *uri*; an already deleted record keeps its provenance."""
        await self._soft_delete(uri, provenance, detected_at)

    async def select_stale(
        self,
        *,
        synced_before: dt.datetime,
        synced_after: dt.datetime | None,
        limit: int,
    ) -> list[StaleRecord]:
        """Return live records from known endpoints last synced in the range."""
        stmt = (
            select(SyncedRecord)
            .where(
                SyncedRecord.deleted_at.is_(None),
                SyncedRecord.endpoint.is_not(None),
                SyncedRecord.last_synced_at < synced_before,
            )
            .order_by(SyncedRecord.last_synced_at.asc())
            .limit(limit)
        )
        if synced_after is not None:
            stmt = stmt.where(SyncedRecord.last_synced_at >= synced_after)
        try:
            async with self._sf() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise LedgerStorageError.for_operation("select_stale", exc) from exc
        return [
            StaleRecord(
                uri=row.uri,
                endpoint=typ.cast("str", row.endpoint),
                last_synced_at=row.last_synced_at,
            )
            for row in rows
        ]

    async def get(self, uri: str) -> SyncedRecord | None:
        """Return the ledger row for *uri*, deleted or not."""
        try:
            async with self._sf() as session:
                return await session.get(SyncedRecord, uri)
        except SQLAlchemyError as exc:
            raise LedgerStorageError.for_operation("get", exc, uri=uri) from exc

    async def _upsert(  # noqa: PLR0913
        self,
        uri: str,
        *,
        repo: str,
        collection: str,
        rkey: str,
        endpoint: str | None,
        cid: str | None,
        seq: int | None,
    ) -> None:
        now = self._clock()
        try:
            async with self._sf() as session, session.begin():
                row = await session.get(SyncedRecord, uri)
                if row is None:
                    session.add(
                        SyncedRecord(
                            uri=uri,
                            repo=repo,
                            collection=collection,
                            rkey=rkey,
                            endpoint=endpoint,
                            cid=cid,
                            last_seq=seq,
                            last_synced_at=now,
                        )
                    )
                    return
                row.cid = cid
                row.last_synced_at = now
                row.deleted_at = None
                row.deletion_provenance = None
                if endpoint is not None:
                    row.endpoint = endpoint
                if seq is not None:
                    row.last_seq = seq
        except SQLAlchemyError as exc:
            raise LedgerStorageError.for_operation("upsert", exc, uri=uri) from exc

    async def _soft_delete(
        self, uri: str, provenance: str, detected_at: dt.datetime
    ) -> None:
        stmt = (
            update(SyncedRecord)
            .where(SyncedRecord.uri == uri, SyncedRecord.deleted_at.is_(None))
            .values(deleted_at=detected_at, deletion_provenance=provenance)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sf() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise LedgerStorageError.for_operation("record_deleted", exc, uri=uri) from exc

    async def _update(self, operation: str, uri: str, **values: typ.Any) -> None:
        stmt = (
            update(SyncedRecord)
            .where(SyncedRecord.uri == uri)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._sf() as session, session.begin():
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise LedgerStorageError.for_operation(operation, exc, uri=uri) from exc


__all__ = ["COMMIT_DELETION_PROVENANCE", "SyncLedger"]
