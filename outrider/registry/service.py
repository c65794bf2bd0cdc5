"""Endpoint registry service.

The registry is the durable state machine behind scan scheduling. Discovery
may register endpoints arbitrarily fast; only :meth:`get_endpoints_for_scan`
decides how many are scanned per tick. Every state change is a single
conditional statement against the backing table, so several scheduler
processes can share one registry without double-scanning an endpoint.
"""

from __future__ import annotations

import datetime as dt
import logging
import typing as typ

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outrider.common.endpoints import (
    InvalidEndpointError,
    endpoint_key,
    normalize_endpoint_url,
)
from outrider.common.time import utcnow

from .errors import EndpointNotFoundError, RegistryConflictError, RegistryStorageError
from .models import (
    DEFAULT_NEXT_SCAN_HOURS,
    MAX_CONSECUTIVE_FAILURES,
    EndpointRegistryEntry,
    EndpointStatus,
    RegistryStats,
    backoff_hours,
    status_after_failure,
)
from .storage import EndpointRecord

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from outrider.discovery.models import DiscoveredEndpoint

type SessionFactory = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)

_FAILURE_CAS_ATTEMPTS = 5


class EndpointRegistry:
    """Persistent per-endpoint scan state.

    Parameters
    ----------
    session_factory:
        Async session factory for the registry database.
    clock:
        Source of the current UTC time; injectable for tests.

    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: typ.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Configure the registry with its session factory."""
        self._sf = session_factory
        self._clock = clock

    async def register(
        self, discovered: DiscoveredEndpoint, *, relay_connected: bool = False
    ) -> bool:
        """Insert a discovered endpoint as ``pending`` if it is unknown.

        Registration is idempotent: an existing row keeps its original
        discovery source and provenance and is otherwise untouched.

        Returns
        -------
        bool
            ``True`` when a new row was created.

        Raises
        ------
        RegistryStorageError
            If the database operation fails.

        """
        try:
            url = normalize_endpoint_url(discovered.url)
        except InvalidEndpointError as exc:
            logger.warning("Ignoring invalid endpoint %r: %s", discovered.url, exc.reason)
            return False

        try:
            async with self._sf() as session, session.begin():
                if await session.get(EndpointRecord, url) is not None:
                    return False
                session.add(
                    EndpointRecord(
                        endpoint=url,
                        discovered_at=self._clock(),
                        discovery_source=str(discovered.source),
                        provenance=discovered.provenance,
                        status=EndpointStatus.PENDING.value,
                        relay_connected=relay_connected,
                    )
                )
        except IntegrityError:
            # Another process registered the endpoint first.
            return False
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation("register", url, exc) from exc

        logger.debug("Registered endpoint %s source=%s", url, discovered.source)
        return True

    async def register_many(self, discovered: cabc.Iterable[DiscoveredEndpoint]) -> int:
        """Register each candidate, returning how many rows were created."""
        created = 0
        for candidate in discovered:
            if await self.register(candidate):
                created += 1
        return created

    async def get_endpoints_for_scan(
        self, limit: int, *, include_relay_connected: bool = False
    ) -> list[EndpointRegistryEntry]:
        """Return active endpoints that are due for a scan.

        Endpoints must be ``active``, have no scheduled time or one in the
        past, and have fewer than five consecutive failures. Results are
        ordered by ascending priority then scheduled time, unscheduled
        first. Endpoints whose content already arrives through the relay
        are skipped unless *include_relay_connected* is set.
        """
        now = self._clock()
        stmt = (
            select(EndpointRecord)
            .where(
                EndpointRecord.status == EndpointStatus.ACTIVE.value,
                or_(
                    EndpointRecord.next_scan_at.is_(None),
                    EndpointRecord.next_scan_at <= now,
                ),
                EndpointRecord.consecutive_failures < MAX_CONSECUTIVE_FAILURES,
            )
            .order_by(
                EndpointRecord.scan_priority.asc(),
                EndpointRecord.next_scan_at.asc().nulls_first(),
            )
            .limit(limit)
        )
        if not include_relay_connected:
            stmt = stmt.where(EndpointRecord.relay_connected.is_(False))
        return await self._select_entries(stmt, "get_endpoints_for_scan")

    async def get_endpoints_for_probe(
        self, limit: int, *, include_unreachable: bool = False
    ) -> list[EndpointRegistryEntry]:
        """Return ``pending`` endpoints due for a reachability probe.

        With *include_unreachable* set, ``unreachable`` endpoints whose
        backoff has elapsed are included so a later successful probe can
        recover them.
        """
        now = self._clock()
        statuses = [EndpointStatus.PENDING.value]
        if include_unreachable:
            statuses.append(EndpointStatus.UNREACHABLE.value)
        stmt = (
            select(EndpointRecord)
            .where(
                EndpointRecord.status.in_(statuses),
                or_(
                    EndpointRecord.next_scan_at.is_(None),
                    EndpointRecord.next_scan_at <= now,
                ),
            )
            .order_by(
                EndpointRecord.scan_priority.asc(),
                EndpointRecord.discovered_at.asc(),
            )
            .limit(limit)
        )
        return await self._select_entries(stmt, "get_endpoints_for_probe")

    async def mark_scan_started(self, endpoint: str) -> bool:
        """Move an endpoint from ``active`` to ``scanning``.

        The transition is a compare-and-set on the stored status, so exactly
        one of several concurrent callers wins.

        Returns
        -------
        bool
            ``False`` when the endpoint was not ``active`` (another scheduler
            already acquired it, or it left the scannable states).

        """
        url = normalize_endpoint_url(endpoint)
        now = self._clock()
        stmt = (
            update(EndpointRecord)
            .where(
                EndpointRecord.endpoint == url,
                EndpointRecord.status == EndpointStatus.ACTIVE.value,
            )
            .values(
                status=EndpointStatus.SCANNING.value,
                scan_started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        acquired = await self._execute_update(stmt, "mark_scan_started", url) == 1
        if not acquired:
            logger.debug("Scan for %s not started: endpoint is not active", url)
        return acquired

    async def mark_scan_completed(
        self,
        endpoint: str,
        *,
        has_content: bool,
        content_count: int,
        next_scan_hours: int = DEFAULT_NEXT_SCAN_HOURS,
    ) -> bool:
        """Record a successful scan and schedule the next one.

        The update only applies while the endpoint is still ``scanning``.
        A completion that arrives after the scan was released, reset or
        failed elsewhere is ignored and ``False`` is returned.

        Raises
        ------
        EndpointNotFoundError
            If the endpoint is not registered.

        """
        url = normalize_endpoint_url(endpoint)
        now = self._clock()
        status = EndpointStatus.ACTIVE if has_content else EndpointStatus.NO_CONTENT
        stmt = (
            update(EndpointRecord)
            .where(
                EndpointRecord.endpoint == url,
                EndpointRecord.status == EndpointStatus.SCANNING.value,
            )
            .values(
                status=status.value,
                has_content=has_content,
                content_count=content_count,
                consecutive_failures=0,
                last_error=None,
                last_scan_at=now,
                next_scan_at=now + dt.timedelta(hours=next_scan_hours),
                scan_started_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if await self._execute_update(stmt, "mark_scan_completed", url) == 1:
            return True
        await self._require(url, "mark_scan_completed")
        logger.info("Completion for %s ignored: endpoint is no longer scanning", url)
        return False

    async def mark_scan_failed(self, endpoint: str, error: str) -> int:
        """Record a failed scan or probe and back the endpoint off.

        The failure count is read, incremented and written back with a
        compare-and-set on the count that was read, so concurrent reports
        for the same endpoint each take effect exactly once. The next scan
        is scheduled ``2 ** min(failures, 4)`` hours out; the fifth
        consecutive failure makes the endpoint ``unreachable``.

        Returns
        -------
        int
            The new consecutive failure count.

        Raises
        ------
        EndpointNotFoundError
            If the endpoint is not registered.
        RegistryConflictError
            If the count kept changing underneath every attempt.

        """
        url = normalize_endpoint_url(endpoint)
        for _ in range(_FAILURE_CAS_ATTEMPTS):
            try:
                async with self._sf() as session, session.begin():
                    failures = await self._apply_failure(session, url, error)
            except SQLAlchemyError as exc:
                raise RegistryStorageError.for_operation("mark_scan_failed", url, exc) from exc
            if failures is not None:
                return failures
        raise RegistryConflictError.for_failure_update(url, _FAILURE_CAS_ATTEMPTS)

    async def _apply_failure(
        self, session: AsyncSession, url: str, error: str
    ) -> int | None:
        row = (
            await session.execute(
                select(
                    EndpointRecord.status, EndpointRecord.consecutive_failures
                ).where(EndpointRecord.endpoint == url)
            )
        ).one_or_none()
        if row is None:
            raise EndpointNotFoundError(url)

        previous = row.consecutive_failures
        failures = previous + 1
        now = self._clock()
        # A failed scan leaves the endpoint in the state it was scanned from.
        current = EndpointStatus(row.status)
        if current is EndpointStatus.SCANNING:
            current = EndpointStatus.ACTIVE
        status = status_after_failure(current, failures)
        result = await session.execute(
            update(EndpointRecord)
            .where(
                EndpointRecord.endpoint == url,
                EndpointRecord.consecutive_failures == previous,
            )
            .values(
                consecutive_failures=failures,
                last_error=error,
                status=status.value,
                next_scan_at=now + dt.timedelta(hours=backoff_hours(failures)),
                scan_started_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        if status is EndpointStatus.UNREACHABLE:
            logger.warning("Endpoint %s unreachable after %d failures", url, failures)
        return failures

    async def mark_scan_deferred(self, endpoint: str, delay: dt.timedelta) -> bool:
        """Release a ``scanning`` endpoint back to ``active`` without penalty.

        Used when a scan is cut short for local reasons (request budget
        exhausted, internal error) so the failure count is left alone.
        """
        url = normalize_endpoint_url(endpoint)
        now = self._clock()
        stmt = (
            update(EndpointRecord)
            .where(
                EndpointRecord.endpoint == url,
                EndpointRecord.status == EndpointStatus.SCANNING.value,
            )
            .values(
                status=EndpointStatus.ACTIVE.value,
                next_scan_at=now + delay,
                scan_started_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt, "mark_scan_deferred", url) == 1

    async def mark_probe_succeeded(self, endpoint: str) -> bool:
        """Promote a ``pending`` or ``unreachable`` endpoint to ``active``.

        The endpoint becomes immediately due for a scan and its failure count
        is cleared. Returns ``False`` when the endpoint was in neither state.
        """
        url = normalize_endpoint_url(endpoint)
        now = self._clock()
        stmt = (
            update(EndpointRecord)
            .where(
                EndpointRecord.endpoint == url,
                EndpointRecord.status.in_(
                    [EndpointStatus.PENDING.value, EndpointStatus.UNREACHABLE.value]
                ),
            )
            .values(
                status=EndpointStatus.ACTIVE.value,
                consecutive_failures=0,
                last_error=None,
                next_scan_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt, "mark_probe_succeeded", url) == 1

    async def reset_endpoint(self, endpoint: str) -> None:
        """Administratively return an endpoint to ``pending``.

        Clears failures, the last error and the scheduled time so the next
        scheduler tick probes it again. An endpoint that is being scanned is
        left alone; reset it once the scan finishes or its lease expires.

        Raises
        ------
        EndpointNotFoundError
            If the endpoint is not registered.
        RegistryConflictError
            If the endpoint is currently ``scanning``.

        """
        url = normalize_endpoint_url(endpoint)
        stmt = (
            update(EndpointRecord)
            .where(
                EndpointRecord.endpoint == url,
                EndpointRecord.status != EndpointStatus.SCANNING.value,
            )
            .values(
                status=EndpointStatus.PENDING.value,
                consecutive_failures=0,
                last_error=None,
                next_scan_at=None,
                scan_started_at=None,
                updated_at=self._clock(),
            )
            .execution_options(synchronize_session=False)
        )
        if await self._execute_update(stmt, "reset_endpoint", url) == 0:
            await self._require(url, "reset_endpoint")
            raise RegistryConflictError.scan_in_progress(url)
        logger.info("Endpoint %s reset to pending", url)

    async def release_stale_scans(self, older_than: dt.timedelta) -> int:
        """Return endpoints stuck in ``scanning`` past *older_than* to ``active``.

        A crashed scan never runs its completion handler; this bounds how long
        such an endpoint stays out of rotation.
        """
        now = self._clock()
        cutoff = now - older_than
        stmt = (
            update(EndpointRecord)
            .where(
                EndpointRecord.status == EndpointStatus.SCANNING.value,
                or_(
                    EndpointRecord.scan_started_at.is_(None),
                    EndpointRecord.scan_started_at <= cutoff,
                ),
            )
            .values(
                status=EndpointStatus.ACTIVE.value,
                scan_started_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        released = await self._execute_update(stmt, "release_stale_scans", None)
        if released:
            logger.warning("Released %d stale scans older than %s", released, older_than)
        return released

    async def refresh_relay_connectivity(self, relay_hosts: cabc.Iterable[str]) -> int:
        """Flag endpoints whose host the relay currently tracks.

        Returns the number of rows whose flag changed.
        """
        hosts = {host.strip().lower() for host in relay_hosts if host.strip()}
        changed = 0
        try:
            async with self._sf() as session, session.begin():
                records = (await session.scalars(select(EndpointRecord))).all()
                for record in records:
                    try:
                        connected = endpoint_key(record.endpoint) in hosts
                    except InvalidEndpointError:
                        continue
                    if record.relay_connected != connected:
                        record.relay_connected = connected
                        changed += 1
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation(
                "refresh_relay_connectivity", None, exc
            ) from exc
        return changed

    async def get_endpoint(self, endpoint: str) -> EndpointRegistryEntry | None:
        """Return the registry entry for *endpoint*, if registered."""
        try:
            url = normalize_endpoint_url(endpoint)
        except InvalidEndpointError:
            return None
        try:
            async with self._sf() as session:
                record = await session.get(EndpointRecord, url)
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation("get_endpoint", url, exc) from exc
        return self._to_entry(record) if record else None

    async def get_stats(self) -> RegistryStats:
        """Return row counts by status."""

        def _count(status: EndpointStatus) -> typ.Any:
            return func.sum(case((EndpointRecord.status == status.value, 1), else_=0))

        stmt = select(
            func.count(),
            _count(EndpointStatus.PENDING),
            _count(EndpointStatus.ACTIVE),
            _count(EndpointStatus.SCANNING),
            func.sum(case((EndpointRecord.has_content.is_(True), 1), else_=0)),
            _count(EndpointStatus.UNREACHABLE),
            _count(EndpointStatus.NO_CONTENT),
        ).select_from(EndpointRecord)
        try:
            async with self._sf() as session:
                row = (await session.execute(stmt)).one()
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation("get_stats", None, exc) from exc
        total, pending, active, scanning, with_content, unreachable, no_content = (
            int(value or 0) for value in row
        )
        return RegistryStats(
            total=total,
            pending=pending,
            active=active,
            scanning=scanning,
            with_content=with_content,
            unreachable=unreachable,
            no_content=no_content,
        )

    async def _select_entries(
        self, stmt: typ.Any, operation: str
    ) -> list[EndpointRegistryEntry]:
        try:
            async with self._sf() as session:
                records = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation(operation, None, exc) from exc
        return [self._to_entry(record) for record in records]

    async def _require(self, url: str, operation: str) -> None:
        try:
            async with self._sf() as session:
                record = await session.get(EndpointRecord, url)
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation(operation, url, exc) from exc
        if record is None:
            raise EndpointNotFoundError(url)

    async def _execute_update(
        self, stmt: typ.Any, operation: str, endpoint: str | None
    ) -> int:
        try:
            async with self._sf() as session, session.begin():
                result = await session.execute(stmt)
                affected = result.rowcount
        except SQLAlchemyError as exc:
            raise RegistryStorageError.for_operation(operation, endpoint, exc) from exc
        return affected

    @staticmethod
    def _to_entry(record: EndpointRecord) -> EndpointRegistryEntry:
        return EndpointRegistryEntry(
            endpoint=record.endpoint,
            discovered_at=record.discovered_at,
            discovery_source=record.discovery_source,
            provenance=record.provenance,
            status=EndpointStatus(record.status),
            relay_connected=record.relay_connected,
            last_scan_at=record.last_scan_at,
            next_scan_at=record.next_scan_at,
            has_content=record.has_content,
            content_count=record.content_count,
            consecutive_failures=record.consecutive_failures,
            scan_priority=record.scan_priority,
            last_error=record.last_error,
            updated_at=record.updated_at,
        )


__all__ = ["EndpointRegistry", "SessionFactory"]
