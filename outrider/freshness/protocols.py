"""Collaborators the freshness worker reports to and reads from."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt

    from .models import StaleRecord


class RunGuard(typ.Protocol):
    """Mutual exclusion for a periodic job across processes."""

    async def acquire(self) -> str | None:
        """Return a holder token, or ``None`` when another runner holds the job."""
        ...

    async def release(self, token: str) -> None:
        """Release the job held under *token*."""
        ...


class LocalRecordStore(typ.Protocol):
    """The local index's view of records it holds."""

    async def current_cid(self, uri: str) -> str | None:
        """Return the content identifier stored for *uri*, if any."""
        ...

    async def mark_checked(self, uri: str, checked_at: dt.datetime) -> None:
        """Record that *uri* was verified unchanged at *checked_at*."""
        ...


class FreshnessSignals(typ.Protocol):
    """Events consumed by the external re-index and removal pipeline."""

    async def record_changed(
        self,
        uri: str,
        *,
        previous_cid: str | None,
        current_cid: str | None,
        record: typ.Any,
    ) -> None:
        """Signal that *uri* must be re-indexed."""
        ...

    async def record_deleted(
        self, uri: str, *, provenance: str, detected_at: dt.datetime
    ) -> None:
        """Signal that *uri* must be soft-deleted."""
        ...


class StaleRecordSource(typ.Protocol):
    """Query over the local index by last sync time."""

    async def select_stale(
        self,
        *,
        synced_before: dt.datetime,
        synced_after: dt.datetime | None,
        limit: int,
    ) -> list[StaleRecord]:
        """Return up to *limit* records last synced in the given range.

        The range is ``synced_after <= last_synced_at < synced_before``;
        ``synced_after`` of ``None`` leaves it open. Oldest records first.
        """
        ...


__all__ = ["FreshnessSignals", "LocalRecordStore", "RunGuard", "StaleRecordSource"]
