"""Fake collaborators and clocks shared by the unit tests."""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

import httpx

if typ.TYPE_CHECKING:
    from outrider.commits import CommitEvent, ParseError, RepoOperation
    from outrider.freshness import StaleRecord
    from outrider.scanning import ScannedRecord

T0 = dt.datetime(2024, 7, 14, 12, 0, tzinfo=dt.UTC)


class MutableClock:
    """Callable UTC clock that tests advance explicitly."""

    def __init__(self, start: dt.datetime = T0) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += dt.timedelta(**delta)


class MillisClock:
    """Millisecond clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += max(1, int(seconds * 1000))


@dataclasses.dataclass
class RecordingOperationSink:
    """OperationSink that records what it was given."""

    applied: list[RepoOperation] = dataclasses.field(default_factory=list)
    fail_on: set[str] = dataclasses.field(default_factory=set)

    async def apply(self, operation: RepoOperation) -> None:
        if operation.rkey in self.fail_on:
            msg = f"cannot apply {operation.rkey}"
            raise RuntimeError(msg)
        self.applied.append(operation)


@dataclasses.dataclass
class RecordingRejectedSink:
    """RejectedCommitSink that records rejected commits."""

    rejected: list[tuple[CommitEvent, ParseError]] = dataclasses.field(default_factory=list)

    async def reject(self, event: CommitEvent, error: ParseError) -> None:
        self.rejected.append((event, error))


@dataclasses.dataclass
class RecordingScanSink:
    """ScannedRecordSink that records accepted records."""

    records: list[ScannedRecord] = dataclasses.field(default_factory=list)

    async def accept(self, record: ScannedRecord) -> None:
        self.records.append(record)


@dataclasses.dataclass
class FakeLocalStore:
    """LocalRecordStore over a dict of uri to cid."""

    cids: dict[str, str] = dataclasses.field(default_factory=dict)
    checked: list[str] = dataclasses.field(default_factory=list)

    async def current_cid(self, uri: str) -> str | None:
        return self.cids.get(uri)

    async def mark_checked(self, uri: str, checked_at: dt.datetime) -> None:
        self.checked.append(uri)


@dataclasses.dataclass
class RecordingSignals:
    """FreshnessSignals that records every signal."""

    changed: list[tuple[str, str | None, str | None]] = dataclasses.field(
        default_factory=list
    )
    deleted: list[tuple[str, str]] = dataclasses.field(default_factory=list)

    async def record_changed(
        self,
        uri: str,
        *,
        previous_cid: str | None,
        current_cid: str | None,
        record: typ.Any,
    ) -> None:
        self.changed.append((uri, previous_cid, current_cid))

    async def record_deleted(
        self, uri: str, *, provenance: str, detected_at: dt.datetime
    ) -> None:
        self.deleted.append((uri, provenance))


@dataclasses.dataclass
class FakeStaleSource:
    """StaleRecordSource filtering an in-memory list."""

    records: list[StaleRecord] = dataclasses.field(default_factory=list)
    calls: int = 0

    async def select_stale(
        self,
        *,
        synced_before: dt.datetime,
        synced_after: dt.datetime | None,
        limit: int,
    ) -> list[StaleRecord]:
        self.calls += 1
        matching = [
            record
            for record in sorted(self.records, key=lambda r: r.last_synced_at)
            if record.last_synced_at < synced_before
            and (synced_after is None or record.last_synced_at >= synced_after)
        ]
        return matching[:limit]


type Handler = typ.Callable[[httpx.Request], httpx.Response]


def mock_http_client(handler: Handler) -> httpx.AsyncClient:
    """Return an AsyncClient whose requests are answered by *handler*."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def xrpc_error(status: int, error: str) -> httpx.Response:
    """Return an XRPC-style error response."""
    return httpx.Response(status, json={"error": error, "message": error})
