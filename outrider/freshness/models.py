"""Freshness jobs, check outcomes and counters."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt

DELETION_PROVENANCE = "endpoint_not_found"


class FreshnessPriority(enum.IntEnum):
    """Queue priority per tier; lower numbers run first."""

    URGENT = 1
    RECENT = 5
    NORMAL = 10
    BACKGROUND = 20


class CheckType(enum.StrEnum):
    """What a freshness check verifies.

    ``deletion`` only confirms the record still exists; ``staleness`` and
    ``full`` also compare content identifiers.
    """

    STALENESS = "staleness"
    DELETION = "deletion"
    FULL = "full"


class JobOrigin(enum.StrEnum):
    """Who asked for the check."""

    SCAN = "scan"
    DIRECT = "direct"


class CheckOutcome(enum.StrEnum):
    """Result variants of processing one job."""

    UNCHANGED = "unchanged"
    CHANGED = "changed"
    DELETED = "deleted"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"


@dataclasses.dataclass(frozen=True, slots=True)
class FreshnessJob:
    """Request to verify one record against its source endpoint."""

    uri: str
    endpoint: str
    priority: FreshnessPriority = FreshnessPriority.NORMAL
    check_type: CheckType = CheckType.STALENESS
    origin: JobOrigin = JobOrigin.DIRECT
    last_synced_at: dt.datetime | None = None

    @classmethod
    def from_scan(
        cls,
        *,
        uri: str,
        endpoint: str,
        priority: FreshnessPriority,
        check_type: CheckType = CheckType.STALENESS,
        last_synced_at: dt.datetime | None = None,
    ) -> FreshnessJob:
        """Build a job scheduled by a scan or staleness sweep."""
        return cls(
            uri=uri,
            endpoint=endpoint,
            priority=priority,
            check_type=check_type,
            origin=JobOrigin.SCAN,
            last_synced_at=last_synced_at,
        )

    @classmethod
    def direct(
        cls,
        *,
        uri: str,
        endpoint: str,
        check_type: CheckType = CheckType.FULL,
        last_synced_at: dt.datetime | None = None,
    ) -> FreshnessJob:
        """Build an urgent job requested by an external signal."""
        return cls(
            uri=uri,
            endpoint=endpoint,
            priority=FreshnessPriority.URGENT,
            check_type=check_type,
            origin=JobOrigin.DIRECT,
            last_synced_at=last_synced_at,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class ClaimedJob:
    """A job moved to ``in_flight`` by one worker.

    ``generation`` identifies the enqueue this claim observed; a later
    enqueue for the same record bumps it so completion knows to run the
    job again.
    """

    id: int
    generation: int
    attempts: int
    job: FreshnessJob


@dataclasses.dataclass(frozen=True, slots=True)
class CheckResult:
    """Outcome of processing one claimed job."""

    uri: str
    outcome: CheckOutcome
    previous_cid: str | None = None
    current_cid: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the check reached a verdict about the record."""
        return self.outcome in {
            CheckOutcome.UNCHANGED,
            CheckOutcome.CHANGED,
            CheckOutcome.DELETED,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class QueueCounts:
    """Jobs by queue state."""

    waiting: int = 0
    delayed: int = 0
    active: int = 0


@dataclasses.dataclass(frozen=True, slots=True)
class FreshnessMetrics:
    """Worker counters plus a snapshot of queue depth."""

    processed: int
    succeeded: int
    failed: int
    refreshed: int
    unchanged: int
    deleted: int
    rate_limited: int
    waiting: int
    delayed: int
    active: int


@dataclasses.dataclass(frozen=True, slots=True)
class StaleRecord:
    """A locally indexed record due for verification."""

    uri: str
    endpoint: str
    last_synced_at: dt.datetime


__all__ = [
    "DELETION_PROVENANCE",
    "CheckOutcome",
    "CheckResult",
    "CheckType",
    "ClaimedJob",
    "FreshnessJob",
    "FreshnessMetrics",
    "FreshnessPriority",
    "JobOrigin",
    "QueueCounts",
    "StaleRecord",
]
