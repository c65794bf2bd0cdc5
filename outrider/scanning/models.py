"""Value types for endpoint scans."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ


class ScanStatus(enum.StrEnum):
    """How one scan attempt ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    DEFERRED = "deferred"
    SKIPPED = "skipped"


@dataclasses.dataclass(frozen=True, slots=True)
class ScannedRecord:
    """A record collected by a scan, handed to the record sink."""

    endpoint: str
    repo: str
    collection: str
    rkey: str
    uri: str
    cid: str | None
    value: typ.Any


class ScannedRecordSink(typ.Protocol):
    """Downstream consumer of records collected by scans."""

    async def accept(self, record: ScannedRecord) -> None:
        """Store or index *record*."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class ScanOutcome:
    """Result of scanning one endpoint."""

    endpoint: str
    status: ScanStatus
    repos_scanned: int = 0
    records_found: int = 0
    error: str | None = None

    @property
    def has_content(self) -> bool:
        """Whether the scan found anything worth rescanning soon."""
        return self.records_found > 0


@dataclasses.dataclass(slots=True)
class TickResult:
    """Summary of one scheduler tick."""

    released: int = 0
    probed: int = 0
    probes_succeeded: int = 0
    selected: int = 0
    completed: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: int = 0
    outcomes: list[ScanOutcome] = dataclasses.field(default_factory=list)

    def record(self, outcome: ScanOutcome) -> None:
        """Count *outcome* under its status."""
        self.outcomes.append(outcome)
        match outcome.status:
            case ScanStatus.COMPLETED:
                self.completed += 1
            case ScanStatus.FAILED:
                self.failed += 1
            case ScanStatus.DEFERRED:
                self.deferred += 1
            case ScanStatus.SKIPPED:
                self.skipped += 1


__all__ = [
    "ScanOutcome",
    "ScanStatus",
    "ScannedRecord",
    "ScannedRecordSink",
    "TickResult",
]
