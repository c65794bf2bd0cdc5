"""Data transfer objects and state rules for the endpoint registry."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt

MAX_CONSECUTIVE_FAILURES = 5
MAX_BACKOFF_EXPONENT = 4
DEFAULT_NEXT_SCAN_HOURS = 168


class EndpointStatus(enum.StrEnum):
    """Scan lifecycle of an endpoint.

    ``pending -> active <-> scanning -> {active | unreachable | no_content}``
    """

    PENDING = "pending"
    ACTIVE = "active"
    SCANNING = "scanning"
    UNREACHABLE = "unreachable"
    NO_CONTENT = "no_content"


def backoff_hours(failures: int) -> int:
    """Return the retry delay after *failures* consecutive failures.

    >>> [backoff_hours(n) for n in range(1, 7)]
    [2, 4, 8, 16, 16, 16]

    """
    return 2 ** min(failures, MAX_BACKOFF_EXPONENT)


def status_after_failure(current: EndpointStatus, failures: int) -> EndpointStatus:
    """Return the status an endpoint takes after its *failures*-th failure."""
    if failures >= MAX_CONSECUTIVE_FAILURES:
        return EndpointStatus.UNREACHABLE
    if current in {EndpointStatus.PENDING, EndpointStatus.UNREACHABLE}:
        return current
    return EndpointStatus.ACTIVE


@dataclasses.dataclass(slots=True, frozen=True)
class EndpointRegistryEntry:
    """Snapshot of one registry row."""

    endpoint: str
    discovered_at: dt.datetime
    discovery_source: str
    provenance: str | None
    status: EndpointStatus
    relay_connected: bool
    last_scan_at: dt.datetime | None
    next_scan_at: dt.datetime | None
    has_content: bool
    content_count: int
    consecutive_failures: int
    scan_priority: int
    last_error: str | None
    updated_at: dt.datetime

    def to_dict(self) -> dict[str, typ.Any]:
        """Return a JSON-friendly mapping of the entry."""

        def _iso(value: dt.datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        return {
            "endpoint": self.endpoint,
            "discovered_at": _iso(self.discovered_at),
            "discovery_source": self.discovery_source,
            "provenance": self.provenance,
            "status": self.status.value,
            "relay_connected": self.relay_connected,
            "last_scan_at": _iso(self.last_scan_at),
            "next_scan_at": _iso(self.next_scan_at),
            "has_content": self.has_content,
            "content_count": self.content_count,
            "consecutive_failures": self.consecutive_failures,
            "scan_priority": self.scan_priority,
            "last_error": self.last_error,
            "updated_at": _iso(self.updated_at),
        }


@dataclasses.dataclass(slots=True, frozen=True)
class RegistryStats:
    """Row counts by status."""

    total: int = 0
    pending: int = 0
    active: int = 0
    scanning: int = 0
    with_content: int = 0
    unreachable: int = 0
    no_content: int = 0

    def to_dict(self) -> dict[str, int]:
        """Return the counts as a plain mapping."""
        return dataclasses.asdict(self)


__all__ = [
    "DEFAULT_NEXT_SCAN_HOURS",
    "MAX_BACKOFF_EXPONENT",
    "MAX_CONSECUTIVE_FAILURES",
    "EndpointRegistryEntry",
    "EndpointStatus",
    "RegistryStats",
    "backoff_hours",
    "status_after_failure",
]
