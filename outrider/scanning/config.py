"""Configuration for endpoint scanning and the scan scheduler."""

from __future__ import annotations

import dataclasses as dc

from outrider.common.env import parse_positive_float, parse_positive_int, read_str

HOURS_WITH_CONTENT = 24
HOURS_WITHOUT_CONTENT = 168


def _parse_collections(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_flag(raw: str | None) -> bool:
    return (raw or "").lower() in {"1", "true", "yes", "on"}


@dc.dataclass(frozen=True, slots=True)
class ScanConfig:
    """Bounds and pacing for scans and scheduler ticks.

    Attributes
    ----------
    collections
        Collections listed for every repository. When empty, scans only
        enumerate repositories and count them as content.
    max_repos
        Upper bound on repositories enumerated per endpoint.
    max_records
        Upper bound on records collected per endpoint scan.
    repo_page_size, record_page_size
        ``limit`` sent with ``listRepos`` and ``listRecords``.
    rate_limit_wait_ms
        How long a scan waits for request budget before deferring.
    scan_timeout_s
        Wall-clock bound on one endpoint scan.
    batch_size
        Endpoints selected per scheduler tick.
    concurrency
        Scans run concurrently within a tick.
    probe_batch_size
        Pending endpoints probed per tick.
    probe_unreachable
        Also probe unreachable endpoints whose backoff elapsed.
    stale_scan_after_s
        Age after which a ``scanning`` lease is considered abandoned.
    defer_hours
        Delay applied when a scan is deferred rather than failed.
    enqueue_freshness
        Schedule background freshness checks for scanned records.
    include_relay_connected
        Also scan endpoints the relay lists; their content normally arrives
        through the relay feed instead.

    """

    collections: tuple[str, ...] = ()
    max_repos: int = 1000
    max_records: int = 1000
    repo_page_size: int = 1000
    record_page_size: int = 100
    rate_limit_wait_ms: int = 30_000
    scan_timeout_s: float = 60.0
    batch_size: int = 10
    concurrency: int = 4
    probe_batch_size: int = 20
    probe_unreachable: bool = False
    stale_scan_after_s: int = 3600
    defer_hours: int = 1
    enqueue_freshness: bool = False
    include_relay_connected: bool = False

    @classmethod
    def from_env(cls) -> ScanConfig:
        """Create configuration from ``OUTRIDER_SCAN_*`` variables.

        Reads ``OUTRIDER_SCAN_COLLECTIONS`` (comma separated),
        ``OUTRIDER_SCAN_MAX_REPOS``, ``OUTRIDER_SCAN_MAX_RECORDS``,
        ``OUTRIDER_SCAN_TIMEOUT_S``, ``OUTRIDER_SCAN_BATCH_SIZE``,
        ``OUTRIDER_SCAN_CONCURRENCY``, ``OUTRIDER_PROBE_BATCH_SIZE``,
        ``OUTRIDER_PROBE_UNREACHABLE``, ``OUTRIDER_SCAN_ENQUEUE_FRESHNESS`` and
        ``OUTRIDER_SCAN_INCLUDE_RELAY_CONNECTED``.

        Raises
        ------
        ValueError
            If a numeric variable is not positive.

        """
        return cls(
            collections=_parse_collections(read_str("OUTRIDER_SCAN_COLLECTIONS")),
            max_repos=parse_positive_int("OUTRIDER_SCAN_MAX_REPOS", 1000),
            max_records=parse_positive_int("OUTRIDER_SCAN_MAX_RECORDS", 1000),
            scan_timeout_s=parse_positive_float("OUTRIDER_SCAN_TIMEOUT_S", 60.0),
            batch_size=parse_positive_int("OUTRIDER_SCAN_BATCH_SIZE", 10),
            concurrency=parse_positive_int("OUTRIDER_SCAN_CONCURRENCY", 4),
            probe_batch_size=parse_positive_int("OUTRIDER_PROBE_BATCH_SIZE", 20),
            probe_unreachable=_parse_flag(read_str("OUTRIDER_PROBE_UNREACHABLE")),
            enqueue_freshness=_parse_flag(read_str("OUTRIDER_SCAN_ENQUEUE_FRESHNESS")),
            include_relay_connected=_parse_flag(
                read_str("OUTRIDER_SCAN_INCLUDE_RELAY_CONNECTED")
            ),
        )


__all__ = ["HOURS_WITHOUT_CONTENT", "HOURS_WITH_CONTENT", "ScanConfig"]
