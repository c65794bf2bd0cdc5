"""Structured log events for endpoint scans and scheduler ticks."""

from __future__ import annotations

import enum
import logging
import typing as typ

from outrider.observability import categorize_error

if typ.TYPE_CHECKING:
    import datetime as dt

    from .models import ScanOutcome, TickResult

logger = logging.getLogger(__name__)


class ScanEventType(enum.StrEnum):
    """Structured log event types for scan observability."""

    SCAN_STARTED = "scan.started"
    SCAN_COMPLETED = "scan.completed"
    SCAN_FAILED = "scan.failed"
    SCAN_DEFERRED = "scan.deferred"
    PROBE_SUCCEEDED = "scan.probe.succeeded"
    PROBE_FAILED = "scan.probe.failed"
    TICK_COMPLETED = "scan.tick.completed"


class ScanEventLogger:
    """Emit structured scan events via Python logging.

    Success is logged at INFO, deferrals and probe failures at WARNING and
    scan failures at ERROR with a categorised error.
    """

    def log_scan_started(self, endpoint: str) -> None:
        """Log that a scan acquired its endpoint."""
        logger.info("[%s] endpoint=%s", ScanEventType.SCAN_STARTED, endpoint)

    def log_scan_completed(self, outcome: ScanOutcome, duration: dt.timedelta) -> None:
        """Log a completed scan with its counts."""
        logger.info(
            "[%s] endpoint=%s duration_seconds=%.3f repos_scanned=%d "
            "records_found=%d has_content=%s",
            ScanEventType.SCAN_COMPLETED,
            outcome.endpoint,
            duration.total_seconds(),
            outcome.repos_scanned,
            outcome.records_found,
            outcome.has_content,
        )

    def log_scan_failed(
        self, endpoint: str, error: BaseException, duration: dt.timedelta
    ) -> None:
        """Log a scan failure charged to the endpoint."""
        logger.error(
            "[%s] endpoint=%s duration_seconds=%.3f error_type=%s "
            "error_category=%s error_message=%s",
            ScanEventType.SCAN_FAILED,
            endpoint,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_scan_deferred(self, endpoint: str, reason: str) -> None:
        """Log a scan released without penalty."""
        logger.warning(
            "[%s] endpoint=%s reason=%s", ScanEventType.SCAN_DEFERRED, endpoint, reason
        )

    def log_probe(self, endpoint: str, error: BaseException | None) -> None:
        """Log the result of a reachability probe."""
        if error is None:
            logger.info("[%s] endpoint=%s", ScanEventType.PROBE_SUCCEEDED, endpoint)
            return
        logger.warning(
            "[%s] endpoint=%s error_type=%s error_category=%s error_message=%s",
            ScanEventType.PROBE_FAILED,
            endpoint,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_tick_completed(self, result: TickResult, duration: dt.timedelta) -> None:
        """Log a scheduler tick summary."""
        logger.info(
            "[%s] duration_seconds=%.3f released=%d probed=%d probes_succeeded=%d "
            "selected=%d completed=%d failed=%d deferred=%d skipped=%d",
            ScanEventType.TICK_COMPLETED,
            duration.total_seconds(),
            result.released,
            result.probed,
            result.probes_succeeded,
            result.selected,
            result.completed,
            result.failed,
            result.deferred,
            result.skipped,
        )


__all__ = ["ScanEventLogger", "ScanEventType"]
