"""Structured log events for freshness checks."""

from __future__ import annotations

import enum
import logging
import typing as typ

from outrider.observability import categorize_error

if typ.TYPE_CHECKING:
    import datetime as dt

    from .models import CheckResult, FreshnessMetrics
    from .scan_job import FreshnessScanResult

logger = logging.getLogger(__name__)


class FreshnessEventType(enum.StrEnum):
    """Structured log event types for freshness observability."""

    RECORD_CHANGED = "freshness.record.changed"
    RECORD_DELETED = "freshness.record.deleted"
    CHECK_FAILED = "freshness.check.failed"
    RUN_COMPLETED = "freshness.run.completed"
    SCAN_COMPLETED = "freshness.scan.completed"
    SCAN_SKIPPED = "freshness.scan.skipped"


class FreshnessEventLogger:
    """Emit structured freshness events via Python logging."""

    def log_check(self, result: CheckResult) -> None:
        """Log checks that changed something; unchanged records log at DEBUG."""
        match result.outcome:
            case "changed":
                logger.info(
                    "[%s] uri=%s previous_cid=%s current_cid=%s",
                    FreshnessEventType.RECORD_CHANGED,
                    result.uri,
                    result.previous_cid,
                    result.current_cid,
                )
            case "deleted":
                logger.info(
                    "[%s] uri=%s previous_cid=%s",
                    FreshnessEventType.RECORD_DELETED,
                    result.uri,
                    result.previous_cid,
                )
            case _:
                logger.debug("Freshness check uri=%s outcome=%s", result.uri, result.outcome)

    def log_check_failed(self, uri: str, error: BaseException, *, retried: bool) -> None:
        """Log a failed check and whether it will be retried."""
        logger.warning(
            "[%s] uri=%s retried=%s error_type=%s error_category=%s error_message=%s",
            FreshnessEventType.CHECK_FAILED,
            uri,
            retried,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_run_completed(
        self, processed: int, metrics: FreshnessMetrics, duration: dt.timedelta
    ) -> None:
        """Log a worker run with the cumulative counters."""
        logger.info(
            "[%s] duration_seconds=%.3f processed=%d refreshed=%d unchanged=%d "
            "deleted=%d failed=%d rate_limited=%d waiting=%d delayed=%d active=%d",
            FreshnessEventType.RUN_COMPLETED,
            duration.total_seconds(),
            processed,
            metrics.refreshed,
            metrics.unchanged,
            metrics.deleted,
            metrics.failed,
            metrics.rate_limited,
            metrics.waiting,
            metrics.delayed,
            metrics.active,
        )

    def log_scan_completed(self, result: FreshnessScanResult, duration: dt.timedelta) -> None:
        """Log a staleness scan with per-tier counts."""
        logger.info(
            "[%s] duration_seconds=%.3f recent=%d normal=%d background=%d enqueued=%d",
            FreshnessEventType.SCAN_COMPLETED,
            duration.total_seconds(),
            result.recent,
            result.normal,
            result.background,
            result.enqueued,
        )

    def log_scan_skipped(self) -> None:
        """Log a staleness scan skipped because another is running."""
        logger.info("[%s] reason=already_running", FreshnessEventType.SCAN_SKIPPED)


__all__ = ["FreshnessEventLogger", "FreshnessEventType"]
