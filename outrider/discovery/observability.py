"""Structured log events for endpoint discovery."""

from __future__ import annotations

import enum
import logging
import typing as typ

from outrider.observability import categorize_error

if typ.TYPE_CHECKING:
    import datetime as dt

    from .models import DirectoryWalkResult, DiscoveryCycleResult

logger = logging.getLogger(__name__)


class DiscoveryEventType(enum.StrEnum):
    """Structured log event types for discovery observability."""

    CYCLE_COMPLETED = "discovery.cycle.completed"
    WALK_STARTED = "discovery.walk.started"
    WALK_COMPLETED = "discovery.walk.completed"
    WALK_CANCELLED = "discovery.walk.cancelled"
    WALK_FAILED = "discovery.walk.failed"


class DiscoveryEventLogger:
    """Emit structured discovery events via Python logging."""

    def log_cycle_completed(
        self, result: DiscoveryCycleResult, duration: dt.timedelta
    ) -> None:
        """Log a finished discovery cycle with per-source counts."""
        logger.info(
            "[%s] duration_seconds=%.3f relay_endpoints=%d mention_endpoints=%d "
            "registered=%d",
            DiscoveryEventType.CYCLE_COMPLETED,
            duration.total_seconds(),
            result.relay_endpoints,
            result.mention_endpoints,
            result.registered,
        )

    def log_walk_started(self, after: str | None) -> None:
        """Log the start of a directory walk."""
        logger.info("[%s] after=%s", DiscoveryEventType.WALK_STARTED, after)

    def log_walk_finished(
        self, result: DirectoryWalkResult, duration: dt.timedelta
    ) -> None:
        """Log a walk that ran out of pages, hit its page bound or was cancelled."""
        event = (
            DiscoveryEventType.WALK_CANCELLED
            if result.cancelled
            else DiscoveryEventType.WALK_COMPLETED
        )
        logger.info(
            "[%s] duration_seconds=%.3f pages=%d discovered=%d registered=%d "
            "cursor=%s reached_end=%s",
            event,
            duration.total_seconds(),
            result.pages,
            result.discovered,
            result.registered,
            result.cursor,
            result.completed,
        )

    def log_walk_failed(
        self, error: BaseException, cursor: str | None, duration: dt.timedelta
    ) -> None:
        """Log a walk interrupted by a failure, with its resume cursor."""
        logger.error(
            "[%s] duration_seconds=%.3f cursor=%s error_type=%s error_category=%s "
            "error_message=%s",
            DiscoveryEventType.WALK_FAILED,
            duration.total_seconds(),
            cursor,
            type(error).__name__,
            categorize_error(error.__cause__ or error),
            str(error),
        )


__all__ = ["DiscoveryEventLogger", "DiscoveryEventType"]
