"""Freshness checking of indexed records against their source endpoints."""

from __future__ import annotations

from .config import FreshnessConfig
from .errors import FreshnessError, FreshnessQueueError, InvalidRecordUriError
from .models import (
    DELETION_PROVENANCE,
    CheckOutcome,
    CheckResult,
    CheckType,
    ClaimedJob,
    FreshnessJob,
    FreshnessMetrics,
    FreshnessPriority,
    JobOrigin,
    QueueCounts,
    StaleRecord,
)
from .observability import FreshnessEventLogger, FreshnessEventType
from .lease import SqlRunLease
from .protocols import FreshnessSignals, LocalRecordStore, RunGuard, StaleRecordSource
from .queue import FreshnessQueue
from .scan_job import FreshnessScanJob, FreshnessScanResult
from .storage import (
    FreshnessJobRecord,
    JobLeaseRecord,
    JobState,
    init_freshness_storage,
)
from .worker import FreshnessWorker, RecordUri, parse_record_uri

__all__ = [
    "DELETION_PROVENANCE",
    "CheckOutcome",
    "CheckResult",
    "CheckType",
    "ClaimedJob",
    "FreshnessConfig",
    "FreshnessError",
    "FreshnessEventLogger",
    "FreshnessEventType",
    "FreshnessJob",
    "FreshnessJobRecord",
    "FreshnessMetrics",
    "FreshnessPriority",
    "FreshnessQueue",
    "FreshnessQueueError",
    "FreshnessScanJob",
    "FreshnessScanResult",
    "FreshnessSignals",
    "FreshnessWorker",
    "InvalidRecordUriError",
    "JobLeaseRecord",
    "JobOrigin",
    "LocalRecordStore",
    "QueueCounts",
    "RecordUri",
    "RunGuard",
    "SqlRunLease",
    "StaleRecord",
    "StaleRecordSource",
    "init_freshness_storage",
    "parse_record_uri",
]
