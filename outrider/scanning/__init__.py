"""Endpoint scanning and scan scheduling."""

from __future__ import annotations

from .client import RecordPage, RemoteRecord, RepoPage, SyncClient
from .config import ScanConfig
from .models import ScannedRecord, ScannedRecordSink, ScanOutcome, ScanStatus, TickResult
from .scanner import EndpointScanner, ScanBudgetExhaustedError
from .scheduler import ScanScheduler

__all__ = [
    "EndpointScanner",
    "RecordPage",
    "RemoteRecord",
    "RepoPage",
    "ScanBudgetExhaustedError",
    "ScanConfig",
    "ScanOutcome",
    "ScanScheduler",
    "ScanStatus",
    "ScannedRecord",
    "ScannedRecordSink",
    "SyncClient",
    "TickResult",
]
