"""Sync ledger: per-record sync state behind the job collaborators."""

from __future__ import annotations

from .errors import LedgerStorageError
from .service import COMMIT_DELETION_PROVENANCE, SyncLedger
from .storage import SyncedRecord, init_ledger_storage

__all__ = [
    "COMMIT_DELETION_PROVENANCE",
    "LedgerStorageError",
    "SyncLedger",
    "SyncedRecord",
    "init_ledger_storage",
]
