"""Commit parsing and ordered ingestion."""

from __future__ import annotations

from .errors import BlockSectionError, ContentTooLargeError, FormatError, ParseError
from .ingestion import (
    CommitIngestionConfig,
    CommitIngestionStats,
    CommitIngestor,
    OperationSink,
    RejectedCommitSink,
)
from .models import (
    CommitEvent,
    Operation,
    RecordPath,
    RepoOp,
    RepoOperation,
    decode_commit_event,
)
from .parser import parse_commit, parse_path, validate_operation

__all__ = [
    "BlockSectionError",
    "CommitEvent",
    "CommitIngestionConfig",
    "CommitIngestionStats",
    "CommitIngestor",
    "ContentTooLargeError",
    "FormatError",
    "Operation",
    "OperationSink",
    "ParseError",
    "RecordPath",
    "RejectedCommitSink",
    "RepoOp",
    "RepoOperation",
    "decode_commit_event",
    "parse_commit",
    "parse_path",
    "validate_operation",
]
