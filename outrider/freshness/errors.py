"""Errors raised by freshness checking."""

from __future__ import annotations


class FreshnessError(Exception):
    """Base class for freshness errors."""


class FreshnessQueueError(FreshnessError):
    """Raised when the job queue database rejects or fails an operation."""

    def __init__(self, operation: str, reason: str, *, uri: str | None = None) -> None:
        """Initialise with the queue operation and failure reason."""
        target = f" for {uri}" if uri else ""
        super().__init__(f"Freshness queue {operation} failed{target}: {reason}")
        self.operation = operation
        self.reason = reason
        self.uri = uri

    @classmethod
    def for_operation(
        cls, operation: str, cause: BaseException, *, uri: str | None = None
    ) -> FreshnessQueueError:
        """Wrap a database exception raised while running *operation*."""
        return cls(operation, type(cause).__name__, uri=uri)


class InvalidRecordUriError(FreshnessError, ValueError):
    """Raised when a job names something other than an ``at://`` record."""

    def __init__(self, uri: str, reason: str) -> None:
        """Initialise with the offending identifier."""
        super().__init__(f"Invalid record URI {uri!r}: {reason}")
        self.uri = uri
        self.reason = reason


__all__ = ["FreshnessError", "FreshnessQueueError", "InvalidRecordUriError"]
