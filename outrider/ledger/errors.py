"""Errors raised by the sync ledger."""

from __future__ import annotations


class LedgerStorageError(Exception):
    """Raised when the ledger database rejects or fails an operation."""

    def __init__(self, operation: str, reason: str, *, uri: str | None = None) -> None:
        """Initialise with the ledger operation and failure reason."""
        target = f" for {uri}" if uri else ""
        super().__init__(f"Ledger {operation} failed{target}: {reason}")
        self.operation = operation
        self.reason = reason
        self.uri = uri

    @classmethod
    def for_operation(
        cls, operation: str, cause: BaseException, *, uri: str | None = None
    ) -> LedgerStorageError:
        """Wrap a database exception raised while running *operation*."""
        return cls(operation, type(cause).__name__, uri=uri)


__all__ = ["LedgerStorageError"]
