"""Errors specific to the endpoint registry."""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for registry errors."""

    def __init__(self, message: str, *, endpoint: str | None = None) -> None:
        """Attach the endpoint the failing operation targeted."""
        super().__init__(message)
        self.endpoint = endpoint


class EndpointNotFoundError(RegistryError):
    """Raised when an endpoint is not present in the registry."""

    def __init__(self, endpoint: str) -> None:
        """Initialise with the missing endpoint URL."""
        super().__init__(f"Endpoint not registered: {endpoint}", endpoint=endpoint)


class RegistryStorageError(RegistryError):
    """Raised when the registry database rejects or fails an operation."""

    def __init__(self, operation: str, endpoint: str | None, reason: str) -> None:
        """Initialise with the operation name and failure reason."""
        target = f" for {endpoint}" if endpoint else ""
        super().__init__(f"Registry {operation} failed{target}: {reason}", endpoint=endpoint)
        self.operation = operation
        self.reason = reason

    @classmethod
    def for_operation(
        cls, operation: str, endpoint: str | None, cause: BaseException
    ) -> RegistryStorageError:
        """Wrap a database exception raised while running *operation*."""
        return cls(operation, endpoint, type(cause).__name__)


class RegistryConflictError(RegistryError):
    """Raised when a state change conflicts with concurrent work on an endpoint."""

    @classmethod
    def for_failure_update(cls, endpoint: str, attempts: int) -> RegistryConflictError:
        """Build the error for a failure count that could not be updated."""
        return cls(
            f"Failure count for {endpoint} changed concurrently {attempts} times",
            endpoint=endpoint,
        )

    @classmethod
    def scan_in_progress(cls, endpoint: str) -> RegistryConflictError:
        """Build the error for a change refused while a scan holds the endpoint."""
        return cls(f"Endpoint {endpoint} is being scanned", endpoint=endpoint)


class TimezoneAwareRequiredError(ValueError):
    """Raised when a naive datetime is bound to a registry column."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")


__all__ = [
    "EndpointNotFoundError",
    "RegistryConflictError",
    "RegistryError",
    "RegistryStorageError",
    "TimezoneAwareRequiredError",
]
