"""Error categorisation shared by the component event loggers.

Component loggers (scanning, discovery, freshness) emit structured
``[event.type] key=value`` records; this module maps exceptions to the
coarse categories used to route alerts.
"""

from __future__ import annotations

import enum

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from outrider.common.http import ResponseShapeError, TransportError
from outrider.ratelimit.errors import RateLimitStoreError
from outrider.registry.errors import (
    EndpointNotFoundError,
    RegistryConflictError,
    RegistryStorageError,
)


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    CONFIGURATION = "configuration"
    RATE_LIMIT_STORE = "rate_limit_store"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (ResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (RateLimitStoreError, ErrorCategory.RATE_LIMIT_STORE),
    (EndpointNotFoundError, ErrorCategory.CONFIGURATION),
    (RegistryConflictError, ErrorCategory.DATA_INTEGRITY),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
    (TimeoutError, ErrorCategory.TRANSIENT),
    (ConnectionError, ErrorCategory.TRANSIENT),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes.

    Storage errors raised from a database exception (registry and
    freshness queue failures) are categorised by that exception.
    """
    if isinstance(exc, TransportError):
        return ErrorCategory.TRANSIENT if exc.is_retryable else ErrorCategory.CLIENT_ERROR

    if isinstance(exc.__cause__, SQLAlchemyError):
        return categorize_error(exc.__cause__)
    if isinstance(exc, RegistryStorageError):
        return ErrorCategory.DATABASE_ERROR

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


__all__ = ["ErrorCategory", "categorize_error"]
