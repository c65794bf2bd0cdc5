"""Persistent endpoint registry and scan state machine."""

from __future__ import annotations

from .errors import (
    EndpointNotFoundError,
    RegistryConflictError,
    RegistryError,
    RegistryStorageError,
)
from .models import (
    MAX_CONSECUTIVE_FAILURES,
    EndpointRegistryEntry,
    EndpointStatus,
    RegistryStats,
    backoff_hours,
)
from .service import EndpointRegistry
from .storage import EndpointRecord, init_registry_storage

__all__ = [
    "MAX_CONSECUTIVE_FAILURES",
    "EndpointNotFoundError",
    "EndpointRecord",
    "EndpointRegistry",
    "EndpointRegistryEntry",
    "EndpointStatus",
    "RegistryConflictError",
    "RegistryError",
    "RegistryStats",
    "RegistryStorageError",
    "backoff_hours",
    "init_registry_storage",
]
