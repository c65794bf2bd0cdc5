"""Endpoint discovery: directory walk, relay listing and identity mentions."""

from __future__ import annotations

from .config import DiscoveryConfig
from .directory import CancellationToken, DirectoryClient, DirectoryEntry, DirectoryWalk
from .errors import DirectoryWalkError, IdentityResolutionError
from .mentions import IdentityMentionExtractor, IdentityResolver
from .models import (
    DirectoryWalkResult,
    DiscoveredEndpoint,
    DiscoveryCycleResult,
    DiscoverySource,
)
from .relay import RelayHostLister
from .service import DiscoveryService

__all__ = [
    "CancellationToken",
    "DirectoryClient",
    "DirectoryEntry",
    "DirectoryWalk",
    "DirectoryWalkError",
    "DirectoryWalkResult",
    "DiscoveredEndpoint",
    "DiscoveryConfig",
    "DiscoveryCycleResult",
    "DiscoveryService",
    "DiscoverySource",
    "IdentityMentionExtractor",
    "IdentityResolutionError",
    "IdentityResolver",
    "RelayHostLister",
]
