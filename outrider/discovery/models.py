"""Value types produced by endpoint discovery."""

from __future__ import annotations

import dataclasses
import enum


class DiscoverySource(enum.StrEnum):
    """Strategy that revealed an endpoint."""

    DIRECTORY_WALK = "directory_walk"
    RELAY_LISTING = "relay_listing"
    IDENTITY_MENTION = "identity_mention"


@dataclasses.dataclass(frozen=True, slots=True)
class DiscoveredEndpoint:
    """Candidate endpoint awaiting registration.

    Attributes
    ----------
    url
        Endpoint base URL as reported by the source; the registry normalises
        it on registration.
    source
        Discovery strategy that produced the candidate.
    provenance
        Identity or commit that revealed the endpoint, when known.

    """

    url: str
    source: DiscoverySource
    provenance: str | None = None


@dataclasses.dataclass(slots=True)
class DirectoryWalkResult:
    """Summary of one directory walk run.

    ``cursor`` is the ``createdAt`` of the last consumed entry and should be
    passed as ``after`` when resuming.
    """

    cursor: str | None
    pages: int = 0
    discovered: int = 0
    registered: int = 0
    cancelled: bool = False
    completed: bool = False


@dataclasses.dataclass(slots=True)
class DiscoveryCycleResult:
    """Summary of one discovery cycle."""

    relay_endpoints: int = 0
    mention_endpoints: int = 0
    registered: int = 0

    @property
    def discovered(self) -> int:
        """Total candidates produced across strategies."""
        return self.relay_endpoints + self.mention_endpoints


__all__ = [
    "DirectoryWalkResult",
    "DiscoveredEndpoint",
    "DiscoveryCycleResult",
    "DiscoverySource",
]
