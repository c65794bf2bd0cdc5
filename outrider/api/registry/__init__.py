"""Registry administration resources."""

from __future__ import annotations

from outrider.api.registry.resources import (
    EndpointResetResource,
    EndpointResource,
    RegistryStatsResource,
)

__all__ = ["EndpointResetResource", "EndpointResource", "RegistryStatsResource"]
