"""Application factory for the Outrider Falcon ASGI application.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create an app with registry administration::

    deps = AppDependencies(registry=EndpointRegistry(session_factory))
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from outrider.api.errors import (
    InvalidInputError,
    handle_endpoint_not_found,
    handle_invalid_input,
    handle_registry_conflict,
    handle_registry_storage_error,
)
from outrider.api.health.resources import HealthResource, ReadyResource
from outrider.registry import (
    EndpointNotFoundError,
    RegistryConflictError,
    RegistryStorageError,
)

if typ.TYPE_CHECKING:
    from outrider.registry import EndpointRegistry

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    Attributes
    ----------
    registry
        Endpoint registry; when ``None`` only health endpoints are served.

    """

    registry: EndpointRegistry | None = None


def create_app(dependencies: AppDependencies | None = None) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    ``/health`` and ``/ready`` are always registered. With a registry the
    app also serves ``GET /registry/stats``, ``GET /registry/endpoints`` and
    ``POST /registry/endpoints/reset``, and readiness checks the database.
    """
    registry = dependencies.registry if dependencies is not None else None
    app = falcon.asgi.App()

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(registry))

    if registry is not None:
        from outrider.api.registry.resources import (
            EndpointResetResource,
            EndpointResource,
            RegistryStatsResource,
        )

        app.add_route("/registry/stats", RegistryStatsResource(registry))
        app.add_route("/registry/endpoints", EndpointResource(registry))
        app.add_route("/registry/endpoints/reset", EndpointResetResource(registry))

    app.add_error_handler(EndpointNotFoundError, handle_endpoint_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(RegistryConflictError, handle_registry_conflict)
    app.add_error_handler(RegistryStorageError, handle_registry_storage_error)

    return app
