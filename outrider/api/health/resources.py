"""Health probe resources for liveness and readiness checks.

Liveness never touches the database. Readiness asks the registry for its
counts when a registry is configured, so a pod whose database is unreachable
stops receiving traffic.
"""

from __future__ import annotations

import logging
import typing as typ
from http import HTTPStatus

from outrider.registry import RegistryStorageError

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from outrider.registry import EndpointRegistry

__all__ = ["HealthResource", "ReadyResource"]

logger = logging.getLogger(__name__)


class HealthResource:
    """Liveness probe resource returning ``{"status": "ok"}``."""

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /health requests."""
        resp.media = {"status": "ok"}
        resp.status = HTTPStatus.OK


class ReadyResource:
    """Readiness probe resource.

    Responds ``{"status": "ready"}`` with HTTP 200, or
    ``{"status": "unavailable"}`` with HTTP 503 when the configured registry
    cannot be queried.

    Parameters
    ----------
    registry
        Optional registry whose database must answer for readiness.

    """

    def __init__(self, registry: EndpointRegistry | None = None) -> None:
        """Configure the probe with an optional registry to check."""
        self._registry = registry

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /ready requests."""
        if self._registry is not None:
            try:
                await self._registry.get_stats()
            except RegistryStorageError as exc:
                logger.warning("Readiness check failed: %s", exc)
                resp.media = {"status": "unavailable"}
                resp.status = HTTPStatus.SERVICE_UNAVAILABLE
                return
        resp.media = {"status": "ready"}
        resp.status = HTTPStatus.OK
