"""Registry inspection and reset endpoints.

``GET /registry/stats`` returns counts by status, ``GET /registry/endpoints``
returns one endpoint's row (``?url=``) and ``POST /registry/endpoints/reset``
returns an endpoint to ``pending`` so the next tick probes it again.
"""

from __future__ import annotations

import typing as typ

import falcon

from outrider.api.errors import InvalidInputError
from outrider.common.endpoints import InvalidEndpointError, normalize_endpoint_url
from outrider.registry import EndpointNotFoundError

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from outrider.registry import EndpointRegistry

__all__ = ["EndpointResetResource", "EndpointResource", "RegistryStatsResource"]


def _validated_url(raw: object) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidInputError.missing("url")
    try:
        return normalize_endpoint_url(raw)
    except InvalidEndpointError as exc:
        raise InvalidInputError(exc.reason, field="url") from exc


class RegistryStatsResource:
    """``GET /registry/stats``."""

    def __init__(self, registry: EndpointRegistry) -> None:
        """Bind the resource to *registry*."""
        self._registry = registry

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Return counts by status."""
        stats = await self._registry.get_stats()
        resp.media = stats.to_dict()
        resp.status = falcon.HTTP_200


class EndpointResource:
    """``GET /registry/endpoints?url=<endpoint>``."""

    def __init__(self, registry: EndpointRegistry) -> None:
        """Bind the resource to *registry*."""
        self._registry = registry

    async def on_get(self, req: Request, resp: Response) -> None:
        """Return the registry row for the endpoint named by ``url``."""
        url = _validated_url(req.get_param("url"))
        entry = await self._registry.get_endpoint(url)
        if entry is None:
            raise EndpointNotFoundError(url)
        resp.media = entry.to_dict()
        resp.status = falcon.HTTP_200


class EndpointResetResource:
    """``POST /registry/endpoints/reset`` with body ``{"url": ...}``."""

    def __init__(self, registry: EndpointRegistry) -> None:
        """Bind the resource to *registry*."""
        self._registry = registry

    async def on_post(self, req: Request, resp: Response) -> None:
        """Reset the endpoint and return its updated row."""
        body = await req.get_media(default_when_empty=None)
        if not isinstance(body, dict):
            raise InvalidInputError("expected a JSON object body")
        url = _validated_url(body.get("url"))
        await self._registry.reset_endpoint(url)
        entry = await self._registry.get_endpoint(url)
        resp.media = entry.to_dict() if entry is not None else {"endpoint": url}
        resp.status = falcon.HTTP_200
