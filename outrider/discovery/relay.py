"""Endpoint enumeration through a relay's host listing."""

from __future__ import annotations

import logging
import typing as typ

from outrider.common.endpoints import InvalidEndpointError, endpoint_from_hostname
from outrider.common.http import ResponseShapeError, TransportError, get_json

from .models import DiscoveredEndpoint, DiscoverySource

if typ.TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

LIST_HOSTS_PATH = "/xrpc/com.atproto.sync.listHosts"


def _hostnames(payload: typ.Any, url: str) -> list[str]:
    if not isinstance(payload, dict) or not isinstance(payload.get("hosts"), list):
        raise ResponseShapeError.missing(url, "hosts")
    names: list[str] = []
    for host in payload["hosts"]:
        name = host.get("hostname") if isinstance(host, dict) else host
        if isinstance(name, str) and name.strip():
            names.append(name.strip().lower())
    return names


class RelayHostLister:
    """Ask a relay which endpoints it currently tracks."""

    def __init__(
        self, http_client: httpx.AsyncClient, relay_url: str, *, limit: int = 1000
    ) -> None:
        """Bind the lister to a relay base URL."""
        self._http = http_client
        self._relay_url = relay_url.rstrip("/")
        self._limit = limit

    @property
    def relay_url(self) -> str:
        """Return the relay base URL."""
        return self._relay_url

    async def list_hosts(self) -> list[str]:
        """Return the lowercase hostnames the relay reports.

        Raises
        ------
        TransportError
            If the request fails.
        ResponseShapeError
            If the response lacks a ``hosts`` list.

        """
        url = f"{self._relay_url}{LIST_HOSTS_PATH}"
        payload = await get_json(self._http, url, params={"limit": self._limit})
        return _hostnames(payload, url)

    async def discover(self) -> tuple[list[DiscoveredEndpoint], list[str]]:
        """Return endpoints for every listed host together with the hostnames.

        Failures are logged and produce empty results so a relay outage never
        aborts a discovery cycle.
        """
        try:
            hosts = await self.list_hosts()
        except (TransportError, ResponseShapeError) as exc:
            logger.warning("Relay host listing from %s failed: %s", self._relay_url, exc)
            return [], []

        endpoints: list[DiscoveredEndpoint] = []
        for host in hosts:
            try:
                url = endpoint_from_hostname(host)
            except InvalidEndpointError:
                logger.debug("Skipping invalid relay host %r", host)
                continue
            endpoints.append(
                DiscoveredEndpoint(
                    url=url, source=DiscoverySource.RELAY_LISTING, provenance=self._relay_url
                )
            )
        return endpoints, hosts


__all__ = ["LIST_HOSTS_PATH", "RelayHostLister"]
