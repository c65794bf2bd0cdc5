"""Endpoint discovery from identities mentioned in ingested content.

Record authors seen on the commit feed or in scanned records reveal
endpoints through their identity documents. Identities are resolved in
fixed-size concurrent batches; an identity that fails to resolve is
skipped.
"""

from __future__ import annotations

import asyncio
import logging
import typing as typ
import urllib.parse

from outrider.common.endpoints import InvalidEndpointError, normalize_endpoint_url
from outrider.common.http import ResponseShapeError, TransportError, get_json

from .errors import IdentityResolutionError
from .models import DiscoveredEndpoint, DiscoverySource

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    import httpx

logger = logging.getLogger(__name__)

PDS_SERVICE_ID = "#atproto_pds"
PDS_SERVICE_TYPE = "AtprotoPersonalDataServer"


def endpoint_from_document(identity: str, document: typ.Any) -> str:
    """Return the endpoint advertised by an identity document.

    Raises
    ------
    IdentityResolutionError
        If the document lists no endpoint service.

    """
    services = document.get("service") if isinstance(document, dict) else None
    for service in services or []:
        if not isinstance(service, dict):
            continue
        service_id = str(service.get("id", ""))
        if not service_id.endswith(PDS_SERVICE_ID) and service.get("type") != PDS_SERVICE_TYPE:
            continue
        endpoint = service.get("serviceEndpoint")
        if isinstance(endpoint, str) and endpoint:
            return endpoint
    raise IdentityResolutionError.no_endpoint(identity)


class IdentityResolver:
    """Resolve ``did:plc`` and ``did:web`` identities to documents."""

    def __init__(self, http_client: httpx.AsyncClient, directory_url: str) -> None:
        """Bind the resolver to the directory used for ``did:plc``."""
        self._http = http_client
        self._directory_url = directory_url.rstrip("/")

    def document_url(self, identity: str) -> str:
        """Return the URL of *identity*'s document.

        Raises
        ------
        IdentityResolutionError
            For identity methods other than ``plc`` and ``web``.

        """
        if identity.startswith("did:plc:"):
            return f"{self._directory_url}/{identity}"
        if identity.startswith("did:web:"):
            # Path-based did:web identities (extra colons) are not supported.
            suffix = identity.removeprefix("did:web:")
            if suffix and ":" not in suffix and "/" not in suffix:
                return f"https://{urllib.parse.unquote(suffix)}/.well-known/did.json"
        raise IdentityResolutionError.unsupported_method(identity)

    async def resolve_endpoint(self, identity: str) -> str:
        """Return the endpoint advertised by *identity*."""
        document = await get_json(self._http, self.document_url(identity))
        return endpoint_from_document(identity, document)


class IdentityMentionExtractor:
    """Turn batches of identities into discovered endpoints."""

    def __init__(self, resolver: IdentityResolver, *, batch_size: int = 10) -> None:
        """Configure the extractor with a resolver and batch size."""
        if batch_size < 1:
            msg = "batch_size must be positive"
            raise ValueError(msg)
        self._resolver = resolver
        self._batch_size = batch_size

    async def extract(self, identities: cabc.Iterable[str]) -> list[DiscoveredEndpoint]:
        """Resolve *identities*, returning one candidate per distinct endpoint."""
        unique = list(dict.fromkeys(identity.strip() for identity in identities if identity))
        found: dict[str, DiscoveredEndpoint] = {}

        for start in range(0, len(unique), self._batch_size):
            batch = unique[start : start + self._batch_size]
            results = await asyncio.gather(
                *(self._resolver.resolve_endpoint(identity) for identity in batch),
                return_exceptions=True,
            )
            for identity, outcome in zip(batch, results, strict=True):
                if isinstance(outcome, BaseException):
                    self._log_failure(identity, outcome)
                    continue
                try:
                    url = normalize_endpoint_url(outcome)
                except InvalidEndpointError:
                    logger.debug("Identity %s advertises invalid endpoint %r", identity, outcome)
                    continue
                found.setdefault(
                    url,
                    DiscoveredEndpoint(
                        url=url, source=DiscoverySource.IDENTITY_MENTION, provenance=identity
                    ),
                )
        return list(found.values())

    @staticmethod
    def _log_failure(identity: str, error: BaseException) -> None:
        if isinstance(
            error, TransportError | ResponseShapeError | IdentityResolutionError
        ):
            logger.debug("Could not resolve identity %s: %s", identity, error)
            return
        if isinstance(error, Exception):
            logger.warning(
                "Unexpected error resolving identity %s", identity, exc_info=error
            )
            return
        raise error


__all__ = [
    "PDS_SERVICE_ID",
    "IdentityMentionExtractor",
    "IdentityResolver",
    "endpoint_from_document",
]
