"""Incremental walk of the identity directory export.

The export is a newline-delimited JSON stream ordered by ``createdAt``. A walk
requests pages with ``after=<cursor>`` until an empty page arrives, yielding
each endpoint at most once. Pages are fetched by a producer task that feeds a
bounded queue, so a slow consumer applies backpressure and a consumer that
stops early cancels the producer instead of leaking it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import typing as typ

import msgspec

from outrider.common.endpoints import InvalidEndpointError, normalize_endpoint_url
from outrider.common.http import get_bytes

from .errors import DirectoryWalkError
from .models import DirectoryWalkResult, DiscoveredEndpoint, DiscoverySource

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    import httpx

    from outrider.ratelimit import EndpointRateLimiter

logger = logging.getLogger(__name__)

_PDS_SERVICE_KEY = "atproto_pds"


class _Service(msgspec.Struct):
    endpoint: str | None = None
    type: str | None = None


class _DirectoryOperation(msgspec.Struct):
    services: dict[str, _Service] | None = None
    # Legacy genesis operations carry a bare service URL.
    service: str | None = None


class DirectoryEntry(msgspec.Struct, rename="camel"):
    """One line of the directory export."""

    did: str
    created_at: str
    operation: _DirectoryOperation | None = None
    nullified: bool = False

    @property
    def endpoint(self) -> str | None:
        """Return the advertised endpoint URL, if any."""
        if self.operation is None or self.nullified:
            return None
        services = self.operation.services or {}
        pds = services.get(_PDS_SERVICE_KEY)
        if pds is not None and pds.endpoint:
            return pds.endpoint
        return self.operation.service


_entry_decoder = msgspec.json.Decoder(DirectoryEntry)


def parse_export_page(body: bytes) -> list[DirectoryEntry]:
    """Decode an export page, skipping lines that do not parse."""
    entries: list[DirectoryEntry] = []
    for line in body.splitlines():
        if not line.strip():
            continue
        try:
            entries.append(_entry_decoder.decode(line))
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            logger.debug("Skipping malformed directory export line: %s", exc)
    return entries


class DirectoryClient:
    """HTTP access to the identity directory."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str) -> None:
        """Bind the client to a directory base URL."""
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    @property
    def base_url(self) -> str:
        """Return the directory base URL."""
        return self._base_url

    async def export_page(self, *, after: str | None, count: int) -> list[DirectoryEntry]:
        """Fetch one export page starting strictly after *after*."""
        params: dict[str, str | int] = {"count": count}
        if after is not None:
            params["after"] = after
        body = await get_bytes(self._http, f"{self._base_url}/export", params=params)
        return parse_export_page(body)


class CancellationToken:
    """Cooperative stop signal checked by long-running loops."""

    def __init__(self) -> None:
        """Create an unset token."""
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request that the holder stop at its next checkpoint."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()


@dataclasses.dataclass(frozen=True, slots=True)
class _PageDone:
    cursor: str | None


@dataclasses.dataclass(frozen=True, slots=True)
class _Failed:
    error: BaseException


_END = object()


class DirectoryWalk:
    """One resumable pass over the directory export.

    Iterate with ``async for``. After iteration :attr:`result` describes how
    far the walk got; :attr:`cursor` always holds the ``createdAt`` of the
    last page the consumer fully drained.

    Parameters
    ----------
    client:
        Directory client used to fetch pages.
    after:
        Cursor to resume from; ``None`` starts at the beginning.
    page_size:
        Entries requested per page.
    page_delay_s:
        Fixed pause between pages.
    max_pages:
        Stop after this many pages; ``None`` walks to the end.
    queue_size:
        Capacity of the producer/consumer channel.
    token:
        Cancellation token checked before each page.
    limiter:
        Optional rate limiter consulted before each page request.
    sleep:
        Coroutine used for pacing; injectable for tests.

    """

    def __init__(  # noqa: PLR0913
        self,
        client: DirectoryClient,
        *,
        after: str | None = None,
        page_size: int = 1000,
        page_delay_s: float = 1.0,
        max_pages: int | None = None,
        queue_size: int = 1000,
        token: CancellationToken | None = None,
        limiter: EndpointRateLimiter | None = None,
        sleep: typ.Callable[[float], typ.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Configure the walk without starting it."""
        self._client = client
        self._page_size = page_size
        self._page_delay_s = page_delay_s
        self._max_pages = max_pages
        self._queue_size = queue_size
        self._limiter = limiter
        self._sleep = sleep
        self.token = token or CancellationToken()
        self.result = DirectoryWalkResult(cursor=after)
        self._seen: set[str] = set()

    @property
    def cursor(self) -> str | None:
        """Return the resume cursor."""
        return self.result.cursor

    def cancel(self) -> None:
        """Stop the walk before its next page."""
        self.token.cancel()

    async def __aiter__(self) -> cabc.AsyncIterator[DiscoveredEndpoint]:
        """Yield endpoints discovered by the walk, each once.

        Raises
        ------
        DirectoryWalkError
            If a page cannot be fetched or decoded; ``cursor`` on the error
            is the last fully consumed page.

        """
        queue: asyncio.Queue[object] = asyncio.Queue(maxsize=self._queue_size)
        producer = asyncio.create_task(self._produce(queue), name="directory-walk")
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                if isinstance(item, _PageDone):
                    self.result.pages += 1
                    if item.cursor is not None:
                        self.result.cursor = item.cursor
                    continue
                if isinstance(item, _Failed):
                    raise DirectoryWalkError.interrupted(
                        item.error, cursor=self.result.cursor, pages=self.result.pages
                    ) from item.error
                self.result.discovered += 1
                yield typ.cast("DiscoveredEndpoint", item)
        finally:
            producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    async def _produce(self, queue: asyncio.Queue[object]) -> None:
        after = self.result.cursor
        pages = 0
        try:
            while True:
                if self.token.cancelled:
                    self.result.cancelled = True
                    break
                if self._max_pages is not None and pages >= self._max_pages:
                    break
                if pages:
                    await self._sleep(self._page_delay_s)
                await self._pace()

                entries = await self._client.export_page(after=after, count=self._page_size)
                if not entries:
                    self.result.completed = True
                    break

                for endpoint in self._fresh_endpoints(entries):
                    await queue.put(endpoint)
                after = entries[-1].created_at
                pages += 1
                await queue.put(_PageDone(after))
        except Exception as exc:  # noqa: BLE001
            # The consumer waits on the queue; every failure must reach it.
            await queue.put(_Failed(exc))
            return
        await queue.put(_END)

    async def _pace(self) -> None:
        if self._limiter is None:
            return
        decision = await self._limiter.wait_for_limit(
            self._client.base_url, int(self._page_delay_s * 1000) or 1000
        )
        if not decision.allowed:
            await self._sleep(decision.wait_ms / 1000)

    def _fresh_endpoints(
        self, entries: cabc.Iterable[DirectoryEntry]
    ) -> cabc.Iterator[DiscoveredEndpoint]:
        for entry in entries:
            raw = entry.endpoint
            if not raw:
                continue
            try:
                url = normalize_endpoint_url(raw)
            except InvalidEndpointError:
                continue
            if url in self._seen:
                continue
            self._seen.add(url)
            yield DiscoveredEndpoint(
                url=url, source=DiscoverySource.DIRECTORY_WALK, provenance=entry.did
            )


__all__ = [
    "CancellationToken",
    "DirectoryClient",
    "DirectoryEntry",
    "DirectoryWalk",
    "parse_export_page",
]
