"""Discovery cycle orchestration.

A cycle combines the relay listing (fast, always run) with identity
mentions gathered since the previous cycle. The directory walk is slow and
incremental, so it runs separately through :meth:`walk_directory` and
reports a cursor for the next run.
"""

from __future__ import annotations

import typing as typ

from outrider.common.time import utcnow

from .directory import CancellationToken, DirectoryClient, DirectoryWalk
from .errors import DirectoryWalkError
from .models import DirectoryWalkResult, DiscoveryCycleResult
from .observability import DiscoveryEventLogger

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from outrider.ratelimit import EndpointRateLimiter
    from outrider.registry.service import EndpointRegistry

    from .config import DiscoveryConfig
    from .mentions import IdentityMentionExtractor
    from .relay import RelayHostLister


class DiscoveryService:
    """Run discovery strategies and register their results.

    Parameters
    ----------
    registry:
        Registry receiving every discovered endpoint.
    relay_lister:
        Relay host listing strategy.
    config:
        Directory pacing and paging options.
    mention_extractor:
        Optional identity-mention strategy.
    directory_client:
        Directory client; required for :meth:`walk_directory`.
    limiter:
        Optional rate limiter consulted by directory walks.

    """

    def __init__(  # noqa: PLR0913
        self,
        registry: EndpointRegistry,
        relay_lister: RelayHostLister,
        *,
        config: DiscoveryConfig,
        mention_extractor: IdentityMentionExtractor | None = None,
        directory_client: DirectoryClient | None = None,
        limiter: EndpointRateLimiter | None = None,
        event_logger: DiscoveryEventLogger | None = None,
    ) -> None:
        """Assemble the service from its collaborators."""
        self._registry = registry
        self._relay_lister = relay_lister
        self._config = config
        self._mention_extractor = mention_extractor
        self._directory_client = directory_client
        self._limiter = limiter
        self._events = event_logger or DiscoveryEventLogger()

    async def run_cycle(
        self, mentions: cabc.Iterable[str] | None = None
    ) -> DiscoveryCycleResult:
        """Run relay listing and identity mentions, registering the results.

        Relay-listed endpoints are registered as relay-connected and the
        connectivity flag of existing rows is refreshed from the same
        listing.
        """
        started = utcnow()
        result = DiscoveryCycleResult()

        relay_endpoints, relay_hosts = await self._relay_lister.discover()
        result.relay_endpoints = len(relay_endpoints)
        for candidate in relay_endpoints:
            if await self._registry.register(candidate, relay_connected=True):
                result.registered += 1
        if relay_hosts:
            await self._registry.refresh_relay_connectivity(relay_hosts)

        if mentions is not None and self._mention_extractor is not None:
            mentioned = await self._mention_extractor.extract(mentions)
            result.mention_endpoints = len(mentioned)
            result.registered += await self._registry.register_many(mentioned)

        self._events.log_cycle_completed(result, utcnow() - started)
        return result

    def new_walk(
        self,
        after: str | None = None,
        *,
        token: CancellationToken | None = None,
        max_pages: int | None = None,
    ) -> DirectoryWalk:
        """Build a directory walk configured from this service's settings."""
        if self._directory_client is None:
            msg = "directory walks require a directory client"
            raise RuntimeError(msg)
        return DirectoryWalk(
            self._directory_client,
            after=after,
            page_size=self._config.page_size,
            page_delay_s=self._config.page_delay_s,
            max_pages=max_pages if max_pages is not None else self._config.max_pages,
            queue_size=self._config.queue_size,
            token=token,
            limiter=self._limiter,
        )

    async def walk_directory(
        self,
        after: str | None = None,
        *,
        token: CancellationToken | None = None,
        max_pages: int | None = None,
    ) -> DirectoryWalkResult:
        """Walk the directory from *after*, registering every endpoint found.

        Raises
        ------
        DirectoryWalkError
            If a page fails; the error's ``cursor`` resumes the walk.

        """
        walk = self.new_walk(after, token=token, max_pages=max_pages)
        started = utcnow()
        self._events.log_walk_started(after)
        try:
            async for candidate in walk:
                if await self._registry.register(candidate):
                    walk.result.registered += 1
        except DirectoryWalkError as exc:
            self._events.log_walk_failed(exc, exc.cursor, utcnow() - started)
            raise
        self._events.log_walk_finished(walk.result, utcnow() - started)
        return walk.result


__all__ = ["DiscoveryService"]
