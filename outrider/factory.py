"""Assemble the engine's services from one session factory and HTTP client.

Each entry point (Dramatiq actors, the CLI, the HTTP runtime) builds the same
object graph; this module keeps that wiring in one place. Component settings
are read from the environment through each component's ``from_env``.

Usage
-----
Build services inside a running event loop::

    limiter = build_rate_limiter()
    async with build_http_client() as http_client:
        services = build_services(session_factory, http_client, limiter=limiter)
        await services.scheduler.tick()
    await limiter.aclose()

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

from outrider.discovery import (
    DirectoryClient,
    DiscoveryConfig,
    DiscoveryService,
    IdentityMentionExtractor,
    IdentityResolver,
    RelayHostLister,
)
from outrider.freshness import (
    FreshnessConfig,
    FreshnessQueue,
    FreshnessScanJob,
    FreshnessWorker,
    SqlRunLease,
)
from outrider.ledger import SyncLedger
from outrider.ratelimit import EndpointRateLimiter
from outrider.registry import EndpointRegistry, init_registry_storage
from outrider.scanning import EndpointScanner, ScanConfig, ScanScheduler, SyncClient

if typ.TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

__all__ = [
    "FRESHNESS_SCAN_LEASE",
    "OutriderServices",
    "build_services",
    "init_storage",
]

FRESHNESS_SCAN_LEASE = "freshness_scan"


@dc.dataclass(frozen=True, slots=True)
class OutriderServices:
    """The wired service graph for one process."""

    registry: EndpointRegistry
    ledger: SyncLedger
    limiter: EndpointRateLimiter
    discovery: DiscoveryService
    scanner: EndpointScanner
    scheduler: ScanScheduler
    freshness_queue: FreshnessQueue
    freshness_worker: FreshnessWorker
    freshness_scan: FreshnessScanJob


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
    *,
    limiter: EndpointRateLimiter,
) -> OutriderServices:
    """Build every service over *session_factory* and *http_client*.

    Parameters
    ----------
    session_factory
        Async session factory for the registry, queue and ledger tables.
    http_client
        Shared client for all outbound requests.
    limiter
        Rate limiter shared by discovery, scans and freshness checks. The
        caller owns it and closes it once the services are done.

    """
    discovery_config = DiscoveryConfig.from_env()
    scan_config = ScanConfig.from_env()
    freshness_config = FreshnessConfig.from_env()

    registry = EndpointRegistry(session_factory)
    ledger = SyncLedger(session_factory)
    sync_client = SyncClient(http_client)
    freshness_queue = FreshnessQueue(
        session_factory,
        max_retries=freshness_config.max_retries,
        retry_delay_s=freshness_config.retry_delay_s,
    )

    discovery = DiscoveryService(
        registry,
        RelayHostLister(
            http_client, discovery_config.relay_url, limit=discovery_config.relay_limit
        ),
        config=discovery_config,
        mention_extractor=IdentityMentionExtractor(
            IdentityResolver(http_client, discovery_config.directory_url),
            batch_size=discovery_config.mention_batch_size,
        ),
        directory_client=DirectoryClient(http_client, discovery_config.directory_url),
        limiter=limiter,
    )
    scanner = EndpointScanner(
        registry,
        sync_client,
        limiter,
        ledger,
        config=scan_config,
        freshness_queue=freshness_queue,
    )
    return OutriderServices(
        registry=registry,
        ledger=ledger,
        limiter=limiter,
        discovery=discovery,
        scanner=scanner,
        scheduler=ScanScheduler(
            registry, scanner, sync_client, limiter, config=scan_config
        ),
        freshness_queue=freshness_queue,
        freshness_worker=FreshnessWorker(
            freshness_queue,
            sync_client,
            limiter,
            ledger,
            ledger,
            config=freshness_config,
        ),
        freshness_scan=FreshnessScanJob(
            ledger,
            freshness_queue,
            config=freshness_config,
            guard=SqlRunLease(
                session_factory,
                FRESHNESS_SCAN_LEASE,
                ttl=dt.timedelta(seconds=freshness_config.scan_lease_s),
            ),
        ),
    )


async def init_storage(engine: AsyncEngine) -> None:
    """Create the registry, freshness queue, job lease and ledger tables if absent.

    They share one declarative base; importing this module registers
    all of their tables with it.
    """
    await init_registry_storage(engine)
