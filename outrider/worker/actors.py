"""Dramatiq actors for the periodic discovery, scan and freshness tasks.

Each actor opens one event loop, builds the service graph over a cached
engine for its database URL, runs a single unit of work and returns a small
JSON-friendly summary. Scheduling (how often each actor is sent) is left to
the deployment.

Usage
-----
Queue one scheduler tick:

>>> run_scan_tick_job.send(database_url="postgresql+asyncpg://...")

Start a full directory walk that keeps re-enqueueing itself:

>>> walk_directory_job.send(database_url="postgresql+asyncpg://...")

"""

from __future__ import annotations

import asyncio
import logging
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from outrider.common.http import HttpConfig, build_http_client
from outrider.discovery import DirectoryWalkError
from outrider.factory import OutriderServices, build_services, init_storage
from outrider.ratelimit import InMemoryWindowStore, build_rate_limiter
from outrider.worker._broker import ensure_broker_configured

type SessionFactory = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)

# Actors bind to the broker that is current when they are declared.
ensure_broker_configured()

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_INITIALISED: set[str] = set()
_CACHE_LOCK = threading.Lock()
# Without Redis, every actor run in this process draws on one request budget.
_LOCAL_WINDOW_STORE = InMemoryWindowStore()

WALK_CONTINUE_DELAY_MS = 1_000
WALK_RETRY_DELAY_MS = 60_000


def _ensure_engine(database_url: str) -> AsyncEngine:
    """Return the cached engine for *database_url*, creating it if absent.

    Precondition: the caller **must** hold ``_CACHE_LOCK``.
    """
    if database_url not in _ENGINE_CACHE:
        _ENGINE_CACHE[database_url] = create_async_engine(database_url)
    return _ENGINE_CACHE[database_url]


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Get or create the session factory for *database_url*.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                _ensure_engine(database_url), expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


async def _ensure_storage(database_url: str) -> None:
    if database_url in _INITIALISED:
        return
    with _CACHE_LOCK:
        engine = _ensure_engine(database_url)
    await init_storage(engine)
    with _CACHE_LOCK:
        _INITIALISED.add(database_url)


def _run_actor_async[T](
    database_url: str,
    async_fn: typ.Callable[[OutriderServices], typ.Awaitable[T]],
) -> T:
    """Run *async_fn* against freshly wired services in a new event loop.

    The rate limiter is rebuilt per run because a Redis client is bound to
    the loop it was created on; without Redis it wraps the process-wide
    window store, so budgets carry over between runs and worker threads.
    """
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)

    async def run() -> T:
        await _ensure_storage(database_url)
        limiter = build_rate_limiter(local_store=_LOCAL_WINDOW_STORE)
        try:
            async with build_http_client(HttpConfig.from_env()) as http_client:
                services = build_services(session_factory, http_client, limiter=limiter)
                return await async_fn(services)
        finally:
            await limiter.aclose()

    return asyncio.run(run())


async def _scan_tick_async(services: OutriderServices) -> dict[str, int]:
    result = await services.scheduler.tick()
    return {
        "released": result.released,
        "probed": result.probed,
        "selected": result.selected,
        "completed": result.completed,
        "failed": result.failed,
        "deferred": result.deferred,
        "skipped": result.skipped,
    }


async def _discovery_cycle_async(
    services: OutriderServices, mentions: list[str] | None
) -> dict[str, int]:
    result = await services.discovery.run_cycle(mentions)
    return {
        "relay_endpoints": result.relay_endpoints,
        "mention_endpoints": result.mention_endpoints,
        "registered": result.registered,
    }


async def _walk_directory_async(
    services: OutriderServices, after: str | None, max_pages: int | None
) -> dict[str, typ.Any]:
    """Walk one bounded stretch of the directory.

    A failed page is reported rather than raised so the caller can resume
    from the returned cursor.
    """
    try:
        result = await services.discovery.walk_directory(after, max_pages=max_pages)
    except DirectoryWalkError as exc:
        return {"cursor": exc.cursor, "completed": False, "failed": True, "pages": exc.pages}
    return {
        "cursor": result.cursor,
        "completed": result.completed,
        "failed": False,
        "pages": result.pages,
    }


async def _process_freshness_async(
    services: OutriderServices, max_jobs: int | None
) -> int:
    return await services.freshness_worker.run_once(max_jobs)


async def _freshness_scan_async(services: OutriderServices) -> dict[str, int]:
    result = await services.freshness_scan.run()
    return {
        "recent": result.recent,
        "normal": result.normal,
        "background": result.background,
        "enqueued": result.enqueued,
    }


@dramatiq.actor
def run_scan_tick_job(database_url: str) -> dict[str, int]:
    """Run one scan scheduler tick: release, probe, then scan due endpoints."""
    return _run_actor_async(database_url, _scan_tick_async)


@dramatiq.actor
def run_discovery_cycle_job(
    database_url: str, *, mentions: list[str] | None = None
) -> dict[str, int]:
    """Register endpoints from the relay listing and identity mentions.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.
    mentions
        Identities seen in recently ingested content to resolve.

    """

    async def execute(services: OutriderServices) -> dict[str, int]:
        return await _discovery_cycle_async(services, mentions)

    return _run_actor_async(database_url, execute)


@dramatiq.actor(max_retries=0)
def walk_directory_job(
    database_url: str,
    *,
    after: str | None = None,
    max_pages: int | None = 100,
    continue_walk: bool = True,
) -> dict[str, typ.Any]:
    """Walk up to *max_pages* of the directory, then continue in a new message.

    The walk resumes from the last fully processed page. A failed page
    re-enqueues the walk from that cursor after a delay; reaching the end of
    the directory stops the chain.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.
    after
        Cursor to resume from; ``None`` starts at the beginning.
    max_pages
        Pages processed per message.
    continue_walk
        Whether to enqueue the next stretch when this one ends early.

    """

    async def execute(services: OutriderServices) -> dict[str, typ.Any]:
        return await _walk_directory_async(services, after, max_pages)

    summary = _run_actor_async(database_url, execute)
    if continue_walk and not summary["completed"]:
        delay = WALK_RETRY_DELAY_MS if summary["failed"] else WALK_CONTINUE_DELAY_MS
        walk_directory_job.send_with_options(
            args=(database_url,),
            kwargs={"after": summary["cursor"], "max_pages": max_pages},
            delay=delay,
        )
        logger.info(
            "Directory walk continues from cursor=%s in %dms", summary["cursor"], delay
        )
    return summary


@dramatiq.actor
def process_freshness_jobs_job(
    database_url: str, *, max_jobs: int | None = None
) -> int:
    """Drain available freshness jobs; returns the number claimed."""

    async def execute(services: OutriderServices) -> int:
        return await _process_freshness_async(services, max_jobs)

    return _run_actor_async(database_url, execute)


@dramatiq.actor
def run_freshness_scan_job(database_url: str) -> dict[str, int]:
    """Enqueue freshness checks for records whose last sync is stale."""
    return _run_actor_async(database_url, _freshness_scan_async)


__all__ = [
    "process_freshness_jobs_job",
    "run_discovery_cycle_job",
    "run_freshness_scan_job",
    "run_scan_tick_job",
    "walk_directory_job",
]
