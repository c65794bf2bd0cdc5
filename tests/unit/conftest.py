"""Unit-test fixtures for the endpoint registry and services built on it."""

from __future__ import annotations

import typing as typ

import pytest
from sqlalchemy import update

from outrider.discovery import DiscoveredEndpoint, DiscoverySource
from outrider.registry import EndpointRecord, EndpointRegistry
from tests.helpers.fakes import MutableClock

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@pytest.fixture
def clock() -> MutableClock:
    """Return a clock frozen at the shared test epoch."""
    return MutableClock()


@pytest.fixture
def registry(
    session_factory: async_sessionmaker[AsyncSession], clock: MutableClock
) -> EndpointRegistry:
    """Return a registry over the per-test database."""
    return EndpointRegistry(session_factory, clock=clock)


class AddEndpointFn(typ.Protocol):
    """Callable fixture registering an endpoint in a given state."""

    def __call__(
        self, url: str, *, active: bool = True, **columns: typ.Any
    ) -> cabc.Awaitable[str]:
        """Register *url*, optionally activate it and overwrite columns."""
        ...


@pytest.fixture
def add_endpoint(
    registry: EndpointRegistry,
    session_factory: async_sessionmaker[AsyncSession],
) -> AddEndpointFn:
    """Return a helper that seeds registry rows through the public API."""

    async def _add(url: str, *, active: bool = True, **columns: typ.Any) -> str:
        await registry.register(
            DiscoveredEndpoint(url=url, source=DiscoverySource.RELAY_LISTING)
        )
        if active:
            await registry.mark_probe_succeeded(url)
        if columns:
            async with session_factory() as session, session.begin():
                await session.execute(
                    update(EndpointRecord)
                    .where(EndpointRecord.endpoint == url)
                    .values(**columns)
                )
        return url

    return _add
