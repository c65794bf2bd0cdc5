"""Unit tests for EndpointRegistry."""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

import pytest

from outrider.discovery import DiscoveredEndpoint, DiscoverySource
from outrider.registry import (
    EndpointNotFoundError,
    EndpointRegistry,
    EndpointStatus,
    RegistryConflictError,
)
from tests.helpers.fakes import T0

if typ.TYPE_CHECKING:
    from tests.helpers.fakes import MutableClock
    from tests.unit.conftest import AddEndpointFn

A = "https://a.example.com"
B = "https://b.example.com"


async def _status(registry: EndpointRegistry, url: str) -> EndpointStatus:
    entry = await registry.get_endpoint(url)
    assert entry is not None
    return entry.status


class TestRegister:
    """Tests for registering discovered endpoints."""

    @pytest.mark.asyncio
    async def test_new_endpoint_is_pending(self, registry: EndpointRegistry) -> None:
        """A first registration creates a pending row with provenance."""
        created = await registry.register(
            DiscoveredEndpoint(
                url="HTTPS://A.Example.com/",
                source=DiscoverySource.IDENTITY_MENTION,
                provenance="did:plc:abc",
            )
        )

        entry = await registry.get_endpoint(A)
        assert created is True
        assert entry is not None
        assert entry.status is EndpointStatus.PENDING
        assert entry.discovered_at == T0
        assert entry.discovery_source == "identity_mention"
        assert entry.provenance == "did:plc:abc"
        assert entry.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_registration_is_idempotent(self, registry: EndpointRegistry) -> None:
        """Re-registering keeps the original source and reports no change."""
        await registry.register(
            DiscoveredEndpoint(url=A, source=DiscoverySource.RELAY_LISTING)
        )

        again = await registry.register(
            DiscoveredEndpoint(url=A, source=DiscoverySource.DIRECTORY_WALK, provenance="x")
        )

        entry = await registry.get_endpoint(A)
        assert again is False
        assert entry is not None
        assert entry.discovery_source == "relay_listing"
        assert entry.provenance is None

    @pytest.mark.asyncio
    async def test_invalid_url_is_ignored(self, registry: EndpointRegistry) -> None:
        """Unparseable URLs are rejected without touching storage."""
        created = await registry.register(
            DiscoveredEndpoint(url="ftp://nope", source=DiscoverySource.RELAY_LISTING)
        )

        assert created is False
        assert (await registry.get_stats()).total == 0

    @pytest.mark.asyncio
    async def test_register_many_counts_new_rows(self, registry: EndpointRegistry) -> None:
        """Duplicates within one batch are created once."""
        candidates = [
            DiscoveredEndpoint(url=url, source=DiscoverySource.RELAY_LISTING)
            for url in (A, B, A, "pds.example.org")
        ]

        assert await registry.register_many(candidates) == 3


class TestScanSelection:
    """Tests for get_endpoints_for_scan."""

    @pytest.mark.asyncio
    async def test_only_due_active_endpoints_are_selected(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Pending, failing, future-scheduled and relay-covered rows are skipped."""
        await add_endpoint(A)
        await add_endpoint("https://pending.example.com", active=False)
        await add_endpoint("https://failing.example.com", consecutive_failures=5)
        await add_endpoint(
            "https://later.example.com", next_scan_at=T0 + dt.timedelta(hours=1)
        )
        await add_endpoint("https://relay.example.com", relay_connected=True)

        selected = await registry.get_endpoints_for_scan(10)

        assert [entry.endpoint for entry in selected] == [A]

    @pytest.mark.asyncio
    async def test_relay_connected_endpoints_can_be_included(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """The relay filter is lifted on request."""
        await add_endpoint("https://relay.example.com", relay_connected=True)

        selected = await registry.get_endpoints_for_scan(10, include_relay_connected=True)

        assert [entry.endpoint for entry in selected] == ["https://relay.example.com"]

    @pytest.mark.asyncio
    async def test_ordering_and_limit(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Priority wins, then unscheduled rows, then the oldest schedule."""
        await add_endpoint(
            "https://old.example.com", next_scan_at=T0 - dt.timedelta(hours=5)
        )
        await add_endpoint(
            "https://older.example.com", next_scan_at=T0 - dt.timedelta(hours=9)
        )
        await add_endpoint("https://fresh.example.com")
        await add_endpoint("https://urgent.example.com", scan_priority=1)

        selected = await registry.get_endpoints_for_scan(3)

        assert [entry.endpoint for entry in selected] == [
            "https://urgent.example.com",
            "https://fresh.example.com",
            "https://older.example.com",
        ]


class TestScanLifecycle:
    """Tests for the scan state transitions."""

    @pytest.mark.asyncio
    async def test_scan_start_is_a_compare_and_set(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Only the first caller acquires an active endpoint."""
        await add_endpoint(A)

        assert await registry.mark_scan_started(A) is True
        assert await registry.mark_scan_started(A) is False
        assert await _status(registry, A) is EndpointStatus.SCANNING

    @pytest.mark.asyncio
    async def test_completion_after_release_is_ignored(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """A late completion cannot overwrite state set after the lease ended."""
        await add_endpoint(A)
        await registry.mark_scan_started(A)
        clock.advance(minutes=20)
        await registry.release_stale_scans(dt.timedelta(minutes=10))
        await registry.reset_endpoint(A)

        recorded = await registry.mark_scan_completed(
            A, has_content=False, content_count=0
        )

        entry = await registry.get_endpoint(A)
        assert recorded is False
        assert entry is not None
        assert entry.status is EndpointStatus.PENDING
        assert entry.last_scan_at is None

    @pytest.mark.asyncio
    async def test_completion_while_scanning_is_recorded(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """The scan holding the lease reports that its completion was applied."""
        await add_endpoint(A)
        await registry.mark_scan_started(A)

        assert (
            await registry.mark_scan_completed(A, has_content=True, content_count=1)
            is True
        )

    @pytest.mark.asyncio
    async def test_concurrent_starts_have_one_winner(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Racing schedulers cannot both scan the same endpoint."""
        await add_endpoint(A)

        results = await asyncio.gather(*(registry.mark_scan_started(A) for _ in range(2)))

        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_pending_endpoint_cannot_start(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Scans start only from active."""
        await add_endpoint(A, active=False)

        assert await registry.mark_scan_started(A) is False

    @pytest.mark.asyncio
    async def test_completion_with_content(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """A productive scan returns to active and clears failures."""
        await add_endpoint(A, consecutive_failures=2, last_error="boom")
        await registry.mark_scan_started(A)

        await registry.mark_scan_completed(
            A, has_content=True, content_count=12, next_scan_hours=24
        )

        entry = await registry.get_endpoint(A)
        assert entry is not None
        assert entry.status is EndpointStatus.ACTIVE
        assert entry.has_content is True
        assert entry.content_count == 12
        assert entry.consecutive_failures == 0
        assert entry.last_error is None
        assert entry.last_scan_at == clock.now
        assert entry.next_scan_at == clock.now + dt.timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_completion_without_content_is_terminal(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """An empty endpoint leaves scan and probe rotation."""
        await add_endpoint(A)
        await registry.mark_scan_started(A)

        await registry.mark_scan_completed(A, has_content=False, content_count=0)

        assert await _status(registry, A) is EndpointStatus.NO_CONTENT
        assert await registry.get_endpoints_for_scan(10) == []
        assert await registry.get_endpoints_for_probe(10, include_unreachable=True) == []

    @pytest.mark.asyncio
    async def test_failures_back_off_then_mark_unreachable(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """Delays double per failure and the fifth failure is terminal."""
        await add_endpoint(A)
        delays: list[float] = []
        statuses: list[EndpointStatus] = []

        for expected in range(1, 6):
            assert await registry.mark_scan_started(A) is True
            assert await registry.mark_scan_failed(A, "timeout") == expected
            entry = await registry.get_endpoint(A)
            assert entry is not None
            assert entry.next_scan_at is not None
            delays.append((entry.next_scan_at - clock.now).total_seconds() / 3600)
            statuses.append(entry.status)
            clock.now = entry.next_scan_at

        assert delays == [2, 4, 8, 16, 16]
        assert statuses[:4] == [EndpointStatus.ACTIVE] * 4
        assert statuses[4] is EndpointStatus.UNREACHABLE
        assert await registry.get_endpoints_for_scan(10) == []

    @pytest.mark.asyncio
    async def test_deferral_does_not_count_a_failure(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """A deferred scan releases the endpoint untouched apart from its schedule."""
        await add_endpoint(A, consecutive_failures=1)
        await registry.mark_scan_started(A)

        released = await registry.mark_scan_deferred(A, dt.timedelta(hours=1))

        entry = await registry.get_endpoint(A)
        assert released is True
        assert entry is not None
        assert entry.status is EndpointStatus.ACTIVE
        assert entry.consecutive_failures == 1
        assert entry.next_scan_at == clock.now + dt.timedelta(hours=1)
        assert await registry.mark_scan_deferred(A, dt.timedelta(hours=1)) is False

    @pytest.mark.asyncio
    async def test_stale_scans_are_released(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """Scans older than the cutoff return to active; recent ones stay."""
        await add_endpoint(A)
        await add_endpoint(B)
        await registry.mark_scan_started(A)
        clock.advance(minutes=20)
        await registry.mark_scan_started(B)

        released = await registry.release_stale_scans(dt.timedelta(minutes=10))

        assert released == 1
        assert await _status(registry, A) is EndpointStatus.ACTIVE
        assert await _status(registry, B) is EndpointStatus.SCANNING


class TestProbingAndReset:
    """Tests for probe promotion and administrative reset."""

    @pytest.mark.asyncio
    async def test_probe_promotes_pending(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """A successful probe makes the endpoint immediately scannable."""
        await add_endpoint(A, active=False)

        assert [e.endpoint for e in await registry.get_endpoints_for_probe(10)] == [A]
        assert await registry.mark_probe_succeeded(A) is True
        assert [e.endpoint for e in await registry.get_endpoints_for_scan(10)] == [A]
        assert await registry.mark_probe_succeeded(A) is False

    @pytest.mark.asyncio
    async def test_unreachable_is_probed_only_on_request(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """Unreachable endpoints recover through an opt-in probe after backoff."""
        await add_endpoint(A, consecutive_failures=4)
        await registry.mark_scan_failed(A, "refused")
        clock.advance(hours=17)

        assert await registry.get_endpoints_for_probe(10) == []
        probed = await registry.get_endpoints_for_probe(10, include_unreachable=True)
        assert [entry.endpoint for entry in probed] == [A]

    @pytest.mark.asyncio
    async def test_reset_returns_to_pending(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Reset clears failures and schedules an immediate probe."""
        await add_endpoint(A, consecutive_failures=5, status="unreachable", last_error="x")

        await registry.reset_endpoint(A)

        entry = await registry.get_endpoint(A)
        assert entry is not None
        assert entry.status is EndpointStatus.PENDING
        assert entry.consecutive_failures == 0
        assert entry.last_error is None
        assert entry.next_scan_at is None

    @pytest.mark.asyncio
    async def test_reset_refuses_an_endpoint_being_scanned(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Reset leaves a scanning endpoint to the scan that holds it."""
        await add_endpoint(A, consecutive_failures=2)
        await registry.mark_scan_started(A)

        with pytest.raises(RegistryConflictError):
            await registry.reset_endpoint(A)

        entry = await registry.get_endpoint(A)
        assert entry is not None
        assert entry.status is EndpointStatus.SCANNING
        assert entry.consecutive_failures == 2

    @pytest.mark.parametrize(
        "operation",
        [
            pytest.param(lambda r: r.reset_endpoint(A), id="reset"),
            pytest.param(lambda r: r.mark_scan_failed(A, "x"), id="failed"),
            pytest.param(
                lambda r: r.mark_scan_completed(A, has_content=True, content_count=1),
                id="completed",
            ),
        ],
    )
    @pytest.mark.asyncio
    async def test_unknown_endpoint_raises(
        self,
        registry: EndpointRegistry,
        operation: typ.Callable[[EndpointRegistry], typ.Awaitable[object]],
    ) -> None:
        """Transitions on unregistered endpoints raise EndpointNotFoundError."""
        with pytest.raises(EndpointNotFoundError):
            await operation(registry)


@pytest.mark.asyncio
async def test_stats_count_by_status(
    registry: EndpointRegistry, add_endpoint: AddEndpointFn
) -> None:
    """Stats report totals, per-status counts and content-bearing rows."""
    await add_endpoint(A, has_content=True)
    await add_endpoint(B, active=False)
    await add_endpoint("https://c.example.com", status="no_content")
    await add_endpoint("https://d.example.com", status="scanning")

    stats = await registry.get_stats()

    assert stats.to_dict() == {
        "total": 4,
        "pending": 1,
        "active": 1,
        "scanning": 1,
        "with_content": 1,
        "unreachable": 0,
        "no_content": 1,
    }


@pytest.mark.asyncio
async def test_relay_connectivity_follows_host_list(
    registry: EndpointRegistry, add_endpoint: AddEndpointFn
) -> None:
    """Flags are set for listed hosts and cleared for hosts that left."""
    await add_endpoint(A, relay_connected=True)
    await add_endpoint(B)

    changed = await registry.refresh_relay_connectivity(["B.example.com "])

    a_entry = await registry.get_endpoint(A)
    b_entry = await registry.get_endpoint(B)
    assert changed == 2
    assert a_entry is not None
    assert b_entry is not None
    assert a_entry.relay_connected is False
    assert b_entry.relay_connected is True
