"""Unit tests for endpoint scans and the scan scheduler."""

from __future__ import annotations

import datetime as dt
import typing as typ

import httpx
import pytest

from outrider.freshness import CheckType, FreshnessPriority, FreshnessQueue
from outrider.ratelimit import EndpointRateLimiter, InMemoryWindowStore, RateLimitConfig
from outrider.registry import EndpointStatus
from outrider.scanning import (
    EndpointScanner,
    ScanConfig,
    ScanScheduler,
    ScanStatus,
    SyncClient,
)
from tests.helpers.fakes import MillisClock, RecordingScanSink, mock_http_client, xrpc_error

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from outrider.registry import EndpointRegistry
    from tests.helpers.fakes import MutableClock
    from tests.unit.conftest import AddEndpointFn

PDS = "https://pds.example.com"
COLLECTION = "app.example.post"


class XrpcServer:
    """Endpoint double answering sync and repo methods from canned data."""

    def __init__(
        self,
        repos: list[dict[str, typ.Any]] | None = None,
        records: dict[str, list[dict[str, typ.Any]]] | None = None,
        overrides: dict[str, httpx.Response] | None = None,
    ) -> None:
        self.repos = repos or []
        self.records = records or {}
        self.overrides = overrides or {}
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        self.calls.append(f"{request.url.host}:{method}")
        for key in (method, request.url.host):
            if key in self.overrides:
                return self.overrides[key]
        if method == "com.atproto.server.describeServer":
            return httpx.Response(200, json={"did": f"did:web:{request.url.host}"})
        if method == "com.atproto.sync.listRepos":
            return httpx.Response(200, json={"repos": self.repos})
        if method == "com.atproto.repo.listRecords":
            repo = request.url.params["repo"]
            return httpx.Response(200, json={"records": self.records.get(repo, [])})
        return xrpc_error(400, "MethodNotImplemented")


def _record(repo: str, rkey: str) -> dict[str, typ.Any]:
    return {
        "uri": f"at://{repo}/{COLLECTION}/{rkey}",
        "cid": f"bafy{rkey}",
        "value": {"$type": COLLECTION, "text": rkey},
    }


def _limiter(max_requests: int = 100) -> EndpointRateLimiter:
    clock = MillisClock()
    return EndpointRateLimiter(
        InMemoryWindowStore(),
        config=RateLimitConfig(max_requests=max_requests, window_ms=60_000),
        clock=clock,
        sleep=clock.sleep,
    )


def _scanner(
    registry: EndpointRegistry,
    server: XrpcServer,
    *,
    config: ScanConfig | None = None,
    limiter: EndpointRateLimiter | None = None,
    freshness_queue: FreshnessQueue | None = None,
) -> tuple[EndpointScanner, RecordingScanSink]:
    sink = RecordingScanSink()
    scanner = EndpointScanner(
        registry,
        SyncClient(mock_http_client(server)),
        limiter or _limiter(),
        sink,
        config=config or ScanConfig(collections=(COLLECTION,)),
        freshness_queue=freshness_queue,
    )
    return scanner, sink


class TestEndpointScanner:
    """Tests for scanning one endpoint."""

    @pytest.mark.asyncio
    async def test_scan_collects_records_and_schedules_next_scan(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """Records from active repositories reach the sink; the endpoint stays active."""
        await add_endpoint(PDS)
        server = XrpcServer(
            repos=[{"did": "did:plc:r1"}, {"did": "did:plc:r2", "active": False}],
            records={"did:plc:r1": [_record("did:plc:r1", "k1"), _record("did:plc:r1", "k2")]},
        )
        scanner, sink = _scanner(registry, server)

        outcome = await scanner.scan(PDS)

        entry = await registry.get_endpoint(PDS)
        assert outcome.status is ScanStatus.COMPLETED
        assert (outcome.repos_scanned, outcome.records_found) == (1, 2)
        assert [record.rkey for record in sink.records] == ["k1", "k2"]
        assert sink.records[0].collection == COLLECTION
        assert sink.records[0].cid == "bafyk1"
        assert entry is not None
        assert entry.status is EndpointStatus.ACTIVE
        assert entry.content_count == 2
        assert entry.next_scan_at == clock.now + dt.timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_repositories_count_as_content_without_collections(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """With no collections configured the repository count is the content."""
        await add_endpoint(PDS)
        server = XrpcServer(repos=[{"did": "did:plc:r1"}, {"did": "did:plc:r2"}])
        scanner, sink = _scanner(registry, server, config=ScanConfig())

        outcome = await scanner.scan(PDS)

        assert outcome.records_found == 2
        assert outcome.has_content is True
        assert sink.records == []
        assert not any("listRecords" in call for call in server.calls)

    @pytest.mark.asyncio
    async def test_empty_endpoint_becomes_no_content(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """An endpoint hosting nothing is parked for a week."""
        await add_endpoint(PDS)
        scanner, _ = _scanner(registry, XrpcServer())

        outcome = await scanner.scan(PDS)

        entry = await registry.get_endpoint(PDS)
        assert outcome.status is ScanStatus.COMPLETED
        assert entry is not None
        assert entry.status is EndpointStatus.NO_CONTENT
        assert entry.next_scan_at == clock.now + dt.timedelta(hours=168)

    @pytest.mark.asyncio
    async def test_unknown_collection_is_treated_as_empty(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """A 400 from listRecords ends that collection without failing the scan."""
        await add_endpoint(PDS)
        server = XrpcServer(
            repos=[{"did": "did:plc:r1"}],
            overrides={"com.atproto.repo.listRecords": xrpc_error(400, "InvalidRequest")},
        )
        scanner, _ = _scanner(registry, server)

        outcome = await scanner.scan(PDS)

        assert outcome.status is ScanStatus.COMPLETED
        assert outcome.records_found == 0

    @pytest.mark.asyncio
    async def test_remote_failure_is_charged_to_the_endpoint(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Server errors fail the scan and count a failure."""
        await add_endpoint(PDS)
        server = XrpcServer(
            overrides={"com.atproto.sync.listRepos": xrpc_error(502, "BadGateway")}
        )
        scanner, _ = _scanner(registry, server)

        outcome = await scanner.scan(PDS)

        entry = await registry.get_endpoint(PDS)
        assert outcome.status is ScanStatus.FAILED
        assert entry is not None
        assert entry.status is EndpointStatus.ACTIVE
        assert entry.consecutive_failures == 1
        assert entry.last_error is not None

    @pytest.mark.asyncio
    async def test_exhausted_budget_defers_without_penalty(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """A scan that cannot get request budget is deferred, not failed."""
        await add_endpoint(PDS)
        server = XrpcServer(
            repos=[{"did": "did:plc:r1"}],
            records={"did:plc:r1": [_record("did:plc:r1", "k1")]},
        )
        scanner, _ = _scanner(
            registry,
            server,
            config=ScanConfig(collections=(COLLECTION,), rate_limit_wait_ms=0),
            limiter=_limiter(max_requests=1),
        )

        outcome = await scanner.scan(PDS)

        entry = await registry.get_endpoint(PDS)
        assert outcome.status is ScanStatus.DEFERRED
        assert entry is not None
        assert entry.status is EndpointStatus.ACTIVE
        assert entry.consecutive_failures == 0
        assert entry.next_scan_at == clock.now + dt.timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_endpoint_already_scanning_is_skipped(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """A scan that loses the start race makes no remote calls."""
        await add_endpoint(PDS)
        await registry.mark_scan_started(PDS)
        server = XrpcServer()
        scanner, _ = _scanner(registry, server)

        outcome = await scanner.scan(PDS)

        assert outcome.status is ScanStatus.SKIPPED
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_scan_that_loses_its_lease_does_not_complete(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Records already collected are kept but the endpoint state is not overwritten."""
        await add_endpoint(PDS)
        server = XrpcServer(
            repos=[{"did": "did:plc:r1"}],
            records={"did:plc:r1": [_record("did:plc:r1", "k1")]},
        )
        scanner, sink = _scanner(registry, server)

        async def release_then_accept(record: typ.Any) -> None:
            await registry.release_stale_scans(dt.timedelta(0))
            await registry.reset_endpoint(PDS)
            sink.records.append(record)

        sink.accept = release_then_accept  # type: ignore[method-assign]

        outcome = await scanner.scan(PDS)

        entry = await registry.get_endpoint(PDS)
        assert outcome.status is ScanStatus.SKIPPED
        assert outcome.records_found == 1
        assert len(sink.records) == 1
        assert entry is not None
        assert entry.status is EndpointStatus.PENDING
        assert entry.has_content is False

    @pytest.mark.asyncio
    async def test_scanned_records_are_queued_for_freshness(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        session_factory: async_sessionmaker[AsyncSession],
        clock: MutableClock,
    ) -> None:
        """Background freshness jobs are queued when enabled."""
        await add_endpoint(PDS)
        queue = FreshnessQueue(session_factory, clock=clock)
        server = XrpcServer(
            repos=[{"did": "did:plc:r1"}],
            records={"did:plc:r1": [_record("did:plc:r1", "k1"), _record("did:plc:r1", "k2")]},
        )
        scanner, _ = _scanner(
            registry,
            server,
            config=ScanConfig(collections=(COLLECTION,), enqueue_freshness=True),
            freshness_queue=queue,
        )

        await scanner.scan(PDS)

        claimed = await queue.claim_batch(10)
        assert [job.job.uri for job in claimed] == [
            f"at://did:plc:r1/{COLLECTION}/k1",
            f"at://did:plc:r1/{COLLECTION}/k2",
        ]
        assert {job.job.priority for job in claimed} == {FreshnessPriority.BACKGROUND}
        assert {job.job.check_type for job in claimed} == {CheckType.FULL}
        assert {job.job.endpoint for job in claimed} == {PDS}


class TestScanScheduler:
    """Tests for scheduler ticks."""

    @pytest.mark.parametrize(("include", "selected"), [(False, 0), (True, 1)])
    @pytest.mark.asyncio
    async def test_relay_connected_endpoints_follow_config(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        include: bool,  # noqa: FBT001
        selected: int,
    ) -> None:
        """Endpoints covered by the relay feed are only scanned on request."""
        await add_endpoint(PDS, relay_connected=True)
        config = ScanConfig(include_relay_connected=include)
        server = XrpcServer(repos=[{"did": "did:plc:r1"}])
        scanner, _ = _scanner(registry, server, config=config)
        scheduler = ScanScheduler(
            registry, scanner, SyncClient(mock_http_client(server)), _limiter(), config=config
        )

        result = await scheduler.tick()

        assert result.selected == selected

    @pytest.mark.asyncio
    async def test_tick_probes_then_scans(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """Probed endpoints that answer are scanned in the same tick."""
        await add_endpoint("https://alive.example.com", active=False)
        await add_endpoint("https://dead.example.com", active=False)
        server = XrpcServer(
            repos=[{"did": "did:plc:r1"}],
            overrides={"dead.example.com": httpx.Response(503)},
        )
        scanner, _ = _scanner(registry, server, config=ScanConfig())
        client = SyncClient(mock_http_client(server))
        scheduler = ScanScheduler(registry, scanner, client, _limiter())

        result = await scheduler.tick()

        dead = await registry.get_endpoint("https://dead.example.com")
        assert (result.probed, result.probes_succeeded) == (2, 1)
        assert result.selected == 1
        assert result.completed == 1
        assert dead is not None
        assert dead.status is EndpointStatus.PENDING
        assert dead.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_tick_releases_abandoned_scans(
        self,
        registry: EndpointRegistry,
        add_endpoint: AddEndpointFn,
        clock: MutableClock,
    ) -> None:
        """A lease older than the stale bound is released and rescanned."""
        await add_endpoint(PDS)
        await registry.mark_scan_started(PDS)
        clock.advance(hours=2)
        server = XrpcServer(repos=[{"did": "did:plc:r1"}])
        scanner, _ = _scanner(registry, server, config=ScanConfig())
        scheduler = ScanScheduler(
            registry,
            scanner,
            SyncClient(mock_http_client(server)),
            _limiter(),
            config=ScanConfig(stale_scan_after_s=3600),
        )

        result = await scheduler.tick()

        assert result.released == 1
        assert result.completed == 1

    @pytest.mark.asyncio
    async def test_probe_with_bad_description_fails(
        self, registry: EndpointRegistry, add_endpoint: AddEndpointFn
    ) -> None:
        """A describeServer body without a did counts as a failed probe."""
        await add_endpoint(PDS, active=False)
        server = XrpcServer(
            overrides={"com.atproto.server.describeServer": httpx.Response(200, json={})}
        )
        scanner, _ = _scanner(registry, server)
        scheduler = ScanScheduler(
            registry, scanner, SyncClient(mock_http_client(server)), _limiter()
        )

        assert await scheduler.probe(PDS) is False
        entry = await registry.get_endpoint(PDS)
        assert entry is not None
        assert entry.consecutive_failures == 1
