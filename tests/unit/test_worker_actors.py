"""Unit tests for the Dramatiq actors and broker selection."""

from __future__ import annotations

import typing as typ
from unittest import mock

import pytest
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

from outrider.discovery import DirectoryWalkError, DirectoryWalkResult, DiscoveryCycleResult
from outrider.freshness import FreshnessScanResult
from outrider.ratelimit import EndpointRateLimiter, InMemoryWindowStore
from outrider.scanning import ScanOutcome, ScanStatus, TickResult
from outrider.worker import _broker, actors

if typ.TYPE_CHECKING:
    from outrider.factory import OutriderServices

DATABASE_URL = "sqlite+aiosqlite://"
PDS = "https://pds.example.com"


def _services(**attributes: typ.Any) -> mock.MagicMock:
    services = mock.MagicMock()
    for name, value in attributes.items():
        setattr(services, name, value)
    return services


class TestBrokerSelection:
    """Tests for choosing the Dramatiq broker."""

    def test_redis_broker_when_url_is_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A broker URL selects the Redis broker."""
        monkeypatch.setenv(_broker.BROKER_URL_ENV, "redis://localhost:6379/3")

        assert isinstance(_broker.build_broker(), RedisBroker)

    def test_stub_broker_under_tests(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without a URL, test runs fall back to the stub broker."""
        monkeypatch.delenv(_broker.BROKER_URL_ENV, raising=False)

        assert isinstance(_broker.build_broker(), StubBroker)

    def test_stub_broker_on_explicit_opt_in(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The opt-in flag allows the stub broker outside tests."""
        monkeypatch.delenv(_broker.BROKER_URL_ENV, raising=False)
        monkeypatch.setenv(_broker.ALLOW_STUB_ENV, "true")
        monkeypatch.setattr(_broker, "_under_pytest", lambda: False)

        assert isinstance(_broker.build_broker(), StubBroker)

    def test_missing_broker_configuration_raises(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Production processes refuse to start without a broker URL."""
        monkeypatch.delenv(_broker.BROKER_URL_ENV, raising=False)
        monkeypatch.delenv(_broker.ALLOW_STUB_ENV, raising=False)
        monkeypatch.setattr(_broker, "_under_pytest", lambda: False)

        with pytest.raises(RuntimeError, match=_broker.BROKER_URL_ENV):
            _broker.build_broker()


class TestActorBodies:
    """Tests for the async bodies behind each actor."""

    @pytest.mark.asyncio
    async def test_scan_tick_summary(self) -> None:
        """The tick summary reports counts by outcome."""
        tick = TickResult(released=1, probed=2, selected=1)
        tick.record(ScanOutcome(endpoint="https://a.example.com", status=ScanStatus.COMPLETED))
        services = _services(scheduler=mock.AsyncMock(**{"tick.return_value": tick}))

        summary = await actors._scan_tick_async(services)

        assert summary == {
            "released": 1,
            "probed": 2,
            "selected": 1,
            "completed": 1,
            "failed": 0,
            "deferred": 0,
            "skipped": 0,
        }

    @pytest.mark.asyncio
    async def test_discovery_cycle_passes_mentions(self) -> None:
        """Mentions reach the discovery cycle."""
        discovery = mock.AsyncMock()
        discovery.run_cycle.return_value = DiscoveryCycleResult(
            relay_endpoints=3, mention_endpoints=1, registered=2
        )

        summary = await actors._discovery_cycle_async(
            _services(discovery=discovery), ["did:plc:a"]
        )

        discovery.run_cycle.assert_awaited_once_with(["did:plc:a"])
        assert summary == {"relay_endpoints": 3, "mention_endpoints": 1, "registered": 2}

    @pytest.mark.asyncio
    async def test_walk_failure_is_reported_with_cursor(self) -> None:
        """A failed walk returns its resume cursor instead of raising."""
        discovery = mock.AsyncMock()
        discovery.walk_directory.side_effect = DirectoryWalkError(
            "boom", cursor="2024-01-01T00:00:00Z", pages=4
        )

        summary = await actors._walk_directory_async(
            _services(discovery=discovery), None, 10
        )

        assert summary == {
            "cursor": "2024-01-01T00:00:00Z",
            "completed": False,
            "failed": True,
            "pages": 4,
        }

    @pytest.mark.asyncio
    async def test_freshness_bodies(self) -> None:
        """Freshness actors report claims and per-tier counts."""
        worker = mock.AsyncMock(**{"run_once.return_value": 7})
        scan = mock.AsyncMock(
            **{"run.return_value": FreshnessScanResult(recent=1, normal=2, enqueued=3)}
        )
        services = _services(freshness_worker=worker, freshness_scan=scan)

        assert await actors._process_freshness_async(services, 25) == 7
        worker.run_once.assert_awaited_once_with(25)
        assert await actors._freshness_scan_async(services) == {
            "recent": 1,
            "normal": 2,
            "background": 0,
            "enqueued": 3,
        }


class TestWalkChaining:
    """Tests for directory walks continuing across messages."""

    @pytest.fixture
    def sent(self, monkeypatch: pytest.MonkeyPatch) -> list[dict[str, typ.Any]]:
        """Capture follow-up messages instead of enqueueing them."""
        messages: list[dict[str, typ.Any]] = []

        def record(**options: typ.Any) -> None:
            messages.append(options)

        monkeypatch.setattr(actors.walk_directory_job, "send_with_options", record)
        return messages

    def _run(
        self, monkeypatch: pytest.MonkeyPatch, summary: dict[str, typ.Any], **kwargs: typ.Any
    ) -> dict[str, typ.Any]:
        monkeypatch.setattr(actors, "_run_actor_async", lambda *_: summary)
        return actors.walk_directory_job("sqlite+aiosqlite://", **kwargs)

    def test_partial_walk_continues_from_cursor(
        self, monkeypatch: pytest.MonkeyPatch, sent: list[dict[str, typ.Any]]
    ) -> None:
        """A walk that hit its page bound schedules the next stretch."""
        summary = {"cursor": "c1", "completed": False, "failed": False, "pages": 100}

        self._run(monkeypatch, summary, max_pages=100)

        assert sent == [
            {
                "args": ("sqlite+aiosqlite://",),
                "kwargs": {"after": "c1", "max_pages": 100},
                "delay": actors.WALK_CONTINUE_DELAY_MS,
            }
        ]

    def test_failed_walk_retries_after_a_delay(
        self, monkeypatch: pytest.MonkeyPatch, sent: list[dict[str, typ.Any]]
    ) -> None:
        """A failed page resumes from its cursor after the retry delay."""
        summary = {"cursor": "c0", "completed": False, "failed": True, "pages": 0}

        self._run(monkeypatch, summary)

        assert sent[0]["delay"] == actors.WALK_RETRY_DELAY_MS
        assert sent[0]["kwargs"]["after"] == "c0"

    @pytest.mark.parametrize(
        ("summary", "continue_walk"),
        [
            ({"cursor": "c9", "completed": True, "failed": False, "pages": 3}, True),
            ({"cursor": "c1", "completed": False, "failed": False, "pages": 1}, False),
        ],
    )
    def test_walk_stops(
        self,
        monkeypatch: pytest.MonkeyPatch,
        sent: list[dict[str, typ.Any]],
        summary: dict[str, typ.Any],
        continue_walk: bool,  # noqa: FBT001
    ) -> None:
        """Completed walks and single-shot walks send nothing further."""
        self._run(monkeypatch, summary, continue_walk=continue_walk)

        assert sent == []


class TestSharedRateLimit:
    """Tests for the request budget shared by actor runs in one process."""

    @pytest.fixture
    def isolated_runs(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Run actor bodies without a database and with a fresh local store."""

        async def no_storage(_database_url: str) -> None:
            return None

        monkeypatch.setattr(actors, "_ensure_storage", no_storage)
        monkeypatch.setattr(
            actors, "_get_or_create_session_factory", lambda _url: mock.MagicMock()
        )
        monkeypatch.setattr(actors, "_LOCAL_WINDOW_STORE", InMemoryWindowStore())
        monkeypatch.delenv("OUTRIDER_REDIS_URL", raising=False)
        monkeypatch.setenv("OUTRIDER_RATE_LIMIT_MAX", "1")

    @pytest.mark.usefixtures("isolated_runs")
    def test_consecutive_runs_share_one_budget(self) -> None:
        """A second actor run sees the admission made by the first."""

        async def admitted(services: OutriderServices) -> bool:
            return (await services.limiter.check_limit(PDS)).allowed

        first = actors._run_actor_async(DATABASE_URL, admitted)
        second = actors._run_actor_async(DATABASE_URL, admitted)

        assert first is True
        assert second is False

    @pytest.mark.usefixtures("isolated_runs")
    def test_limiter_is_closed_when_the_run_fails(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Store connections are released even when the actor body raises."""
        closed: list[bool] = []

        class ClosingStore(InMemoryWindowStore):
            async def aclose(self) -> None:
                closed.append(True)

        monkeypatch.setattr(
            actors,
            "build_rate_limiter",
            lambda **_kwargs: EndpointRateLimiter(ClosingStore()),
        )

        async def explode(_services: OutriderServices) -> None:
            msg = "boom"
            raise RuntimeError(msg)

        with pytest.raises(RuntimeError, match="boom"):
            actors._run_actor_async(DATABASE_URL, explode)
        assert closed == [True]


def test_walk_result_defaults() -> None:
    """A fresh walk result starts at its resume cursor with no progress."""
    result = DirectoryWalkResult(cursor="c")

    assert (result.pages, result.discovered, result.completed) == (0, 0, False)
