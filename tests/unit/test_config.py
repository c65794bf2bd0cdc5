"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from outrider.common.env import parse_positive_float, parse_positive_int, read_str
from outrider.common.http import HttpConfig
from outrider.config import DATABASE_URL_ENV, AppConfig, ConfigurationError
from outrider.discovery import DiscoveryConfig
from outrider.discovery.config import DEFAULT_DIRECTORY_URL
from outrider.freshness import FreshnessConfig
from outrider.ratelimit import RateLimitConfig
from outrider.scanning import ScanConfig


class TestEnvHelpers:
    """Tests for the typed environment readers."""

    def test_blank_values_use_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset and whitespace-only variables fall back to the default."""
        monkeypatch.setenv("OUTRIDER_TEST_INT", "   ")
        monkeypatch.delenv("OUTRIDER_TEST_FLOAT", raising=False)

        assert parse_positive_int("OUTRIDER_TEST_INT", 7) == 7
        assert parse_positive_float("OUTRIDER_TEST_FLOAT", 1.5) == 1.5
        assert read_str("OUTRIDER_TEST_INT", "fallback") == "fallback"

    @pytest.mark.parametrize("raw", ["abc", "0", "-3"])
    def test_invalid_integers_raise(
        self, monkeypatch: pytest.MonkeyPatch, raw: str
    ) -> None:
        """Non-numeric and non-positive integers are rejected."""
        monkeypatch.setenv("OUTRIDER_TEST_INT", raw)

        with pytest.raises(ValueError, match="OUTRIDER_TEST_INT"):
            parse_positive_int("OUTRIDER_TEST_INT", 1)

    def test_invalid_float_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Zero is not a positive float."""
        monkeypatch.setenv("OUTRIDER_TEST_FLOAT", "0")

        with pytest.raises(ValueError, match="must be positive"):
            parse_positive_float("OUTRIDER_TEST_FLOAT", 1.0)

    def test_read_str_strips(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Surrounding whitespace is removed."""
        monkeypatch.setenv("OUTRIDER_TEST_STR", "  value \n")

        assert read_str("OUTRIDER_TEST_STR") == "value"


class TestAppConfig:
    """Tests for process-level configuration."""

    def test_reads_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The database URL comes from the environment."""
        monkeypatch.setenv(DATABASE_URL_ENV, "postgresql+asyncpg://db/outrider")

        assert AppConfig.from_env().database_url == "postgresql+asyncpg://db/outrider"

    def test_missing_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A missing URL names the variable to set."""
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)

        with pytest.raises(ConfigurationError, match=DATABASE_URL_ENV):
            AppConfig.from_env()


class TestComponentConfig:
    """Tests for the per-component ``from_env`` constructors."""

    def test_scan_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Collections split on commas; flags accept common truthy spellings."""
        monkeypatch.setenv("OUTRIDER_SCAN_COLLECTIONS", "app.example.post, ,app.example.like")
        monkeypatch.setenv("OUTRIDER_SCAN_BATCH_SIZE", "25")
        monkeypatch.setenv("OUTRIDER_PROBE_UNREACHABLE", "Yes")
        monkeypatch.delenv("OUTRIDER_SCAN_ENQUEUE_FRESHNESS", raising=False)

        config = ScanConfig.from_env()

        assert config.collections == ("app.example.post", "app.example.like")
        assert config.batch_size == 25
        assert config.probe_unreachable is True
        assert config.enqueue_freshness is False

    def test_discovery_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The page bound is unlimited unless set."""
        monkeypatch.delenv("OUTRIDER_DIRECTORY_URL", raising=False)
        monkeypatch.delenv("OUTRIDER_DIRECTORY_MAX_PAGES", raising=False)
        monkeypatch.setenv("OUTRIDER_RELAY_URL", "https://relay.example.com")

        config = DiscoveryConfig.from_env()

        assert config.directory_url == DEFAULT_DIRECTORY_URL
        assert config.relay_url == "https://relay.example.com"
        assert config.max_pages is None

        monkeypatch.setenv("OUTRIDER_DIRECTORY_MAX_PAGES", "12")
        assert DiscoveryConfig.from_env().max_pages == 12

    def test_rate_limit_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The Redis store is selected only when a URL is set."""
        monkeypatch.setenv("OUTRIDER_RATE_LIMIT_MAX", "3")
        monkeypatch.delenv("OUTRIDER_RATE_LIMIT_WINDOW_MS", raising=False)
        monkeypatch.delenv("OUTRIDER_REDIS_URL", raising=False)

        config = RateLimitConfig.from_env()

        assert (config.max_requests, config.window_ms, config.redis_url) == (3, 60_000, None)

    def test_freshness_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Retry policy is read from the environment."""
        monkeypatch.setenv("OUTRIDER_FRESHNESS_MAX_RETRIES", "5")
        monkeypatch.setenv("OUTRIDER_FRESHNESS_RETRY_DELAY_S", "2.5")
        monkeypatch.setenv("OUTRIDER_FRESHNESS_SCAN_LEASE_S", "120")

        config = FreshnessConfig.from_env()

        assert config.max_retries == 5
        assert config.retry_delay_s == 2.5
        assert config.scan_lease_s == 120

    def test_http_config_rejects_bad_timeout(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Invalid timeouts fail at startup."""
        monkeypatch.setenv("OUTRIDER_HTTP_TIMEOUT_S", "soon")

        with pytest.raises(ValueError, match="OUTRIDER_HTTP_TIMEOUT_S"):
            HttpConfig.from_env()
