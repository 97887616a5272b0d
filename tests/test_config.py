"""
Tests for configuration loading, error records and robots.txt policies.
"""

import httpx
import pytest

from phasecrawl.config import AppConfig, get_config, reset_config
from phasecrawl.errors import (
    ExtractionFailed,
    HttpError,
    InvalidOption,
    NetworkError,
    PhaseCrawlError,
)
from phasecrawl.robots import RobotsPolicy


# =============================================================================
# CONFIG
# =============================================================================

class TestAppConfig:

    def test_defaults(self):
        cfg = AppConfig.from_env({})
        assert cfg.crawl.max_phases == 50
        assert cfg.crawl.tension_threshold == 0.5
        assert cfg.crawl.stasis_window == 3
        assert cfg.crawl.save_interval == 10
        assert cfg.crawl.output_dir == "./output"
        assert cfg.browser.viewport_width == 1920
        assert cfg.browser.respect_robots is True

    def test_environment_overrides(self):
        cfg = AppConfig.from_env({
            "PHASECRAWL_MAX_PHASES": "7",
            "PHASECRAWL_HEADLESS": "false",
            "PHASECRAWL_TENSION_THRESHOLD": "0.25",
            "PHASECRAWL_RATE_LIMIT": "3",
            "PHASECRAWL_DOWNLOAD_DIR": "/tmp/media",
        })
        assert cfg.crawl.max_phases == 7
        assert cfg.browser.headless is False
        assert cfg.crawl.tension_threshold == 0.25
        assert cfg.browser.to_options()["rate_limit"]["max_requests"] == 3
        assert cfg.download.download_dir == "/tmp/media"

    def test_unparseable_values_keep_defaults(self):
        cfg = AppConfig.from_env({"PHASECRAWL_MAX_PHASES": "many", "PHASECRAWL_HEADLESS": "maybe"})
        assert cfg.crawl.max_phases == 50
        assert cfg.browser.headless is True

    def test_bounds_are_clamped(self):
        cfg = AppConfig.from_env({
            "PHASECRAWL_MAX_CONCURRENT_DOWNLOADS": "99",
            "PHASECRAWL_RETRY_ATTEMPTS": "0",
            "PHASECRAWL_DOWNLOAD_TIMEOUT": "100",
            "PHASECRAWL_RATE_INTERVAL": "10",
        })
        assert cfg.download.max_concurrent == 20
        assert cfg.download.retry_attempts == 1
        assert cfg.download.timeout == 5000
        assert cfg.browser.rate_limit_interval == 1000

    @pytest.mark.parametrize("key", ["MAX_PHASES", "STASIS_WINDOW", "SAVE_INTERVAL"])
    def test_unrepairable_values_raise(self, key):
        with pytest.raises(InvalidOption):
            AppConfig.from_env({f"PHASECRAWL_{key}": "0"})

    def test_get_config_is_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("PHASECRAWL_MAX_PHASES", "4")
        first = get_config()
        assert first.crawl.max_phases == 4
        assert get_config() is first

        reset_config()
        assert get_config() is not first

    def test_summary(self):
        summary = AppConfig.from_env({}).summary()
        assert summary["browser"]["rate_limit"] == "5/1000ms"
        assert summary["crawl"]["max_phases"] == 50


# =============================================================================
# ERRORS
# =============================================================================

class TestErrors:

    def test_http_error_retryable(self):
        assert HttpError(503).retryable
        assert HttpError(429).retryable
        assert not HttpError(404, "Not Found").retryable

    def test_to_dict(self):
        cause = ConnectionError("reset")
        data = NetworkError("connection reset", cause=cause).to_dict()
        assert data["kind"] == "NetworkError"
        assert data["category"] == "network"
        assert data["cause"] == "reset"
        assert data["context"]["traceback"]

    def test_extraction_failed_records_extractor(self):
        error = ExtractionFailed("boom", extractor="images")
        assert error.context.extractor == "images"
        assert isinstance(error, PhaseCrawlError)


# =============================================================================
# ROBOTS
# =============================================================================

ROBOTS_TXT = """
User-agent: *
Disallow: /private/
"""


class TestRobotsPolicy:

    def test_from_text(self):
        policy = RobotsPolicy.from_text("https://a.example/robots.txt", ROBOTS_TXT)
        assert policy.is_allowed("https://a.example/public/page")
        assert not policy.is_allowed("https://a.example/private/page")

    @pytest.mark.asyncio
    async def test_load_fetches_origin_robots(self):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, text=ROBOTS_TXT)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            policy = await RobotsPolicy.load("https://a.example/deep/page?x=1", "UA", client=client)

        assert requested == ["https://a.example/robots.txt"]
        assert not policy.is_allowed("https://a.example/private/x", "UA")

    @pytest.mark.asyncio
    async def test_missing_robots_means_no_policy(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404))) as client:
            assert await RobotsPolicy.load("https://a.example/", "UA", client=client) is None

    @pytest.mark.asyncio
    async def test_transport_failure_means_no_policy(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await RobotsPolicy.load("https://a.example/", "UA", client=client) is None

    @pytest.mark.asyncio
    async def test_relative_url_means_no_policy(self):
        assert await RobotsPolicy.load("/relative", "UA") is None
