"""
Tests for the Playwright-backed browser session.

The Playwright driver is replaced by a factory returning AsyncMock handles,
so no browser is launched.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from phasecrawl.errors import InteractionError
from phasecrawl.models import Discovery, InteractionKind
from phasecrawl.observability import get_metrics
from phasecrawl.rate_gate import RateGate
from phasecrawl.robots import RobotsPolicy
from phasecrawl.runtime import EXTRACT_LINKS_JS, NEXT_SELECTOR, BrowserSession

LINKS = [
    {"url": "https://a.example/1", "text": "One", "title": ""},
    {"url": "https://a.example/2", "text": "Two" * 50, "title": "T"},
]


def build_driver(evaluate=None):
    """Driver/browser/context/page chain with the page exposed for assertions."""
    page = MagicMock()
    page.url = "about:blank"

    async def goto(url, **kwargs):
        page.url = url

    page.goto = AsyncMock(side_effect=goto)
    page.evaluate = AsyncMock(side_effect=evaluate)
    page.wait_for_function = AsyncMock(side_effect=PlaywrightTimeoutError("no growth"))
    page.query_selector = AsyncMock(return_value=None)
    page.close = AsyncMock()

    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.add_init_script = AsyncMock()
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    driver = MagicMock()
    driver.chromium.launch = AsyncMock(return_value=browser)
    driver.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=driver)
    return MagicMock(return_value=starter), driver, page


def page_scripts(script, arg=None):
    if script == EXTRACT_LINKS_JS:
        return LINKS
    if script == "document.body.scrollHeight":
        return 1000
    return None


def make_session(factory, **options):
    options.setdefault("respect_robots", False)
    options.setdefault("scroll_settle_ms", 0)
    return BrowserSession(options, rate_gate=RateGate(100, 1000), playwright_factory=factory)


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_navigates_once(self):
        factory, driver, page = build_driver(page_scripts)
        session = make_session(factory)

        await session.initialize("https://a.example/")
        await session.initialize("https://a.example/")

        assert page.goto.await_count == 1
        assert session.url == "https://a.example/"
        driver.chromium.launch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_options(self):
        factory, driver, _ = build_driver(page_scripts)
        session = make_session(factory, headless=False, executable_path="/opt/chrome",
                               viewport={"width": 50, "height": 20000})

        await session.launch()

        kwargs = driver.chromium.launch.await_args.kwargs
        assert kwargs["headless"] is False
        assert kwargs["executable_path"] == "/opt/chrome"
        assert session.viewport == {"width": 200, "height": 10000}

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        factory, driver, page = build_driver(page_scripts)
        session = make_session(factory)
        await session.launch()

        await session.close()
        await session.close()

        driver.stop.assert_awaited_once()
        page.close.assert_awaited_once()
        assert session.page is None
        assert session.url == ""

    @pytest.mark.asyncio
    async def test_navigation_failure_propagates(self):
        factory, _, page = build_driver(page_scripts)
        page.goto.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        session = make_session(factory)

        with pytest.raises(RuntimeError):
            await session.initialize("https://nowhere.invalid/")


# =============================================================================
# INTERACTIONS
# =============================================================================

class TestInteractions:

    @pytest.mark.asyncio
    async def test_scroll_returns_discoveries(self):
        factory, _, page = build_driver(page_scripts)
        session = make_session(factory)
        await session.initialize("https://a.example/")

        results = await session.interact(InteractionKind.SCROLL)

        assert [d.url for d in results] == ["https://a.example/1", "https://a.example/2"]
        assert all(isinstance(d, Discovery) for d in results)
        assert len(results[1].anchor_text) == 100
        assert session.stats() == {"requests": 1, "errors": 0}

    @pytest.mark.asyncio
    async def test_page_next_without_button_returns_empty(self):
        factory, _, page = build_driver(page_scripts)
        session = make_session(factory)
        await session.initialize("https://a.example/")

        assert await session.interact("PAGE_NEXT") == []
        page.query_selector.assert_awaited_once_with(NEXT_SELECTOR)

    @pytest.mark.asyncio
    async def test_page_next_blocked_by_robots(self):
        factory, _, page = build_driver(page_scripts)
        button = MagicMock()
        button.evaluate = AsyncMock(return_value="https://a.example/private/2")
        button.click = AsyncMock()
        page.query_selector.return_value = button

        session = make_session(factory)
        await session.initialize("https://a.example/")
        session.robots = RobotsPolicy.from_text(
            "https://a.example/robots.txt", "User-agent: *\nDisallow: /private/\n"
        )

        assert await session.interact(InteractionKind.PAGE_NEXT) == []
        button.click.assert_not_awaited()
        assert session.last_blocked.kind == "RobotsBlocked"
        assert session.last_blocked.context.url == "https://a.example/private/2"
        registry = get_metrics().registry
        assert registry.get_sample_value(
            "phasecrawl_interactions_total", {"kind": "PAGE_NEXT", "status": "robots"}
        ) == 1

    @pytest.mark.asyncio
    async def test_page_next_follows_allowed_link(self):
        factory, _, page = build_driver(page_scripts)
        button = MagicMock()
        button.evaluate = AsyncMock(return_value="https://a.example/page/2")
        button.click = AsyncMock()
        page.query_selector.return_value = button

        session = make_session(factory)
        await session.initialize("https://a.example/")
        results = await session.interact(InteractionKind.PAGE_NEXT)

        button.click.assert_awaited_once()
        assert len(results) == 2
        assert session.last_blocked is None

    @pytest.mark.asyncio
    async def test_failure_is_wrapped(self):
        def broken(script, arg=None):
            raise RuntimeError("target closed")

        factory, _, _ = build_driver(broken)
        session = make_session(factory)
        await session.launch()

        with pytest.raises(InteractionError) as exc_info:
            await session.interact(InteractionKind.SCROLL)

        assert exc_info.value.interaction_kind == "SCROLL"
        assert session.stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_unknown_kind_is_an_interaction_error(self):
        factory, _, _ = build_driver(page_scripts)
        session = make_session(factory)
        await session.launch()

        with pytest.raises(InteractionError):
            await session.interact("JUMP")
