"""Playwright-backed browser session.

One session owns one live page. Every action passes through the session's
rate gate; ``PAGE_NEXT`` consults the robots policy before clicking. The
session is not safe for concurrent callers: serialize access.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import DEFAULT_USER_AGENT
from .errors import ErrorContext, InteractionError, RobotsBlocked
from .mathcore import clamp
from .models import Discovery, InteractionKind
from .observability import get_metrics
from .rate_gate import RateGate
from .robots import RobotsPolicy

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
NEXT_SELECTOR = 'a[rel="next"], .pagination .next, [aria-label="Next"]'
SCROLL_GROWTH_TIMEOUT_MS = 5000

EXTRACT_LINKS_JS = """
() => {
    const links = [];
    document.querySelectorAll('a[href]').forEach(el => {
        const href = el.href;
        if (href && href.startsWith('http')) {
            links.push({
                url: href,
                text: (el.textContent || '').trim().substring(0, 100),
                title: el.title || ''
            });
        }
    });
    return links;
}
"""


class BrowserSession:
    """Driven-browser abstraction shared by reference with crawlers and extractors."""

    def __init__(
        self,
        options: Optional[Dict[str, Any]] = None,
        *,
        rate_gate: Optional[RateGate] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        options = dict(options or {})
        viewport = options.get("viewport") or {}
        rate_limit = options.get("rate_limit") or {}

        self.headless = bool(options.get("headless", True))
        self.viewport = {
            "width": int(clamp(viewport.get("width", 1920), 200, 10000)),
            "height": int(clamp(viewport.get("height", 1080), 200, 10000)),
        }
        self.user_agent = options.get("user_agent") or DEFAULT_USER_AGENT
        self.default_timeout = int(clamp(options.get("default_timeout", 30000), 1000, 300000))
        self.respect_robots = bool(options.get("respect_robots", True))
        self.executable_path = options.get("executable_path")
        self.scroll_settle_ms = int(clamp(options.get("scroll_settle_ms", 1000), 0, 10000))

        self.rate_gate = rate_gate or RateGate(
            max_requests=rate_limit.get("max_requests", 5),
            interval=rate_limit.get("interval", 1000),
        )
        self.robots: Optional[RobotsPolicy] = None
        self.last_blocked: Optional[RobotsBlocked] = None
        self._playwright_factory = playwright_factory or async_playwright
        self._logger = logger or logging.getLogger("phasecrawl.session")

        self._playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._stats = {"requests": 0, "errors": 0}

    # ───────── lifecycle ─────────

    @property
    def url(self) -> str:
        return self.page.url if self.page is not None else ""

    async def launch(self) -> Page:
        """Start the browser and open the page if not running yet."""
        if self.page is not None:
            return self.page

        self._logger.info("🚀 Starting Playwright runtime…")
        self._playwright = await self._playwright_factory().start()
        launch_kwargs: Dict[str, Any] = {"headless": self.headless, "args": LAUNCH_ARGS}
        if self.executable_path:
            launch_kwargs["executable_path"] = self.executable_path
        self.browser = await self._playwright.chromium.launch(**launch_kwargs)
        self.context = await self.browser.new_context(
            viewport=self.viewport,
            user_agent=self.user_agent,
        )
        self.context.set_default_navigation_timeout(self.default_timeout)
        self.page = await self.context.new_page()
        return self.page

    async def add_init_script(self, script: str) -> None:
        """Install ``script`` so it runs before any page script on every navigation."""
        await self.launch()
        await self.context.add_init_script(script)

    async def initialize(self, url: str) -> None:
        """Admit, load robots policy, launch, then navigate if not already there."""
        try:
            await self.rate_gate.admit()

            if self.respect_robots:
                self.robots = await RobotsPolicy.load(url, self.user_agent)

            page = await self.launch()

            if page.url != url:
                await page.goto(url, wait_until="networkidle", timeout=self.default_timeout)
                self._logger.info(f"🌐 Browser navigated to {url}")
            else:
                self._logger.info(f"🌐 Browser already on {url}")
        except Exception as e:
            self._logger.error(f"❌ Browser initialization failed: {e}")
            raise

    async def close(self) -> None:
        """Release page, context, browser and driver. Safe to call repeatedly."""
        for name in ("page", "context", "browser"):
            handle = getattr(self, name)
            if handle is None:
                continue
            try:
                await handle.close()
            except Exception as e:
                self._logger.debug(f"Ignoring {name} close error: {e}")
            setattr(self, name, None)

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                self._logger.debug(f"Ignoring driver stop error: {e}")
            self._playwright = None
            self._logger.info("🛑 Browser closed")

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    # ───────── interactions ─────────

    async def interact(self, kind: InteractionKind | str) -> List[Discovery]:
        """Run one scripted interaction and return the anchors in the current DOM."""
        await self.rate_gate.admit()
        metrics = get_metrics()
        self.last_blocked = None

        try:
            kind = InteractionKind(kind)
            if kind == InteractionKind.SCROLL:
                results = await self.scroll()
            else:
                results = await self.paginate_next()
        except Exception as e:
            self._stats["errors"] += 1
            label = kind.value if isinstance(kind, InteractionKind) else str(kind)
            metrics.interactions_total.labels(kind=label, status="error").inc()
            self._logger.error(f"❌ Interaction failed for {label}: {e}")
            if isinstance(e, InteractionError):
                raise
            raise InteractionError(f"Interaction {label} failed: {e}", kind=label, cause=e) from e

        self._stats["requests"] += 1
        status = self.last_blocked.category.value if self.last_blocked is not None else "ok"
        metrics.interactions_total.labels(kind=kind.value, status=status).inc()
        self._logger.debug(f"Action {kind.value} returned {len(results)} items")
        return results

    async def scroll(self) -> List[Discovery]:
        page = self.page
        previous_height = await page.evaluate("document.body.scrollHeight")
        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")

        if self.scroll_settle_ms:
            await asyncio.sleep(self.scroll_settle_ms / 1000)
        try:
            await page.wait_for_function(
                f"document.body.scrollHeight > {int(previous_height or 0)}",
                timeout=SCROLL_GROWTH_TIMEOUT_MS,
            )
        except PlaywrightTimeoutError:
            pass  # no growth within the window is a normal outcome

        return await self.extract_links()

    async def paginate_next(self) -> List[Discovery]:
        page = self.page
        next_button = await page.query_selector(NEXT_SELECTOR)
        if next_button is None:
            self._logger.warning("⚠️ No next page button found")
            return []

        href = await next_button.evaluate("el => el.href")
        if self.robots is not None and href and not self.robots.is_allowed(href, self.user_agent):
            self.last_blocked = RobotsBlocked(f"URL blocked by robots.txt: {href}", context=ErrorContext(url=href))
            self._logger.warning(f"🚫 {self.last_blocked.message}")
            return []

        async with page.expect_navigation(wait_until="networkidle", timeout=self.default_timeout):
            await next_button.click()

        return await self.extract_links()

    async def extract_links(self) -> List[Discovery]:
        links = await self.page.evaluate(EXTRACT_LINKS_JS)
        return [Discovery.from_link(link) for link in links or []]
