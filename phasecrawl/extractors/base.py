"""
Base utilities shared by every extractor.

An extractor owns a dedup set (ordered, keyed by the normalized item), a
listener set, run statistics and optional MediaStore integration. Concrete
extractors are mostly configuration: an ordered tuple of PassDescriptor
entries, a URL signature set and an export shape.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from ..errors import ExtractionFailed, TimingAnomaly
from ..events import ListenerSet
from ..mathcore import clamp
from ..media_store import DownloadResult, DownloadStatus, MediaStore
from ..observability import get_metrics
from .instrumentation import DRAIN_JS, INJECTION_BUNDLE, RESTORE_JS, NetworkCapture

TRACKING_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "ref", "cache", "fbclid", "gclid")


def _log(logger: logging.Logger, level: str, message: str):
    """Centralized logging utility for all extractors."""
    getattr(logger, level.lower())(message)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_media_url(url: str, base: Optional[str] = None, strip: Iterable[str] = TRACKING_PARAMS) -> str:
    """Resolve ``url`` against ``base`` and drop tracking query parameters.

    ``data:`` and ``blob:`` URLs are returned untouched. Normalizing twice
    gives the same result as normalizing once.
    """
    if not isinstance(url, str):
        return url
    if url.startswith(("data:", "blob:")):
        return url

    absolute = urllib.parse.urljoin(base, url) if base else url
    parts = urllib.parse.urlsplit(absolute)
    if not parts.scheme or not parts.query:
        return absolute

    stripped = set(strip)
    pairs = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in pairs if k not in stripped]
    if len(kept) == len(pairs):
        return absolute
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(kept)))


def matches_any(patterns: Sequence[Pattern], value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return any(p.search(value) for p in patterns)


# ───────── pass descriptors ─────────

PassRunner = Callable[[Any, "PassExtractor"], Awaitable[None]]


@dataclass(frozen=True)
class PassDescriptor:
    """One named extraction pass.

    ``run(session, state)`` receives the shared BrowserSession and the owning
    extractor. ``option`` names a boolean extractor option that gates the pass.
    """
    name: str
    kind: str
    run: PassRunner
    option: Optional[str] = None

    def enabled(self, options: Dict[str, Any]) -> bool:
        return self.option is None or bool(options.get(self.option))


# ───────── extractor base ─────────

class ExtractorBase:
    """Abstract extractor: validation, dedup, lifecycle, downloads, export."""

    name = "base"

    OPTION_BOUNDS: Dict[str, Tuple[float, float, float]] = {
        "max_depth": (1, 100, 10),
        "timeout": (5000, 300000, 30000),
        "max_concurrent_downloads": (1, 20, 5),
    }
    EXTRA_BOUNDS: Dict[str, Tuple[float, float, float]] = {}
    CHOICES: Dict[str, Tuple[Tuple[str, ...], str]] = {}
    DEFAULTS: Dict[str, Any] = {}

    def __init__(self, options: Optional[Dict[str, Any]] = None, *, logger: Optional[logging.Logger] = None):
        self.options = self.validate_options(options or {})
        self.logger = logger or logging.getLogger(f"phasecrawl.extractors.{self.name}")
        self.extracted: Dict[str, Dict[str, Any]] = {}
        self.downloaded: Dict[str, str] = {}
        self.download_results: List[DownloadResult] = []
        self.events = ListenerSet()
        self.stats: Dict[str, Any] = {
            "startTime": None,
            "endTime": None,
            "itemsFound": 0,
            "errors": 0,
            "downloaded": 0,
        }
        self.media_store: Optional[MediaStore] = None
        if self.options["download_media"]:
            self.media_store = MediaStore(
                download_dir=self.options["download_dir"],
                organize_by_type=self.options["organize_by_type"],
                organize_by_source=self.options["organize_by_source"],
                max_concurrent=self.options["max_concurrent_downloads"],
                timeout=self.options["timeout"],
                retry_attempts=self.options.get("retry_attempts"),
                follow_redirects=self.options.get("follow_redirects", True),
            )

    @classmethod
    def validate_options(cls, options: Dict[str, Any]) -> Dict[str, Any]:
        """Merge defaults and clamp every bounded option after the merge."""
        merged: Dict[str, Any] = {
            "download_media": False,
            "download_dir": "./downloads",
            "organize_by_type": True,
            "organize_by_source": False,
            "close_browser": True,
        }
        merged.update(cls.DEFAULTS)
        merged.update({k: v for k, v in options.items() if v is not None})

        for key, (lo, hi, default) in {**cls.OPTION_BOUNDS, **cls.EXTRA_BOUNDS}.items():
            value = merged.get(key)
            merged[key] = int(clamp(default if not value else value, lo, hi))

        for key, (allowed, default) in cls.CHOICES.items():
            if merged.get(key) not in allowed:
                merged[key] = default

        merged["download_media"] = bool(merged["download_media"])
        merged["organize_by_source"] = bool(merged["organize_by_source"])
        merged["organize_by_type"] = merged["organize_by_type"] is not False
        return merged

    # ───────── lifecycle ─────────

    async def initialize(self, target: str) -> None:
        raise NotImplementedError("initialize() must be implemented by subclass")

    async def extract(self) -> Dict[str, Any]:
        raise NotImplementedError("extract() must be implemented by subclass")

    async def cleanup(self) -> None:
        raise NotImplementedError("cleanup() must be implemented by subclass")

    def on(self, event: str, listener) -> None:
        self.events.on(event, listener)

    async def run(self, target: str) -> Dict[str, Any]:
        """initialize -> extract -> cleanup. Failures surface as ExtractionFailed."""
        self.stats["startTime"] = _now_ms()
        self.stats["endTime"] = None
        self.events.emit("extractionStart", {"target": target})

        try:
            await self.initialize(target)
            results = await self.extract()

            self.stats["endTime"] = _now_ms()
            self.stats["itemsFound"] = len(self.extracted)
            self.events.emit("extractionComplete", {"items": results, "stats": self.stats})
            return results
        except Exception as e:
            self.stats["errors"] += 1
            self.stats["endTime"] = _now_ms()
            get_metrics().extraction_errors_total.labels(extractor=self.name, stage="run").inc()
            _log(self.logger, "error", f"❌ [{self.name}] Extraction failed: {e}")
            self.events.emit("extractionError", {"error": e})
            if isinstance(e, ExtractionFailed):
                raise
            raise ExtractionFailed(f"{self.name} extraction failed: {e}", extractor=self.name, cause=e) from e
        finally:
            await self.cleanup()

    # ───────── dedup set ─────────

    def normalize_item(self, item: str) -> str:
        return item

    def add_item(self, item: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Insert ``item`` under its normalized key. Returns whether it was new."""
        if not item:
            return False
        normalized = self.normalize_item(item)
        if normalized in self.extracted:
            return False

        self.extracted[normalized] = dict(metadata or {})
        get_metrics().items_extracted_total.labels(extractor=self.name).inc()
        self.events.emit("itemFound", {"item": normalized, "metadata": metadata or {}})
        return True

    @property
    def items(self) -> List[str]:
        return list(self.extracted)

    def get_stats(self) -> Dict[str, Any]:
        start, end = self.stats["startTime"], self.stats["endTime"]
        return {**self.stats, "duration": end - start if end is not None and start is not None else None}

    # ───────── downloads ─────────

    async def download_media(
        self,
        items: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> List[DownloadResult]:
        if not self.options["download_media"] or self.media_store is None:
            _log(self.logger, "debug", f"[{self.name}] Media downloading disabled")
            return []

        targets = list(items) if items is not None else self.items
        if not targets:
            _log(self.logger, "debug", f"[{self.name}] No items to download")
            return []

        options = dict(options or {})
        _log(self.logger, "info", f"📥 [{self.name}] Downloading {len(targets)} media files...")
        results = await self.media_store.download_files(
            targets,
            referer=options.get("referer") or getattr(self, "current_url", None),
            type=options.get("type"),
            max_concurrent=options.get("max_concurrent"),
            download_dir=options.get("download_dir"),
        )

        for result in results:
            if result.status == DownloadStatus.SUCCESS:
                self.downloaded[result.url] = result.path
                self.stats["downloaded"] += 1
        self.download_results.extend(results)

        ok = sum(1 for r in results if r.ok)
        _log(self.logger, "info", f"✅ [{self.name}] Download complete: {ok}/{len(results)} files")
        return results

    def export_results(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {
            "items": self.items,
            "stats": self.get_stats(),
            "timestamp": _iso_now(),
        }
        if self.options["download_media"] and self.media_store is not None and self.downloaded:
            results["downloaded"] = {
                "files": dict(self.downloaded),
                "stats": self.media_store.get_stats(),
            }
        return results


# ───────── pass-driven extractors ─────────

class PassExtractor(ExtractorBase):
    """Extractor whose ``extract()`` walks ``PASSES`` in order over a BrowserSession.

    The session is borrowed by reference. It is not safe for concurrent use,
    so callers running several extractors must do so one at a time.
    """

    PASSES: Tuple[PassDescriptor, ...] = ()
    SIGNATURES: Tuple[Pattern, ...] = ()
    TRACKING: Tuple[str, ...] = TRACKING_PARAMS
    INSTRUMENT = True

    def __init__(
        self,
        session,
        options: Optional[Dict[str, Any]] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(options, logger=logger)
        self.session = session
        self.current_url = ""
        self.network_urls: Dict[str, Dict[str, Any]] = {}
        self.capture: Optional[NetworkCapture] = None
        self._sleep = sleep
        self._instrumented = False
        self._cleaned = False

    # ───────── hooks ─────────

    def is_media(self, url: Any) -> bool:
        return matches_any(self.SIGNATURES, url)

    def normalize_item(self, item: str) -> str:
        return normalize_media_url(item, self.session.url or self.current_url or None, self.TRACKING)

    def capture_request(self, url: str, resource_type: str) -> Optional[Dict[str, Any]]:
        """Metadata for a request worth keeping, else None."""
        if resource_type == "media" or self.is_media(url):
            return {"source": "network", "type": resource_type}
        return None

    def capture_response(self, url: str, headers: Dict[str, str], status: int) -> Optional[Dict[str, Any]]:
        return None

    def absorb_instrumentation(self, data: Dict[str, Any]) -> None:
        """Fold a drained collector snapshot into the dedup set."""
        for request in data.get("requests") or []:
            url = request.get("url")
            if self.is_media(url):
                self.add_item(url, {"source": "instrumented-" + str(request.get("via", "request"))})
        for mutation in data.get("mutations") or []:
            src = mutation.get("src")
            if self.is_media(src):
                self.add_item(src, {"source": "dom-mutation", "tag": mutation.get("tag")})

    # ───────── network capture ─────────

    def _on_request(self, url: str, resource_type: str) -> None:
        metadata = self.capture_request(url, resource_type)
        if metadata is not None and url not in self.network_urls:
            self.network_urls[url] = metadata
            _log(self.logger, "debug", f"[{self.name}] Network: {url}")

    def _on_response(self, url: str, headers: Dict[str, str], status: int) -> None:
        metadata = self.capture_response(url, headers, status)
        if metadata is not None:
            self.network_urls.setdefault(url, metadata)

    # ───────── lifecycle ─────────

    async def initialize(self, target: str) -> None:
        _log(self.logger, "info", f"🔧 [{self.name}] Initializing for {target}")
        self.current_url = target
        self._cleaned = False

        if self.options.get("monitor_network") or self.INSTRUMENT:
            page = await self.session.launch()
            if self.options.get("monitor_network"):
                self.capture = NetworkCapture(self._on_request, self._on_response)
                self.capture.attach(page)
            if self.INSTRUMENT:
                await self.session.add_init_script(INJECTION_BUNDLE)

        await self.session.initialize(target)

        if self.INSTRUMENT:
            # documents loaded before this extractor started lack the collector
            await self.session.page.evaluate(INJECTION_BUNDLE)
            self._instrumented = True

    async def extract(self) -> Dict[str, Any]:
        _log(self.logger, "info", f"🔍 [{self.name}] Starting extraction...")
        metrics = get_metrics()

        for descriptor in self.PASSES:
            if not descriptor.enabled(self.options):
                _log(self.logger, "debug", f"[{self.name}] Skipping pass {descriptor.name}")
                continue
            try:
                await descriptor.run(self.session, self)
            except TimingAnomaly:
                raise
            except Exception as e:
                metrics.extraction_errors_total.labels(extractor=self.name, stage=descriptor.name).inc()
                _log(self.logger, "warning", f"⚠️ [{self.name}] Pass {descriptor.name} failed: {e}")

        if self.options["download_media"]:
            await self.download_media()

        return self.export_results()

    async def cleanup(self) -> None:
        """Detach listeners, restore page globals, close the session if owned. Idempotent."""
        if self._cleaned:
            return
        self._cleaned = True

        if self.capture is not None:
            self.capture.detach()
            self.capture = None

        page = self.session.page
        if self._instrumented and page is not None:
            try:
                await page.evaluate(RESTORE_JS)
            except Exception as e:
                _log(self.logger, "debug", f"[{self.name}] Restore skipped: {e}")
        self._instrumented = False

        _log(self.logger, "info", f"🏁 [{self.name}] Extraction complete: {len(self.extracted)} items found")
        if self.options["close_browser"]:
            await self.session.close()


# ───────── passes shared by several extractors ─────────

async def observe(session, state: PassExtractor) -> None:
    """Give the page ``observation_window`` ms to load dynamic content."""
    await state._sleep(state.options["observation_window"] / 1000)


async def drain_instrumentation(session, state: PassExtractor) -> None:
    data = await session.page.evaluate(DRAIN_JS)
    if data:
        state.absorb_instrumentation(data)


async def drain_network(session, state: PassExtractor) -> None:
    for url, metadata in list(state.network_urls.items()):
        state.add_item(url, {**metadata, "source": metadata.get("source", "network-capture")})


def child_frames(page) -> List[Any]:
    main = page.main_frame
    return [frame for frame in page.frames if frame is not main]


def compile_patterns(*patterns: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)
