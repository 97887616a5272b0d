"""All-in-one extraction over one shared browser session."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Type

from .audio import AudioExtractor
from .base import PassExtractor, _iso_now, _log
from .documents import DocumentExtractor
from .images import ImageExtractor
from .text import TextExtractor
from .video import VideoExtractor

# least intrusive first; image scrolling moves the page the most
CHILD_ORDER: Tuple[Tuple[str, Type[PassExtractor]], ...] = (
    ("text", TextExtractor),
    ("documents", DocumentExtractor),
    ("audio", AudioExtractor),
    ("video", VideoExtractor),
    ("images", ImageExtractor),
)


class UniversalExtractor(PassExtractor):
    """Runs the specialized extractors one after another on the same session.

    Children never close the session; the orchestrator does, when its own
    ``close_browser`` option says so. Child results are kept under their kind
    and their items are unioned into the orchestrator's dedup set.
    """

    name = "universal"
    INSTRUMENT = False
    DEFAULTS = {"monitor_network": False}

    def __init__(self, session, options: Optional[Dict[str, Any]] = None, **kwargs):
        options = dict(options or {})
        self.extract_options: Dict[str, bool] = {kind: True for kind, _ in CHILD_ORDER}
        self.extract_options.update(options.pop("extract", None) or {})
        self.child_options: Dict[str, Dict[str, Any]] = {
            kind: {**(options.pop(kind, None) or {}), "close_browser": False}
            for kind, _ in CHILD_ORDER
        }
        super().__init__(session, options, **kwargs)
        self._child_kwargs = {k: v for k, v in kwargs.items() if k == "sleep"}
        self.results: Dict[str, Dict[str, Any]] = {}

    def normalize_item(self, item: str) -> str:
        return item

    def build_child(self, kind: str, cls: Type[PassExtractor]) -> PassExtractor:
        options = dict(self.child_options[kind])
        for key in ("download_media", "download_dir", "organize_by_type", "organize_by_source",
                    "max_concurrent_downloads", "retry_attempts", "timeout"):
            if key in self.options and key not in options:
                options[key] = self.options[key]
        return cls(self.session, options, **self._child_kwargs)

    async def extract(self) -> Dict[str, Any]:
        _log(self.logger, "info", f"🔍 [{self.name}] Starting comprehensive extraction...")
        enabled = [(kind, cls) for kind, cls in CHILD_ORDER if self.extract_options.get(kind)]

        for index, (kind, cls) in enumerate(enabled, start=1):
            _log(self.logger, "info", f"📦 [{self.name}] Phase {index}/{len(enabled)}: {kind} extraction")
            child = self.build_child(kind, cls)
            try:
                self.results[kind] = await child.run(self.current_url)
            except Exception as e:
                self.stats["errors"] += 1
                _log(self.logger, "warning", f"⚠️ [{self.name}] {kind} extraction failed: {e}")
                self.results[kind] = {"items": [], "error": str(e), "stats": child.get_stats()}
                continue
            for item in self.results[kind].get("items") or []:
                self.add_item(item, {"type": kind})

        return self.export_results()

    def export_results(self) -> Dict[str, Any]:
        results = super().export_results()
        results["summary"] = {
            "url": self.current_url,
            "timestamp": _iso_now(),
            "extractionTypes": list(self.results),
            "counts": {kind: len(r.get("items") or []) for kind, r in self.results.items()},
        }
        results["results"] = dict(self.results)
        return results
