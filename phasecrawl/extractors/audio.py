"""Audio files, audio streams, podcast feeds and embedded audio players."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from .base import (
    PassDescriptor,
    PassExtractor,
    _log,
    child_frames,
    compile_patterns,
    drain_instrumentation,
    drain_network,
    observe,
)
from .players import AUDIO_PLAYERS, probe_players

SUPPORTED_FORMATS = ("mp3", "wav", "ogg", "flac", "m4a", "aac", "wma", "opus", "webm")
STREAMING_FORMATS = ("m3u8", "mpd")

AUDIO_CONTENT_TYPES = ("audio", "application/ogg", "application/x-mpegurl")
AUDIO_PLATFORMS = ("soundcloud", "spotify", "bandcamp", "mixcloud", "anchor")

AUDIO_DOM_JS = """
(formats) => {
  const results = [];
  const scanNode = (root) => {
    root.querySelectorAll('audio').forEach(audio => {
      const base = { duration: audio.duration, preload: audio.preload, controls: audio.controls, autoplay: audio.autoplay };
      const src = audio.src || audio.currentSrc;
      if (src) results.push({ ...base, src, type: 'audio-element' });
      if (audio.dataset.src) results.push({ ...base, src: audio.dataset.src, type: 'audio-data-src' });
      if (audio.dataset.url) results.push({ ...base, src: audio.dataset.url, type: 'audio-data-url' });
      if (audio.dataset.file) results.push({ ...base, src: audio.dataset.file, type: 'audio-data-file' });
      audio.querySelectorAll('source').forEach(source => {
        if (source.src) results.push({ src: source.src, type: 'audio-source', mimeType: source.type });
      });
    });
    root.querySelectorAll('[data-audio], [data-track], [data-podcast], [data-episode]').forEach(el => {
      Object.entries(el.dataset).forEach(([key, value]) => {
        if (typeof value === 'string' && /https?:\\/\\//.test(value)) results.push({ src: value, type: 'podcast-data', dataKey: key });
      });
    });
    formats.forEach(format => {
      root.querySelectorAll('a[href*=".' + format + '"]').forEach(link => {
        results.push({ src: link.href, type: 'audio-link', text: (link.textContent || '').trim(), format });
      });
    });
  };
  scanNode(document);
  document.querySelectorAll('*').forEach(el => { if (el.shadowRoot) scanNode(el.shadowRoot); });
  return results;
}
"""

FRAME_AUDIO_JS = """
() => {
  const urls = [];
  document.querySelectorAll('audio, source').forEach(el => {
    if (el.src) urls.push(el.src);
    if (el.currentSrc) urls.push(el.currentSrc);
  });
  return urls;
}
"""

AUDIO_PLATFORMS_JS = """
() => {
  const results = [];
  [
    ['soundcloud', 'soundcloud.com'],
    ['spotify', 'spotify.com'],
    ['bandcamp', 'bandcamp.com'],
    ['mixcloud', 'mixcloud.com'],
    ['anchor', 'anchor.fm'],
  ].forEach(([platform, host]) => {
    document.querySelectorAll('iframe[src*="' + host + '"]').forEach(iframe => {
      results.push({ platform, embedUrl: iframe.src, width: iframe.width, height: iframe.height });
    });
  });
  document.querySelectorAll('link[type*="rss"], link[type*="xml"], a[href*=".rss"], a[href*="/feed"]').forEach(el => {
    const href = el.href || el.getAttribute('href');
    if (href) results.push({ platform: 'rss-feed', feedUrl: href, title: el.title || (el.textContent || '').trim() });
  });
  return results;
}
"""


# ───────── passes ─────────

async def scan_dom(session, state: "AudioExtractor") -> None:
    records = await session.page.evaluate(AUDIO_DOM_JS, list(state.formats)) or []
    for data in records:
        src = data.get("src")
        if not state.is_media(src):
            continue
        state.add_item(src, {"source": "dom", "extractionType": data.get("type"), "metadata": data})
        state.audio_metadata.setdefault(state.normalize_item(src), data)


async def deep_scan(session, state: "AudioExtractor") -> None:
    for frame in child_frames(session.page):
        try:
            urls = await frame.evaluate(FRAME_AUDIO_JS) or []
        except Exception as e:
            _log(state.logger, "debug", f"[{state.name}] Frame scan failed for {frame.url}: {e}")
            continue
        for url in urls:
            if state.is_media(url):
                state.add_item(url, {"source": "iframe", "frame": frame.url})


async def scan_platforms(session, state: "AudioExtractor") -> None:
    for data in await session.page.evaluate(AUDIO_PLATFORMS_JS) or []:
        if data.get("embedUrl"):
            state.add_item(data["embedUrl"], {"source": "embedded-platform", "platform": data.get("platform"),
                                              "metadata": data})
            state.platforms.append(data)
        if data.get("feedUrl"):
            if state.add_item(data["feedUrl"], {"source": "podcast-feed", "metadata": data}):
                state.podcasts.append(data)


class AudioExtractor(PassExtractor):
    name = "audio"
    TRACKING = ("utm_source", "utm_medium", "utm_campaign", "ref", "fbclid")
    EXTRA_BOUNDS = {"observation_window": (1000, 30000, 5000)}
    CHOICES = {"quality_preference": (("highest", "lowest", "all"), "highest")}
    DEFAULTS = {
        "monitor_network": True,
        "scan_web_audio_api": True,
        "extract_metadata": True,
    }

    PASSES = (
        PassDescriptor("dom", "dom", scan_dom),
        PassDescriptor("observe", "wait", observe),
        PassDescriptor("players", "player", probe_players),
        PassDescriptor("deep-scan", "dom", deep_scan),
        PassDescriptor("platforms", "platform", scan_platforms),
        PassDescriptor("web-audio", "instrumentation", drain_instrumentation),
        PassDescriptor("network", "network", drain_network),
    )

    players = AUDIO_PLAYERS

    def __init__(self, session, options: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(session, options, **kwargs)
        self.formats = tuple(self.options.get("supported_formats") or SUPPORTED_FORMATS)
        self.signatures = (
            re.compile(rf"\.({'|'.join(map(re.escape, self.formats))})(\?|$)", re.IGNORECASE),
            *compile_patterns(
                r"\.m3u8(\?|$)",
                r"\.mpd(\?|$)",
                r"https?://[^\s]*(?:audio|music|podcast|stream|media|cdn)[^\s]*\.[^\s]+(mp3|ogg|wav|m4a)",
                r"audio_only|audio-only|audioonly",
            ),
        )
        self.audio_metadata: Dict[str, Dict[str, Any]] = {}
        self.player_instances: Dict[str, str] = {}
        self.platforms: List[Dict[str, Any]] = []
        self.podcasts: List[Dict[str, Any]] = []
        self.audio_contexts: List[Dict[str, Any]] = []

    def is_media(self, url: Any) -> bool:
        if not url or not isinstance(url, str):
            return False
        return any(p.search(url) for p in self.signatures)

    def absorb_player_entry(self, entry: Dict[str, Any]) -> None:
        url = entry.get("url")
        if url and self.is_media(url):
            self.add_item(url, {"source": "player-api", "player": entry["player"]})
            self.player_instances[self.normalize_item(url)] = entry["player"]

    def absorb_instrumentation(self, data: Dict[str, Any]) -> None:
        super().absorb_instrumentation(data)
        if not self.options["scan_web_audio_api"]:
            return
        for created in data.get("audio") or []:
            src = created.get("src")
            if src and self.is_media(src):
                self.add_item(src, {"source": "web-audio-api"})
        self.audio_contexts.extend(data.get("contexts") or [])

    def capture_response(self, url: str, headers: Dict[str, str], status: int) -> Optional[Dict[str, Any]]:
        content_type = headers.get("content-type", "")
        if not any(t in content_type for t in AUDIO_CONTENT_TYPES):
            return None
        length = headers.get("content-length")
        metadata = {
            "source": "network-response",
            "contentType": content_type,
            "size": int(length) if length and length.isdigit() else None,
        }
        self.audio_metadata[url] = metadata
        return metadata

    # ───────── export ─────────

    def group(self, url: str) -> str:
        lower = url.lower()
        for fmt in ("mp3", "ogg", "wav", "flac", "m4a", "aac", "opus", "webm"):
            if f".{fmt}" in lower:
                return fmt
        if ".m3u8" in lower or ".mpd" in lower:
            return "streaming"
        if any(p in lower for p in AUDIO_PLATFORMS[:4]):
            return "embedded"
        return "other"

    def export_results(self) -> Dict[str, Any]:
        results = super().export_results()
        grouped: Dict[str, List[str]] = {
            k: [] for k in ("mp3", "ogg", "wav", "flac", "m4a", "aac", "opus", "webm", "streaming", "embedded", "other")
        }
        for url in self.items:
            grouped[self.group(url)].append(url)

        results.update({
            "grouped": grouped,
            "metadata": dict(self.audio_metadata),
            "players": dict(self.player_instances),
            "platforms": list(self.platforms),
            "podcasts": list(self.podcasts),
            "audioContexts": list(self.audio_contexts),
        })
        return results
