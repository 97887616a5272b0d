"""Video, stream manifest and caption discovery."""

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
from .players import VIDEO_PLAYERS, probe_players

VIDEO_SIGNATURES = compile_patterns(
    r"https?://[^\s]+\.(m3u8|mpd|ism(?:/Manifest)?)(\?[^\s]*)?",
    r"https?://[^\s]+\.(mp4|webm|mkv|ts|mov|avi|flv|wmv|m4v|3gp)(\?[^\s]*)?",
    r"blob:https?://[^\s]+",
    r"data:(?:video|application).*?base64,[^\s]+",
    r"https?://[^\s]*(?:cdn|stream|video|media|vod|hls|dash)[^\s]*/[^\s]+",
    r"https?://[^\s]+(?:segment|chunk|frag)[^\s]+\.(ts|m4s|mp4)",
)

SUBTITLE_RE = re.compile(r"\.(vtt|srt|sub|ass|ttml|dfxp)", re.IGNORECASE)

VIDEO_CONTENT_TYPES = (
    "video/",
    "application/dash+xml",
    "application/vnd.apple.mpegurl",
    "application/x-mpegurl",
    "video/mp2t",
)

# arg: "document" scans the document, "shadow" only its shadow roots, "all" both
VIDEO_DOM_JS = """
(scope) => {
  const results = [];
  const scanNode = (root) => {
    root.querySelectorAll('video').forEach(video => {
      const src = video.src || video.currentSrc;
      if (src) results.push({
        url: src,
        type: 'video-element',
        poster: video.poster,
        duration: video.duration,
        width: video.videoWidth || video.width,
        height: video.videoHeight || video.height,
        autoplay: video.autoplay,
        preload: video.preload,
      });
      Object.entries(video.dataset).forEach(([key, value]) => {
        if (value && /\\.mp4|\\.m3u8|\\.mpd|http/.test(value)) {
          results.push({ url: value, type: 'video-data-' + key, poster: video.poster });
        }
      });
      video.querySelectorAll('source').forEach(source => {
        if (source.src) results.push({
          url: source.src,
          type: 'source-element',
          mimeType: source.type,
          media: source.media,
          poster: video.poster,
        });
      });
      video.querySelectorAll('track').forEach(track => {
        if (track.src) results.push({
          url: track.src,
          type: 'track',
          kind: track.kind,
          label: track.label,
          srclang: track.srclang,
          isDefault: track.default,
        });
      });
    });
    root.querySelectorAll('[data-video], [data-video-url], [data-video-src], [data-stream], [data-hls], [data-dash]').forEach(el => {
      Object.entries(el.dataset).forEach(([key, value]) => {
        if (value && /https?:\\/\\//.test(value)) results.push({ url: value, type: 'data-attribute', attribute: key });
      });
    });
    root.querySelectorAll('embed[src], object[data]').forEach(el => {
      const src = el.src || el.data;
      if (src) results.push({ url: src, type: 'embed-object' });
    });
  };
  if (scope !== 'shadow') scanNode(document);
  if (scope !== 'document') {
    document.querySelectorAll('*').forEach(el => { if (el.shadowRoot) scanNode(el.shadowRoot); });
  }
  return results;
}
"""

PLATFORMS_JS = """
() => {
  const found = [];
  const each = (selector, fn) => document.querySelectorAll(selector).forEach(fn);
  each('iframe[src*="youtube.com"], iframe[src*="youtu.be"]', iframe => {
    const m = iframe.src.match(/(?:youtube\\.com\\/embed\\/|youtu\\.be\\/)([^?&]+)/);
    if (m) found.push({ platform: 'youtube', videoId: m[1], embedUrl: iframe.src, width: iframe.width, height: iframe.height });
  });
  if (window.YT && window.YT.get) {
    try {
      Object.values(window.YT.get() || {}).forEach(player => {
        const data = player.getVideoData && player.getVideoData();
        if (data && data.video_id) found.push({ platform: 'youtube', videoId: data.video_id, title: data.title });
      });
    } catch (e) {}
  }
  each('iframe[src*="player.vimeo.com"]', iframe => {
    const m = iframe.src.match(/player\\.vimeo\\.com\\/video\\/(\\d+)/);
    if (m) found.push({ platform: 'vimeo', videoId: m[1], embedUrl: iframe.src });
  });
  each('[class*="wistia"], iframe[src*="wistia"]', el => {
    const cls = typeof el.className === 'string' ? el.className : '';
    const m = cls.match(/wistia_embed wistia_async_(\\w+)/) || (el.src || '').match(/wistia\\.(?:com|net)\\/embed\\/iframe\\/(\\w+)/);
    if (m) found.push({
      platform: 'wistia',
      videoId: m[1],
      embedUrl: el.tagName === 'IFRAME' ? el.src : null,
      type: el.tagName === 'IFRAME' ? 'iframe' : 'inline',
    });
  });
  each('iframe[src*="dailymotion.com"]', iframe => {
    const m = iframe.src.match(/dailymotion\\.com\\/embed\\/video\\/(\\w+)/);
    if (m) found.push({ platform: 'dailymotion', videoId: m[1], embedUrl: iframe.src });
  });
  each('iframe[src*="twitch.tv"]', iframe => {
    const m = iframe.src.match(/[?&](?:video|channel)=([^&]+)/);
    found.push({ platform: 'twitch', videoId: m ? m[1] : null, embedUrl: iframe.src });
  });
  each('iframe[src*="facebook.com/plugins/video"]', iframe => {
    found.push({ platform: 'facebook', embedUrl: iframe.src });
  });
  return found;
}
"""

SUBTITLES_JS = """
() => {
  const tracks = [];
  document.querySelectorAll('video track').forEach(track => {
    if (track.src) tracks.push({
      url: track.src,
      kind: track.kind || 'subtitles',
      label: track.label,
      srclang: track.srclang,
      default: track.default,
      source: 'track-element',
    });
  });
  document.querySelectorAll('[data-captions], [data-subtitles], [data-tracks]').forEach(el => {
    const raw = el.dataset.captions || el.dataset.subtitles || el.dataset.tracks;
    if (!raw) return;
    try {
      const parsed = JSON.parse(raw);
      (Array.isArray(parsed) ? parsed : [parsed]).forEach(item => {
        const url = item && (item.src || item.file || item.url);
        if (url) tracks.push({ url, kind: item.kind || 'subtitles', label: item.label, srclang: item.language || item.srclang, source: 'data-attribute' });
      });
    } catch (e) {
      if (/https?:\\/\\//.test(raw)) tracks.push({ url: raw, kind: 'subtitles', source: 'data-attribute' });
    }
  });
  document.querySelectorAll('a[href*=".vtt"], a[href*=".srt"], a[href*=".sub"]').forEach(a => {
    tracks.push({ url: a.href, kind: 'subtitles', label: (a.textContent || '').trim(), source: 'link' });
  });
  return tracks;
}
"""

AUDIO_TRACKS_JS = """
() => {
  const tracks = [];
  document.querySelectorAll('video').forEach(video => {
    const list = video.audioTracks;
    if (!list || !list.length) return;
    for (let i = 0; i < list.length; i++) {
      const t = list[i];
      tracks.push({ id: t.id, kind: t.kind, label: t.label, language: t.language, enabled: t.enabled });
    }
  });
  return tracks;
}
"""

THUMBNAILS_JS = """
() => {
  const posters = new Set();
  document.querySelectorAll('video[poster]').forEach(v => { if (v.poster) posters.add(v.poster); });
  document.querySelectorAll('[data-poster], [data-thumbnail], [data-preview]').forEach(el => {
    const url = el.dataset.poster || el.dataset.thumbnail || el.dataset.preview;
    if (url && /^https?:\\/\\//.test(url)) posters.add(url);
  });
  const og = document.querySelector('meta[property="og:video:thumbnail"]');
  if (og && og.content) posters.add(og.content);
  const tw = document.querySelector('meta[name="twitter:image"]');
  if (tw && tw.content) posters.add(tw.content);
  return Array.from(posters);
}
"""

EMBED_HOSTS = ("youtube", "vimeo", "wistia", "dailymotion")


# ───────── passes ─────────

async def scan_dom(session, state: "VideoExtractor") -> None:
    state.absorb_dom(await session.page.evaluate(VIDEO_DOM_JS, "document"), source="dom")


async def deep_scan(session, state: "VideoExtractor") -> None:
    page = session.page
    if state.options["scan_shadow_dom"]:
        state.absorb_dom(await page.evaluate(VIDEO_DOM_JS, "shadow"), source="shadow-dom")

    for frame in child_frames(page):
        try:
            records = await frame.evaluate(VIDEO_DOM_JS, "all" if state.options["scan_shadow_dom"] else "document")
        except Exception as e:
            _log(state.logger, "debug", f"[{state.name}] Frame scan failed for {frame.url}: {e}")
            continue
        state.absorb_dom(records, source="iframe", frame=frame.url)


async def scan_platforms(session, state: "VideoExtractor") -> None:
    for data in await session.page.evaluate(PLATFORMS_JS) or []:
        platform, video_id = data.get("platform"), data.get("videoId")
        embed_url = data.get("embedUrl")
        if not embed_url and not video_id:
            continue
        url = embed_url or f"https://{platform}.com/video/{video_id}"
        state.add_item(url, {"source": "platform", "platform": platform, "metadata": data})
        state.platforms[f"{platform}-{video_id}"] = data


async def scan_subtitles(session, state: "VideoExtractor") -> None:
    for track in await session.page.evaluate(SUBTITLES_JS) or []:
        if track.get("url"):
            state.add_subtitle(track)
            state.add_item(track["url"], {"source": "subtitle", "type": "caption", "metadata": track})


async def scan_audio_tracks(session, state: "VideoExtractor") -> None:
    state.audio_tracks = list(await session.page.evaluate(AUDIO_TRACKS_JS) or [])


async def scan_thumbnails(session, state: "VideoExtractor") -> None:
    for url in await session.page.evaluate(THUMBNAILS_JS) or []:
        state.thumbnails.setdefault(url, None)


class VideoExtractor(PassExtractor):
    """Finds video files, HLS/DASH manifests, embeds, captions and posters."""

    name = "video"
    SIGNATURES = VIDEO_SIGNATURES
    TRACKING = ("utm_source", "utm_medium", "utm_campaign", "ref", "fbclid", "gclid")
    EXTRA_BOUNDS = {"observation_window": (1000, 30000, 5000)}
    CHOICES = {"quality_preference": (("highest", "lowest", "all"), "all")}
    DEFAULTS = {
        "scan_shadow_dom": True,
        "monitor_network": True,
        "extract_subtitles": True,
        "extract_thumbnails": True,
        "extract_audio_tracks": True,
    }

    PASSES = (
        PassDescriptor("dom", "dom", scan_dom),
        PassDescriptor("observe", "wait", observe),
        PassDescriptor("deep-scan", "dom", deep_scan),
        PassDescriptor("players", "player", probe_players),
        PassDescriptor("platforms", "platform", scan_platforms),
        PassDescriptor("subtitles", "dom", scan_subtitles, option="extract_subtitles"),
        PassDescriptor("audio-tracks", "dom", scan_audio_tracks, option="extract_audio_tracks"),
        PassDescriptor("thumbnails", "dom", scan_thumbnails, option="extract_thumbnails"),
        PassDescriptor("instrumentation", "network", drain_instrumentation),
        PassDescriptor("network", "network", drain_network),
    )

    players = VIDEO_PLAYERS

    def __init__(self, session, options: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(session, options, **kwargs)
        self.video_metadata: Dict[str, Dict[str, Any]] = {}
        self.subtitle_tracks: List[Dict[str, Any]] = []
        self.audio_tracks: List[Dict[str, Any]] = []
        self.thumbnails: Dict[str, None] = {}
        self.platforms: Dict[str, Dict[str, Any]] = {}

    # ───────── absorption ─────────

    def add_subtitle(self, track: Dict[str, Any]) -> bool:
        url = self.normalize_item(track["url"])
        if any(t["url"] == url for t in self.subtitle_tracks):
            return False
        self.subtitle_tracks.append({**track, "url": url})
        return True

    def absorb_dom(self, records: Optional[List[Dict[str, Any]]], source: str, frame: Optional[str] = None) -> None:
        for data in records or []:
            url = data.get("url")
            if not url or not (self.is_media(url) or data.get("type") == "track"):
                continue
            metadata = {"source": source, "extractionType": data.get("type"), "metadata": data}
            if frame:
                metadata["frame"] = frame
            self.add_item(url, metadata)
            if data.get("poster"):
                self.thumbnails.setdefault(data["poster"], None)
            self.video_metadata.setdefault(self.normalize_item(url), data)

    def absorb_player_entry(self, entry: Dict[str, Any]) -> None:
        url = entry.get("url")
        if url and self.is_media(url):
            self.add_item(url, {"source": "player-api", "player": entry["player"], "quality": entry.get("quality")})
        if entry.get("videoId") or entry.get("accountId"):
            self.platforms[entry["player"]] = entry

    def capture_request(self, url: str, resource_type: str) -> Optional[Dict[str, Any]]:
        if SUBTITLE_RE.search(url):
            match = re.search(r"\.(\w+)(?:\?|#|$)", url)
            self.add_subtitle({"url": url, "kind": "subtitles", "format": match.group(1) if match else None,
                               "source": "network"})
        return super().capture_request(url, resource_type)

    def capture_response(self, url: str, headers: Dict[str, str], status: int) -> Optional[Dict[str, Any]]:
        content_type = headers.get("content-type", "")
        if not any(t in content_type for t in VIDEO_CONTENT_TYPES):
            return None
        length = headers.get("content-length")
        metadata = {
            "source": "network-response",
            "contentType": content_type,
            "size": int(length) if length and length.isdigit() else None,
            "status": status,
        }
        self.video_metadata[url] = metadata
        return metadata

    # ───────── export ─────────

    @staticmethod
    def group(url: str) -> str:
        lower = url.lower()
        if ".m3u8" in lower:
            return "hls"
        if ".mpd" in lower:
            return "dash"
        if re.search(r"\.(mp4|webm|mkv|mov|avi|flv)", lower):
            return "direct"
        if lower.startswith("blob:"):
            return "blob"
        if any(host in lower for host in EMBED_HOSTS):
            return "embedded"
        return "other"

    def export_results(self) -> Dict[str, Any]:
        results = super().export_results()
        grouped: Dict[str, List[str]] = {k: [] for k in ("hls", "dash", "direct", "blob", "embedded", "other")}
        for url in self.items:
            grouped[self.group(url)].append(url)

        results.update({
            "grouped": grouped,
            "metadata": dict(self.video_metadata),
            "subtitles": list(self.subtitle_tracks),
            "audioTracks": list(self.audio_tracks),
            "thumbnails": list(self.thumbnails),
            "platforms": dict(self.platforms),
        })
        return results
