"""Player detector registry.

Each detector is a small capability: ``detect(page)`` says whether the
player's runtime is present, ``probe(page)`` yields the media references it
exposes. Supporting another player means registering one more detector.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional

from .base import _log

@dataclass(frozen=True)
class PlayerDetector:
    name: str
    detect_js: str
    probe_js: str
    media: str = "video"

    async def detect(self, page) -> bool:
        return bool(await page.evaluate(self.detect_js))

    async def probe(self, page) -> AsyncIterator[Dict[str, Any]]:
        entries = await page.evaluate(self.probe_js)
        for entry in entries or []:
            if isinstance(entry, dict):
                yield {"player": self.name, **entry}


class PlayerRegistry:
    def __init__(self) -> None:
        self._detectors: Dict[str, PlayerDetector] = {}

    def register(self, detector: PlayerDetector) -> PlayerDetector:
        self._detectors[detector.name] = detector
        return detector

    def unregister(self, name: str) -> Optional[PlayerDetector]:
        return self._detectors.pop(name, None)

    def get(self, name: str) -> Optional[PlayerDetector]:
        return self._detectors.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._detectors)

    def __iter__(self) -> Iterator[PlayerDetector]:
        return iter(list(self._detectors.values()))

    def __len__(self) -> int:
        return len(self._detectors)


# ───────── video players ─────────

VIDEO_PLAYERS = PlayerRegistry()

VIDEO_PLAYERS.register(PlayerDetector(
    name="videojs",
    detect_js="() => !!window.videojs",
    probe_js="""() => {
      const out = [];
      const players = window.videojs.players || (window.videojs.getPlayers && window.videojs.getPlayers()) || {};
      Object.values(players).forEach(player => {
        if (!player) return;
        try {
          const current = player.currentSrc && player.currentSrc();
          if (current) {
            const levels = player.qualityLevels ? Array.from(player.qualityLevels() || []) : [];
            out.push({
              url: current,
              duration: player.duration && player.duration(),
              qualities: levels.map(q => ({ height: q.height, width: q.width, bitrate: q.bitrate })),
            });
          }
          (player.currentSources ? player.currentSources() : []).forEach(s => {
            if (s.src) out.push({ url: s.src, type: s.type });
          });
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="hlsjs",
    detect_js="() => !!(window.Hls && window.Hls.DefaultConfig)",
    probe_js="""() => {
      const out = [];
      document.querySelectorAll('video').forEach(video => {
        const hls = video.hls;
        if (!hls) return;
        try {
          if (hls.url) out.push({ url: hls.url, type: 'hls' });
          (hls.levels || []).forEach((level, idx) => {
            const url = Array.isArray(level.url) ? level.url[0] : level.url;
            if (url) out.push({
              url,
              quality: { height: level.height, width: level.width, bitrate: level.bitrate },
              levelIndex: idx,
            });
          });
          (hls.audioTracks || []).forEach(track => {
            if (track.url) out.push({ url: track.url, type: 'audio-track', name: track.name });
          });
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="dashjs",
    detect_js="() => !!window.dashjs",
    probe_js="""() => {
      const out = [];
      const mp = window.dashjs.MediaPlayer;
      const players = (mp && mp.getAllInstances && mp.getAllInstances()) || [];
      players.forEach(player => {
        try {
          const source = player.getSource && player.getSource();
          if (source) out.push({ url: String(source), type: 'dash' });
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="shaka",
    detect_js="() => !!window.shaka",
    probe_js="""() => {
      const out = [];
      document.querySelectorAll('video').forEach(video => {
        const player = video.player;
        if (!player || !player.getManifestUri) return;
        try {
          const uri = player.getManifestUri();
          if (!uri) return;
          const tracks = player.getVariantTracks ? player.getVariantTracks() : [];
          if (!tracks.length) out.push({ url: uri });
          tracks.forEach(track => out.push({
            url: uri,
            quality: { height: track.height, width: track.width, bitrate: track.bandwidth },
            language: track.language,
          }));
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="jwplayer",
    detect_js="() => !!window.jwplayer",
    probe_js="""() => {
      const out = [];
      let instances = [];
      try {
        instances = (window.jwplayer.api && window.jwplayer.api.instances) ||
          (typeof window.jwplayer === 'function' ? [window.jwplayer()] : []);
      } catch (e) {}
      instances.forEach(instance => {
        try {
          const levels = (instance.getQualityLevels && instance.getQualityLevels()) || [];
          (instance.getPlaylist ? instance.getPlaylist() || [] : []).forEach(item => {
            if (item.file) out.push({ url: item.file });
            (item.sources || []).forEach(source => {
              if (source.file) out.push({
                url: source.file,
                label: source.label,
                type: source.type,
                quality: levels.filter(l => l.label === source.label).map(l => ({ label: l.label, bitrate: l.bitrate }))[0],
              });
            });
            (item.tracks || []).forEach(track => {
              if (track.file) out.push({ url: track.file, type: 'caption', label: track.label });
            });
          });
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="plyr",
    detect_js="() => !!window.Plyr",
    probe_js="""() => {
      const out = [];
      document.querySelectorAll('.plyr').forEach(el => {
        try {
          const video = el.querySelector('video');
          if (!video) return;
          if (video.src) out.push({ url: video.src });
          const sources = video.plyr && video.plyr.source && video.plyr.source.sources;
          (sources || []).forEach(s => {
            if (s.src) out.push({ url: s.src, quality: s.size ? { height: s.size } : undefined });
          });
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="flowplayer",
    detect_js="() => !!window.flowplayer",
    probe_js="""() => {
      const out = [];
      (window.flowplayer.instances || []).forEach(fp => {
        try {
          const src = fp.video && fp.video.src;
          if (src) out.push({ url: src });
        } catch (e) {}
      });
      return out;
    }""",
))

VIDEO_PLAYERS.register(PlayerDetector(
    name="brightcove",
    detect_js="() => !!(window.bc || document.querySelector('.video-js[data-video-id], .video-js[data-account]'))",
    probe_js="""() => {
      const out = [];
      document.querySelectorAll('.video-js').forEach(el => {
        const data = el.dataset || {};
        if (data.videoId || data.playerId) {
          out.push({ videoId: data.videoId, accountId: data.account, playerId: data.playerId });
        }
      });
      return out;
    }""",
))

for _name in ("player", "videoPlayer", "mediaPlayer", "streamPlayer"):
    VIDEO_PLAYERS.register(PlayerDetector(
        name=_name,
        detect_js=f"() => !!window['{_name}']",
        probe_js=f"""() => {{
          const p = window['{_name}'];
          const out = [];
          ['src', 'currentSrc', 'source'].forEach(key => {{
            try {{
              if (typeof p[key] === 'string' && p[key]) out.push({{ url: p[key] }});
            }} catch (e) {{}}
          }});
          return out;
        }}""",
    ))


# ───────── audio players ─────────

AUDIO_PLAYERS = PlayerRegistry()

AUDIO_PLAYERS.register(PlayerDetector(
    name="howler",
    media="audio",
    detect_js="() => !!(window.Howl && window.Howler)",
    probe_js="""() => {
      const out = [];
      (window.Howler._howls || []).forEach(howl => {
        const src = howl._src;
        (Array.isArray(src) ? src : [src]).forEach(url => { if (url) out.push({ url }); });
      });
      return out;
    }""",
))

AUDIO_PLAYERS.register(PlayerDetector(
    name="amplitude",
    media="audio",
    detect_js="() => !!window.Amplitude",
    probe_js="""() => {
      const songs = (window.Amplitude.getSongs && window.Amplitude.getSongs()) || [];
      return songs.filter(s => s && s.url).map(s => ({ url: s.url, name: s.name, artist: s.artist }));
    }""",
))

AUDIO_PLAYERS.register(PlayerDetector(
    name="plyr-audio",
    media="audio",
    detect_js="() => !!window.Plyr",
    probe_js="""() => {
      const out = [];
      document.querySelectorAll('.plyr--audio').forEach(el => {
        const audio = el.querySelector('audio');
        if (audio && audio.src) out.push({ url: audio.src });
      });
      return out;
    }""",
))

AUDIO_PLAYERS.register(PlayerDetector(
    name="mediaelement",
    media="audio",
    detect_js="() => !!window.mejs",
    probe_js="""() => {
      const out = [];
      Object.values(window.mejs.players || {}).forEach(player => {
        const src = player.media && player.media.src;
        if (src) out.push({ url: src });
      });
      return out;
    }""",
))

AUDIO_PLAYERS.register(PlayerDetector(
    name="jplayer",
    media="audio",
    detect_js="() => !!(window.jQuery && window.jQuery.jPlayer)",
    probe_js="""() => {
      const out = [];
      document.querySelectorAll('.jp-jplayer, .jp-audio').forEach(el => {
        try {
          const data = window.jQuery(el).data('jPlayer');
          const src = data && data.status && data.status.src;
          if (src) out.push({ url: src });
        } catch (e) {}
      });
      return out;
    }""",
))

for _name in ("audioPlayer", "musicPlayer", "podcastPlayer", "soundPlayer"):
    AUDIO_PLAYERS.register(PlayerDetector(
        name=_name,
        media="audio",
        detect_js=f"() => !!window['{_name}']",
        probe_js=f"""() => {{
          const p = window['{_name}'];
          const out = [];
          ['src', 'currentSrc', '_src'].forEach(key => {{
            try {{
              if (typeof p[key] === 'string' && p[key]) out.push({{ url: p[key] }});
            }} catch (e) {{}}
          }});
          return out;
        }}""",
    ))


# ───────── shared pass ─────────

def select_quality(entries: List[Dict[str, Any]], preference: str) -> List[Dict[str, Any]]:
    """Keep one rendition per player for ``highest``/``lowest``; everything for ``all``."""
    if preference not in ("highest", "lowest"):
        return list(entries)

    ranked: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        bitrate = (entry.get("quality") or {}).get("bitrate")
        if not isinstance(bitrate, (int, float)):
            continue
        best = ranked.get(entry["player"])
        current = best["quality"]["bitrate"] if best else None
        if current is None or (bitrate > current if preference == "highest" else bitrate < current):
            ranked[entry["player"]] = entry

    keep = {id(e) for e in ranked.values()}
    return [
        e for e in entries
        if id(e) in keep or not isinstance((e.get("quality") or {}).get("bitrate"), (int, float))
    ]


async def probe_players(session, state) -> None:
    """Run every registered detector of ``state.players`` against the page."""
    page = session.page
    entries: List[Dict[str, Any]] = []
    for detector in state.players:
        try:
            if not await detector.detect(page):
                continue
            async for entry in detector.probe(page):
                entries.append(entry)
        except Exception as e:
            _log(state.logger, "debug", f"[{state.name}] Player {detector.name} probe failed: {e}")

    for entry in select_quality(entries, state.options.get("quality_preference", "all")):
        state.absorb_player_entry(entry)
