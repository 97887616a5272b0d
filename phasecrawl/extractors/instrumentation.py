"""Page-side instrumentation and driver-side network capture.

``INJECTION_BUNDLE`` is installed before page scripts run (and evaluated once
more in documents that were already loaded). It exposes one collector object,
``window.__phasecrawl``, which records:

- ``fetch`` calls and ``XMLHttpRequest.open`` targets,
- ``new Audio(src)`` constructions and ``AudioContext`` creations,
- ``IMG``/``VIDEO``/``AUDIO``/``SOURCE`` elements inserted into the document.

The wrapped functions forward their arguments unmodified. ``drain()`` returns
and clears the buffers; ``restore()`` reinstates the originals, disconnects
the observer and removes the collector.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("phasecrawl.instrumentation")

INJECTION_BUNDLE = """
(() => {
  if (window.__phasecrawl) return;

  const buffers = { requests: [], audio: [], contexts: [], mutations: [] };
  const originals = {
    fetch: window.fetch,
    xhrOpen: window.XMLHttpRequest && window.XMLHttpRequest.prototype.open,
    Audio: window.Audio,
    AudioContext: window.AudioContext,
    webkitAudioContext: window.webkitAudioContext,
  };
  const toUrl = (input) => {
    try {
      if (typeof input === 'string') return new URL(input, location.href).href;
      if (input && input.url) return input.url;
      return String(input);
    } catch (e) {
      return String(input);
    }
  };

  if (originals.fetch) {
    window.fetch = new Proxy(originals.fetch, {
      apply(target, thisArg, args) {
        buffers.requests.push({ url: toUrl(args[0]), via: 'fetch', timestamp: Date.now() });
        return Reflect.apply(target, thisArg, args);
      }
    });
  }

  if (originals.xhrOpen) {
    window.XMLHttpRequest.prototype.open = new Proxy(originals.xhrOpen, {
      apply(target, thisArg, args) {
        buffers.requests.push({ url: toUrl(args[1]), via: 'xhr', timestamp: Date.now() });
        return Reflect.apply(target, thisArg, args);
      }
    });
  }

  if (originals.Audio) {
    window.Audio = new Proxy(originals.Audio, {
      construct(target, args, newTarget) {
        buffers.audio.push({ src: args[0] ? toUrl(args[0]) : null, timestamp: Date.now() });
        return Reflect.construct(target, args, newTarget);
      }
    });
  }

  const wrapContext = (Original) => new Proxy(Original, {
    construct(target, args, newTarget) {
      const ctx = Reflect.construct(target, args, newTarget);
      buffers.contexts.push({ sampleRate: ctx.sampleRate, state: ctx.state, timestamp: Date.now() });
      return ctx;
    }
  });
  if (originals.AudioContext) window.AudioContext = wrapContext(originals.AudioContext);
  if (originals.webkitAudioContext) window.webkitAudioContext = wrapContext(originals.webkitAudioContext);

  const TAGS = new Set(['IMG', 'VIDEO', 'AUDIO', 'SOURCE']);
  const record = (el) => {
    const src = el.currentSrc || el.src || el.getAttribute('src');
    if (src) buffers.mutations.push({ tag: el.tagName, src, timestamp: Date.now() });
  };
  const observer = new MutationObserver((mutations) => {
    mutations.forEach((mutation) => {
      if (mutation.type === 'attributes' && TAGS.has(mutation.target.tagName)) {
        record(mutation.target);
        return;
      }
      mutation.addedNodes.forEach((node) => {
        if (node.nodeType !== 1) return;
        if (TAGS.has(node.tagName)) record(node);
        if (node.querySelectorAll) node.querySelectorAll('img, video, audio, source').forEach(record);
      });
    });
  });
  observer.observe(document, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: ['src', 'data-src', 'srcset', 'poster'],
  });

  window.__phasecrawl = {
    version: 1,
    drain() {
      const snapshot = {
        requests: buffers.requests.splice(0),
        audio: buffers.audio.splice(0),
        contexts: buffers.contexts.splice(0),
        mutations: buffers.mutations.splice(0),
      };
      return snapshot;
    },
    restore() {
      observer.disconnect();
      if (originals.fetch) window.fetch = originals.fetch;
      if (originals.xhrOpen) window.XMLHttpRequest.prototype.open = originals.xhrOpen;
      if (originals.Audio) window.Audio = originals.Audio;
      if (originals.AudioContext) window.AudioContext = originals.AudioContext;
      if (originals.webkitAudioContext) window.webkitAudioContext = originals.webkitAudioContext;
      delete window.__phasecrawl;
    },
  };
})()
"""

DRAIN_JS = "() => window.__phasecrawl ? window.__phasecrawl.drain() : null"

RESTORE_JS = "() => { if (window.__phasecrawl) window.__phasecrawl.restore(); }"


class NetworkCapture:
    """Forwards page request/response events to plain callbacks.

    Listeners only observe; requests are never intercepted or held, so no
    continuation is needed and other route handlers are unaffected.
    """

    def __init__(
        self,
        on_request: Callable[[str, str], Any],
        on_response: Optional[Callable[[str, Dict[str, str], int], Any]] = None,
    ):
        self._on_request = on_request
        self._on_response = on_response
        self.page = None

    def attach(self, page) -> None:
        self.page = page
        page.on("request", self._handle_request)
        if self._on_response is not None:
            page.on("response", self._handle_response)

    def detach(self) -> None:
        if self.page is None:
            return
        self.page.remove_listener("request", self._handle_request)
        if self._on_response is not None:
            self.page.remove_listener("response", self._handle_response)
        self.page = None

    def _handle_request(self, request) -> None:
        try:
            self._on_request(request.url, request.resource_type)
        except Exception as e:
            logger.debug(f"Request handler error: {e}")

    def _handle_response(self, response) -> None:
        try:
            self._on_response(response.url, dict(response.headers or {}), response.status)
        except Exception as e:
            logger.debug(f"Response handler error: {e}")
