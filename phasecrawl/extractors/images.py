"""Image discovery on dynamic pages.

Scrolls the page in steps, nudging lazy loaders on every step, until the set
of found images stops growing. Responsive sources, inline SVG, canvas
snapshots and paginated galleries are picked up by later passes, and every
item is bucketed into a category at the end.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..mathcore import success_rate
from .base import (
    PassDescriptor,
    PassExtractor,
    _log,
    compile_patterns,
    drain_instrumentation,
    drain_network,
)

IMAGE_SIGNATURES = compile_patterns(
    r"(https?://[^\s\"'<>]+\.(jpg|jpeg|png|webp|gif|svg|bmp|avif|ico|tiff?))",
    r"(https?://[^\s\"'<>]+/[^\s\"'<>]+\.(jpg|jpeg|png|webp|gif|svg|bmp|avif|ico|tiff?))",
    r"data:image/(jpeg|png|webp|gif|svg\+xml|avif);base64,[^\s\"'<>]+",
)

LAZY_LOAD_SELECTORS = [
    'img[data-src]', 'img[data-srcset]', 'img[data-lazy]',
    'img[data-original]', 'img[loading="lazy"]', 'img[data-lazy-src]',
    'img[data-ll-status]', 'img.lazyload', 'img.lazy',
    'div[data-bg]', 'div[data-background]', 'div[data-background-image]',
    '[data-image]', '[data-img]', '[data-thumb]',
]

PAGINATION_SELECTORS = [
    'a.next', 'button.next', 'button.load-more',
    'a[rel="next"]', '.pagination .next', '.pager .next',
    '.infinite-scroll-trigger', '[data-testid="load-more"]',
    '.show-more', '.view-more', '[aria-label*="next"]',
]

CATEGORIES = ("hero", "gallery", "thumbnails", "icons", "backgrounds", "social", "other")
FORMATS = ("jpg", "png", "webp", "gif", "svg", "avif", "ico", "dataUrl", "other")

SOCIAL_IMAGES_JS = """
() => {
  const images = [];
  document.querySelectorAll('meta[property="og:image"], meta[property="og:image:url"]').forEach(meta => {
    if (!meta.content) return;
    const w = document.querySelector('meta[property="og:image:width"]');
    const h = document.querySelector('meta[property="og:image:height"]');
    images.push({ url: meta.content, type: 'opengraph', width: w && w.content, height: h && h.content });
  });
  document.querySelectorAll('meta[name="twitter:image"], meta[name="twitter:image:src"]').forEach(meta => {
    if (meta.content) images.push({ url: meta.content, type: 'twitter' });
  });
  document.querySelectorAll('link[rel*="icon"]').forEach(link => {
    if (link.href) images.push({ url: link.href, type: link.rel === 'apple-touch-icon' ? 'apple-touch-icon' : 'favicon', sizes: link.sizes && link.sizes.value });
  });
  document.querySelectorAll('script[type="application/ld+json"]').forEach(script => {
    let data;
    try { data = JSON.parse(script.textContent); } catch (e) { return; }
    const walk = (obj) => {
      if (typeof obj !== 'object' || obj === null) return;
      if (obj.image) {
        (Array.isArray(obj.image) ? obj.image : [obj.image]).forEach(img => {
          const url = typeof img === 'string' ? img : img && img.url;
          if (url) images.push({ url, type: 'schema-org' });
        });
      }
      if (obj.logo) {
        const url = typeof obj.logo === 'string' ? obj.logo : obj.logo.url;
        if (url) images.push({ url, type: 'logo' });
      }
      Object.values(obj).forEach(walk);
    };
    walk(data);
  });
  return images;
}
"""

CURRENT_VIEW_JS = """
(selectors) => {
  const results = [];
  const imageData = (img) => {
    const rect = img.getBoundingClientRect();
    return {
      src: img.currentSrc || img.src,
      alt: img.alt || '',
      title: img.title || '',
      naturalWidth: img.naturalWidth,
      naturalHeight: img.naturalHeight,
      displayWidth: Math.round(rect.width),
      displayHeight: Math.round(rect.height),
      isLazy: img.loading === 'lazy' || img.classList.contains('lazy') || img.classList.contains('lazyload'),
      className: typeof img.className === 'string' ? img.className : '',
    };
  };
  document.querySelectorAll('img').forEach(img => {
    const data = imageData(img);
    if (img.src) results.push({ ...data, url: img.src, source: 'img-src' });
    if (img.currentSrc && img.currentSrc !== img.src) results.push({ ...data, url: img.currentSrc, source: 'img-current-src' });
    if (img.dataset.src) results.push({ ...data, url: img.dataset.src, source: 'img-data-src' });
    if (img.dataset.original) results.push({ ...data, url: img.dataset.original, source: 'img-data-original' });
    if (img.srcset) {
      img.srcset.split(',').forEach(entry => {
        const parts = entry.trim().split(/\\s+/);
        if (parts[0]) results.push({ ...data, url: parts[0], descriptor: parts[1] || '', source: 'srcset' });
      });
    }
  });
  document.querySelectorAll('picture source[srcset]').forEach(source => {
    source.srcset.split(',').forEach(entry => {
      const parts = entry.trim().split(/\\s+/);
      if (parts[0]) results.push({ url: parts[0], descriptor: parts[1] || '', media: source.media, type: source.type, source: 'picture-source' });
    });
  });
  selectors.forEach(selector => {
    document.querySelectorAll(selector).forEach(el => {
      Object.entries(el.dataset).forEach(([key, value]) => {
        if (value && /^https?:\\/\\//.test(value)) results.push({ url: value, dataAttribute: key, source: 'lazy-load-data' });
      });
    });
  });
  document.querySelectorAll('*').forEach(el => {
    const bg = window.getComputedStyle(el).backgroundImage;
    if (!bg || bg === 'none') return;
    for (const match of bg.matchAll(/url\\(["']?([^"')]+)["']?\\)/g)) {
      if (match[1] && !match[1].startsWith('data:image/svg')) {
        results.push({ url: match[1], source: 'background-image', element: el.tagName });
      }
    }
  });
  document.querySelectorAll('figure img').forEach(img => {
    const caption = img.closest('figure').querySelector('figcaption');
    if (img.src) results.push({ ...imageData(img), url: img.src, caption: caption ? caption.textContent.trim() : null, source: 'figure' });
  });
  return results;
}
"""

KINETIC_PULSE_JS = """
(selectors) => {
  selectors.forEach(selector => {
    document.querySelectorAll(selector).forEach(el => {
      el.scrollIntoView({ block: 'center', behavior: 'auto' });
      ['mouseenter', 'mouseover', 'touchstart', 'focus'].forEach(type => {
        el.dispatchEvent(new Event(type, { bubbles: true }));
      });
    });
  });
  window.dispatchEvent(new Event('scroll'));
  window.dispatchEvent(new Event('resize'));
}
"""

SCROLL_BY_JS = "(step) => window.scrollBy({ top: step, behavior: 'smooth' })"

RESPONSIVE_JS = """
() => {
  const results = [];
  document.querySelectorAll('picture').forEach(picture => {
    picture.querySelectorAll('source').forEach(source => {
      if (!source.srcset) return;
      source.srcset.split(',').forEach(entry => {
        const parts = entry.trim().split(/\\s+/);
        if (parts[0]) results.push({ url: parts[0], descriptor: parts[1] || '', media: source.media, type: source.type, source: 'picture-source' });
      });
    });
    const img = picture.querySelector('img');
    if (img && img.src) results.push({ url: img.src, alt: img.alt, source: 'picture-img' });
  });
  return results;
}
"""

SVG_JS = """
() => {
  const results = [];
  const serializer = new XMLSerializer();
  document.querySelectorAll('svg').forEach((svg, idx) => {
    const markup = serializer.serializeToString(svg);
    results.push({
      type: 'inline-svg',
      dataUrl: 'data:image/svg+xml;base64,' + btoa(unescape(encodeURIComponent(markup))),
      width: (svg.width && svg.width.baseVal && svg.width.baseVal.value) || svg.getAttribute('width'),
      height: (svg.height && svg.height.baseVal && svg.height.baseVal.value) || svg.getAttribute('height'),
      viewBox: svg.getAttribute('viewBox'),
      id: svg.id || 'svg-' + idx,
    });
  });
  document.querySelectorAll('use').forEach(use => {
    const href = use.getAttribute('href') || use.getAttribute('xlink:href');
    if (href && !href.startsWith('#')) results.push({ type: 'svg-use', url: new URL(href, location.href).href });
  });
  return results;
}
"""

CANVAS_JS = """
() => {
  const results = [];
  document.querySelectorAll('canvas').forEach((canvas, idx) => {
    if (canvas.width <= 10 || canvas.height <= 10) return;
    try {
      results.push({ type: 'canvas', dataUrl: canvas.toDataURL('image/png'), width: canvas.width, height: canvas.height, id: canvas.id || 'canvas-' + idx });
    } catch (e) {}
  });
  return results;
}
"""

CATEGORIZE_JS = """
() => {
  const src = (img) => img.currentSrc || img.src;
  const categories = { hero: [], gallery: [], thumbnails: [], icons: [] };
  document.querySelectorAll('header img, main img, .hero img, .banner img, [class*="hero"] img').forEach(img => {
    if (img.naturalWidth >= 600) categories.hero.push(src(img));
  });
  document.querySelectorAll('.gallery img, .carousel img, .slider img, .lightbox img, [class*="gallery"] img, [class*="carousel"] img, [class*="slider"] img').forEach(img => {
    categories.gallery.push(src(img));
  });
  document.querySelectorAll('.thumb img, .thumbnail img, [class*="thumb"] img').forEach(img => {
    categories.thumbnails.push(src(img));
  });
  document.querySelectorAll('img').forEach(img => {
    if (img.naturalWidth && img.naturalWidth <= 64 && img.naturalHeight <= 64) categories.icons.push(src(img));
  });
  return categories;
}
"""


# ───────── passes ─────────

async def social_images(session, state: "ImageExtractor") -> None:
    for data in await session.page.evaluate(SOCIAL_IMAGES_JS) or []:
        url = data.get("url")
        if not url:
            continue
        state.add_item(url, {"source": "social-meta", **data})
        state.categorize(url, "social")
        if data.get("width") and data.get("height"):
            state.image_metadata[state.normalize_item(url)] = {
                "width": data["width"], "height": data["height"], "type": data.get("type"),
            }


async def scroll_loop(session, state: "ImageExtractor") -> None:
    """Scan, pulse, scroll until growth stops after depth 3 or ``max_scrolls``."""
    page = session.page
    options = state.options
    previous = len(state.extracted)
    depth = 0

    while depth < options["max_scrolls"]:
        _log(state.logger, "debug", f"[images] Depth {depth}: extracting current view")
        await state.extract_current_view()
        await state.kinetic_pulse()
        await page.evaluate(SCROLL_BY_JS, options["scroll_step"])
        await state._sleep(0.1)

        current = len(state.extracted)
        if current - previous == 0 and depth > 3:
            _log(state.logger, "info", f"🧊 [images] Stabilized at depth {depth} with {current} items")
            break

        previous = current
        depth += 1
        await state._sleep(options["scroll_delay"] / 1000)


async def responsive_images(session, state: "ImageExtractor") -> None:
    for data in await session.page.evaluate(RESPONSIVE_JS) or []:
        if state.is_media(data.get("url")):
            state.add_item(data["url"], {"source": data.get("source"), "metadata": data})


async def svg_images(session, state: "ImageExtractor") -> None:
    for data in await session.page.evaluate(SVG_JS) or []:
        url = data.get("url") or data.get("dataUrl")
        if url:
            state.add_item(url, {"source": "svg", **{k: v for k, v in data.items() if k != "dataUrl"}})
            state.categorize(url, "icons")


async def canvas_images(session, state: "ImageExtractor") -> None:
    for data in await session.page.evaluate(CANVAS_JS) or []:
        if data.get("dataUrl"):
            state.add_item(data["dataUrl"], {"source": "canvas", "width": data.get("width"), "height": data.get("height")})


async def paginate(session, state: "ImageExtractor") -> None:
    """Click the first working "next"/"load more" control; repeat while it adds items."""
    page = session.page
    for _ in range(state.options["max_depth"]):
        added = None
        for selector in PAGINATION_SELECTORS:
            try:
                button = await page.query_selector(selector)
            except Exception:
                button = None
            if button is None:
                continue

            _log(state.logger, "info", f"➡️ [images] Found pagination: {selector}")
            try:
                before = len(state.extracted)
                await button.click()
                await state._sleep(state.options["stabilization_delay"] / 1000)
                await state.extract_current_view()
                added = len(state.extracted) - before
                _log(state.logger, "info", f"[images] Pagination added {added} new items")
                break
            except Exception as e:
                _log(state.logger, "debug", f"[images] Pagination click failed: {e}")
        if not added:
            return


async def categorize_images(session, state: "ImageExtractor") -> None:
    buckets = await session.page.evaluate(CATEGORIZE_JS) or {}
    for category, urls in buckets.items():
        for url in urls or []:
            if url and state.normalize_item(url) in state.extracted:
                state.categorize(url, category)

    for url, metadata in state.extracted.items():
        if metadata.get("source") == "background-image":
            state.categorize(url, "backgrounds")

    placed = {u for bucket in state.categories.values() for u in bucket}
    for url in state.items:
        if url not in placed:
            state.categories["other"].append(url)


class ImageExtractor(PassExtractor):
    name = "images"
    SIGNATURES = IMAGE_SIGNATURES
    EXTRA_BOUNDS = {
        "scroll_step": (100, 2000, 800),
        "scroll_delay": (100, 5000, 1000),
        "max_scrolls": (1, 200, 50),
        "stabilization_delay": (500, 10000, 2000),
    }
    DEFAULTS = {
        "min_width": 0,
        "min_height": 0,
        "exclude_icons": False,
        "extract_metadata": True,
        "extract_svg": True,
        "extract_canvas": True,
        "monitor_network": True,
    }

    PASSES = (
        PassDescriptor("social", "meta", social_images),
        PassDescriptor("scroll", "dom", scroll_loop),
        PassDescriptor("responsive", "dom", responsive_images),
        PassDescriptor("svg", "dom", svg_images, option="extract_svg"),
        PassDescriptor("canvas", "dom", canvas_images, option="extract_canvas"),
        PassDescriptor("pagination", "interaction", paginate),
        PassDescriptor("instrumentation", "network", drain_instrumentation),
        PassDescriptor("network", "network", drain_network),
        PassDescriptor("categorize", "classify", categorize_images),
    )

    def __init__(self, session, options: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(session, options, **kwargs)
        self.image_metadata: Dict[str, Dict[str, Any]] = {}
        self.categories: Dict[str, List[str]] = {c: [] for c in CATEGORIES}

    def categorize(self, url: str, category: str) -> None:
        normalized = self.normalize_item(url)
        bucket = self.categories.setdefault(category, [])
        if normalized not in bucket:
            bucket.append(normalized)

    def passes_size_filter(self, data: Dict[str, Any]) -> bool:
        if "naturalWidth" not in data:
            return True
        width = data.get("naturalWidth") or 0
        height = data.get("naturalHeight") or 0
        if self.options["exclude_icons"] and (width < 32 or height < 32):
            return False
        if self.options["min_width"] > 0 and width < self.options["min_width"]:
            return False
        if self.options["min_height"] > 0 and height < self.options["min_height"]:
            return False
        return True

    async def extract_current_view(self) -> None:
        records = await self.session.page.evaluate(CURRENT_VIEW_JS, LAZY_LOAD_SELECTORS) or []
        for data in records:
            url = data.get("url")
            if not url or not self.is_media(url) or not self.passes_size_filter(data):
                continue
            self.add_item(url, {"source": data.get("source"), "metadata": data})

            key = self.normalize_item(url)
            if self.options["extract_metadata"] and key not in self.image_metadata:
                self.image_metadata[key] = {
                    "alt": data.get("alt"),
                    "title": data.get("title"),
                    "width": data.get("naturalWidth"),
                    "height": data.get("naturalHeight"),
                    "displayWidth": data.get("displayWidth"),
                    "displayHeight": data.get("displayHeight"),
                    "caption": data.get("caption"),
                }

    async def kinetic_pulse(self) -> None:
        try:
            await self.session.page.evaluate(KINETIC_PULSE_JS, LAZY_LOAD_SELECTORS)
            await self._sleep(0.3)
        except Exception as e:
            _log(self.logger, "debug", f"[images] Kinetic pulse failed: {e}")

    def capture_request(self, url: str, resource_type: str) -> Optional[Dict[str, Any]]:
        if resource_type == "image" or self.is_media(url):
            return {"source": "network", "type": "request", "resourceType": resource_type}
        return None

    def capture_response(self, url: str, headers: Dict[str, str], status: int) -> Optional[Dict[str, Any]]:
        content_type = headers.get("content-type", "")
        if "image" in content_type:
            self.image_metadata[url] = {
                "contentType": content_type,
                "size": headers.get("content-length"),
                "status": status,
            }
        return None

    # ───────── export ─────────

    @staticmethod
    def image_format(url: str) -> str:
        lower = url.lower()
        if lower.startswith("data:"):
            return "dataUrl"
        for fmt, needles in (
            ("jpg", (".jpg", ".jpeg")),
            ("png", (".png",)),
            ("webp", (".webp",)),
            ("gif", (".gif",)),
            ("svg", (".svg",)),
            ("avif", (".avif",)),
            ("ico", (".ico", "favicon")),
        ):
            if any(n in lower for n in needles):
                return fmt
        return "other"

    def export_results(self) -> Dict[str, Any]:
        results = super().export_results()
        by_format: Dict[str, List[str]] = {f: [] for f in FORMATS}
        for url in self.items:
            by_format[self.image_format(url)].append(url)

        total = len(self.extracted)
        format_counts = {k: len(v) for k, v in by_format.items()}
        category_counts = {k: len(v) for k, v in self.categories.items()}
        distribution = {
            fmt: {"count": count, "percentage": float(success_rate(count, total)["percentage"])}
            for fmt, count in format_counts.items()
        }
        with_metadata = sum(1 for url in self.items if url in self.image_metadata)

        results.update({
            "byFormat": by_format,
            "byCategory": {k: list(v) for k, v in self.categories.items()},
            "metadata": dict(self.image_metadata),
            "statistics": {
                "total": total,
                "byFormat": format_counts,
                "byCategory": category_counts,
                "formatDistribution": distribution,
                "withMetadata": with_metadata,
                "metadataCoverage": float(success_rate(with_metadata, total)["percentage"]) if total else 0,
            },
        })
        return results
