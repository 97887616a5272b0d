"""Document links, embedded viewers and cloud document platforms."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from .base import (
    PassDescriptor,
    PassExtractor,
    compile_patterns,
    drain_instrumentation,
    drain_network,
)

DOCUMENT_FORMATS: Dict[str, List[str]] = {
    "pdf": [".pdf"],
    "word": [".doc", ".docx", ".odt"],
    "excel": [".xls", ".xlsx", ".ods", ".csv"],
    "powerpoint": [".ppt", ".pptx", ".odp"],
    "text": [".txt", ".rtf", ".md"],
    "ebook": [".epub", ".mobi", ".azw"],
}

DOCUMENT_CONTENT_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
    "application/epub+zip",
    "text/csv",
)

CLOUD_SIGNATURES = compile_patterns(
    r"docs\.google\.com|drive\.google\.com",
    r"onedrive|sharepoint",
    r"dropbox\.com.*\.(pdf|doc|xls|ppt)",
    r"box\.com.*file",
    r"scribd\.com/doc",
    r"https?://[^\s]*(?:documents?|files?|downloads?|assets?)[^\s]*\.(pdf|doc|xls|ppt)",
)

CLOUD_HOSTS_RE = re.compile(r"docs\.google|drive\.google|onedrive|sharepoint|dropbox|box\.com|scribd|slideshare")
GOOGLE_DOC_ID_RE = re.compile(r"/d/([a-zA-Z0-9_-]+)")

DOCUMENT_DOM_JS = """
(formats) => {
  const results = [];
  formats.forEach(ext => {
    document.querySelectorAll('a[href*="' + ext + '"], a[href*="' + ext.toUpperCase() + '"]').forEach(link => {
      results.push({ type: 'direct-link', src: link.href, text: (link.textContent || '').trim(), title: link.title, format: ext.replace('.', '') });
    });
  });
  document.querySelectorAll('object[data*=".pdf"], embed[src*=".pdf"]').forEach(el => {
    const src = el.data || el.src;
    if (src) results.push({ type: 'embedded-object', src, width: el.width, height: el.height, format: 'pdf' });
  });
  document.querySelectorAll('iframe').forEach(iframe => {
    const src = iframe.src || '';
    if (formats.some(ext => src.includes(ext))) results.push({ type: 'iframe-embed', src, width: iframe.width, height: iframe.height });
  });
  document.querySelectorAll('[download], [data-download], .download-btn, .download-link').forEach(el => {
    const href = el.href || (el.dataset && (el.dataset.href || el.dataset.url));
    if (href && formats.some(ext => href.toLowerCase().includes(ext))) {
      results.push({ type: 'download-button', src: href, text: (el.textContent || '').trim() });
    }
  });
  return results;
}
"""

VIEWERS_JS = """
() => {
  const results = [];
  if (window.PDFViewerApplication) {
    try {
      const app = window.PDFViewerApplication;
      if (app.url) results.push({ viewer: 'pdfjs', url: app.url, pages: app.pdfDocument && app.pdfDocument.numPages });
    } catch (e) {}
  }
  document.querySelectorAll('iframe[src*="pdf.js"], iframe[src*="pdfjs"]').forEach(iframe => {
    try {
      const viewerUrl = new URL(iframe.src);
      const file = viewerUrl.searchParams.get('file') || viewerUrl.searchParams.get('pdf') || viewerUrl.searchParams.get('url');
      if (file) results.push({ viewer: 'pdfjs-iframe', url: file, viewerUrl: iframe.src });
    } catch (e) {}
  });
  document.querySelectorAll('canvas[data-page], canvas.pdfPage, canvas.pdf-page').forEach(canvas => {
    const container = canvas.closest('[data-pdf], [data-url], [data-src]');
    if (!container) return;
    const url = container.dataset.pdf || container.dataset.url || container.dataset.src;
    if (url) results.push({ viewer: 'canvas-pdf', url });
  });
  return results;
}
"""

CLOUD_JS = """
() => {
  const results = [];
  document.querySelectorAll('iframe[src*="docs.google.com"], iframe[src*="drive.google.com"]').forEach(iframe => {
    results.push({ platform: 'google-docs', embedUrl: iframe.src, width: iframe.width, height: iframe.height });
  });
  document.querySelectorAll('a[href*="docs.google.com"], a[href*="drive.google.com"]').forEach(link => {
    results.push({ platform: 'google-docs', linkUrl: link.href, text: (link.textContent || '').trim() });
  });
  [
    ['microsoft-onedrive', 'iframe[src*="onedrive"], iframe[src*="sharepoint"]'],
    ['dropbox', 'iframe[src*="dropbox.com"]'],
    ['box', 'iframe[src*="box.com"]'],
    ['scribd', 'iframe[src*="scribd.com"]'],
    ['slideshare', 'iframe[src*="slideshare.net"]'],
    ['issuu', 'div[data-issuu], iframe[src*="issuu.com"]'],
  ].forEach(([platform, selector]) => {
    document.querySelectorAll(selector).forEach(el => {
      results.push({ platform, embedUrl: el.src || (el.dataset && el.dataset.issuuUrl) });
    });
  });
  return results;
}
"""

DATA_SCRIPTS_JS = """
(formats) => {
  const results = [];
  document.querySelectorAll('[data-pdf], [data-document], [data-file], [data-src], [data-url]').forEach(el => {
    Object.entries(el.dataset).forEach(([key, val]) => {
      if (typeof val !== 'string' || !/https?:\\/\\//.test(val)) return;
      if (formats.some(ext => val.toLowerCase().includes(ext))) {
        results.push({ type: 'data-attribute', src: val, attribute: 'data-' + key, element: el.tagName });
      }
    });
  });
  document.querySelectorAll('script').forEach(script => {
    const matches = (script.textContent || '').match(/["'](https?:\\/\\/[^"']+\\.pdf[^"']*)["']/gi);
    (matches || []).forEach(match => results.push({ type: 'script-config', src: match.replace(/['"]/g, '') }));
  });
  return results;
}
"""


# ───────── passes ─────────

async def scan_dom(session, state: "DocumentExtractor") -> None:
    for data in await session.page.evaluate(DOCUMENT_DOM_JS, state.extensions) or []:
        src = data.get("src")
        if state.is_media(src):
            state.add_item(src, {"source": "dom", "extractionType": data.get("type"), "metadata": data})
            state.document_metadata[src] = data


async def scan_viewers(session, state: "DocumentExtractor") -> None:
    for data in await session.page.evaluate(VIEWERS_JS) or []:
        if data.get("url"):
            state.add_item(data["url"], {"source": "pdf-viewer", "viewer": data.get("viewer"), "metadata": data})
            state.viewers.append(data)


async def scan_cloud(session, state: "DocumentExtractor") -> None:
    for data in await session.page.evaluate(CLOUD_JS) or []:
        url = data.get("embedUrl") or data.get("linkUrl")
        if not url:
            continue
        if data.get("platform") == "google-docs":
            match = GOOGLE_DOC_ID_RE.search(url)
            if match:
                data["documentId"] = match.group(1)
                data["downloadUrl"] = f"https://docs.google.com/document/d/{match.group(1)}/export?format=pdf"

        metadata = {"source": "cloud-platform", "platform": data.get("platform"), "metadata": data}
        state.add_item(url, metadata)
        if data.get("downloadUrl"):
            state.add_item(data["downloadUrl"], {**metadata, "source": "cloud-export"})


async def scan_data_scripts(session, state: "DocumentExtractor") -> None:
    for data in await session.page.evaluate(DATA_SCRIPTS_JS, state.extensions) or []:
        src = data.get("src")
        if state.is_media(src):
            state.add_item(src, {"source": "data-extraction", "extractionType": data.get("type"), "metadata": data})


class DocumentExtractor(PassExtractor):
    name = "documents"
    TRACKING = ("utm_source", "utm_medium", "utm_campaign", "ref", "fbclid", "gclid")
    DEFAULTS = {
        "monitor_network": True,
        "extract_metadata": True,
        "detect_viewers": True,
        "follow_redirects": True,
    }

    PASSES = (
        PassDescriptor("dom", "dom", scan_dom),
        PassDescriptor("viewers", "viewer", scan_viewers, option="detect_viewers"),
        PassDescriptor("cloud", "platform", scan_cloud),
        PassDescriptor("data-scripts", "dom", scan_data_scripts),
        PassDescriptor("instrumentation", "instrumentation", drain_instrumentation),
        PassDescriptor("network", "network", drain_network),
    )

    def __init__(self, session, options: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(session, options, **kwargs)
        # extra formats extend the built-in mapping rather than replace it
        formats = {k: list(v) for k, v in DOCUMENT_FORMATS.items()}
        for kind, extensions in (self.options.get("supported_formats") or {}).items():
            formats[kind] = list(extensions)
        self.options["supported_formats"] = formats
        self.extensions: List[str] = [ext for exts in formats.values() for ext in exts]

        pattern = "|".join(re.escape(ext) for ext in self.extensions)
        self.signatures = (re.compile(rf"({pattern})(\?|#|$)", re.IGNORECASE), *CLOUD_SIGNATURES)
        self.document_metadata: Dict[str, Dict[str, Any]] = {}
        self.viewers: List[Dict[str, Any]] = []

    def is_media(self, url: Any) -> bool:
        if not url or not isinstance(url, str):
            return False
        return any(p.search(url) for p in self.signatures)

    def capture_request(self, url: str, resource_type: str) -> Optional[Dict[str, Any]]:
        if self.is_media(url):
            return {"source": "network-request", "resourceType": resource_type}
        return None

    def capture_response(self, url: str, headers: Dict[str, str], status: int) -> Optional[Dict[str, Any]]:
        content_type = headers.get("content-type", "")
        disposition = headers.get("content-disposition", "")
        is_document = (
            any(t in content_type for t in DOCUMENT_CONTENT_TYPES)
            or ".pdf" in disposition
            or "attachment" in disposition
        )
        if not is_document:
            return None
        metadata = {
            "source": "network-response",
            "contentType": content_type,
            "contentDisposition": disposition,
            "size": headers.get("content-length"),
        }
        self.document_metadata[url] = metadata
        return metadata

    # ───────── export ─────────

    def group(self, url: str) -> str:
        lower = url.lower()
        if ".pdf" in lower:
            return "pdf"
        for kind in ("word", "excel", "powerpoint", "text", "ebook"):
            if any(ext in lower for ext in self.options["supported_formats"].get(kind, ())):
                return kind
        if CLOUD_HOSTS_RE.search(lower):
            return "cloud"
        return "other"

    def export_results(self) -> Dict[str, Any]:
        results = super().export_results()
        grouped: Dict[str, List[str]] = {
            k: [] for k in ("pdf", "word", "excel", "powerpoint", "text", "ebook", "cloud", "other")
        }
        for url in self.items:
            grouped[self.group(url)].append(url)

        results.update({
            "grouped": grouped,
            "metadata": dict(self.document_metadata),
            "viewers": list(self.viewers),
        })
        return results
