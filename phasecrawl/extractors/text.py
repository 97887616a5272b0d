"""
Text, metadata and link extraction from the rendered document.

The live DOM is serialized once with ``page.content()`` and analysed with
BeautifulSoup; no page-side scripts are injected. Outbound links are reported
under ``links``; the dedup set only records the analysed page, and the
extractor never downloads.
"""

from __future__ import annotations

import json
import re
import urllib.parse
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from ..mathcore import (
    clamp,
    count_total_syllables,
    exceeds_threshold,
    flesch_score,
    quality_score,
    readability_score,
    reading_time,
    safe_divide,
    text_density,
)
from .base import PassDescriptor, PassExtractor, _log

TAG_WEIGHTS = {"article": 30, "main": 25, "section": 10, "div": 5, "p": 3, "pre": 3}

POSITIVE_RE = re.compile(
    r"article|body|content|entry|hentry|h-entry|main|page|post|text|blog|story|prose|single",
    re.IGNORECASE,
)
NEGATIVE_RE = re.compile(
    r"hidden|banner|combx|comment|community|disqus|extra|foot|header|menu|remark|rss|shoutbox|sidebar|"
    r"sponsor|ad-|branding|popup|social|share|nav|buttons|recommend|related|widget|promo|newsletter",
    re.IGNORECASE,
)
POSITIVE_ROLES = ("main", "article")
NEGATIVE_ROLES = ("complementary", "navigation", "banner", "contentinfo")
PUNCTUATION_RE = re.compile(r"[.,!?;:]")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

NOISE_SELECTORS = (
    "script", "style", "noscript", "template", "nav", "footer", "aside", "form", "iframe",
    '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]', '[role="complementary"]',
    ".advertisement", ".ads", ".ad", '[class*="ad-"]', '[id*="ad-"]', ".sponsored",
    ".social-share", ".share-buttons", ".cookie-banner", ".newsletter", ".popup",
)
CANDIDATE_SELECTOR = (
    'article, main, [role="main"], [role="article"], .post-content, .article-content, '
    ".entry-content, .content, #content, .post, section, div"
)
MIN_CANDIDATE_CHARS = 100

RESOURCE_EXTENSIONS = (
    ".pdf", ".zip", ".rar", ".gz", ".tar", ".7z", ".exe", ".dmg",
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg",
    ".mp3", ".mp4", ".webm", ".wav", ".ogg",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".csv",
)


# ───────── document analysis ─────────

def extract_metadata(soup: BeautifulSoup, base_url: str = "") -> Dict[str, Any]:
    """Title, meta tags, OpenGraph/Twitter cards, canonical, alternates, feeds, JSON-LD."""
    metadata: Dict[str, Any] = {
        "title": soup.title.get_text(strip=True) if soup.title else None,
        "language": soup.html.get("lang") if soup.html else None,
        "meta": {},
        "openGraph": {},
        "twitter": {},
        "canonical": None,
        "alternates": [],
        "feeds": [],
        "jsonLd": [],
    }

    for tag in soup.find_all("meta"):
        key = tag.get("property") or tag.get("name")
        content = tag.get("content")
        if not key or content is None:
            continue
        key = key.strip()
        if key.startswith("og:"):
            metadata["openGraph"][key[3:]] = content
        elif key.startswith("twitter:"):
            metadata["twitter"][key[8:]] = content
        else:
            metadata["meta"][key.lower()] = content

    for link in soup.find_all("link", href=True):
        rel = [r.lower() for r in (link.get("rel") or [])]
        href = urllib.parse.urljoin(base_url, link["href"]) if base_url else link["href"]
        if "canonical" in rel:
            metadata["canonical"] = href
        elif "alternate" in rel:
            link_type = (link.get("type") or "").lower()
            if "rss" in link_type or "atom" in link_type:
                metadata["feeds"].append({"url": href, "type": link_type, "title": link.get("title")})
            elif link.get("hreflang"):
                metadata["alternates"].append({"url": href, "hreflang": link["hreflang"]})

    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        try:
            metadata["jsonLd"].append(json.loads(raw))
        except (TypeError, ValueError):
            continue

    metadata["description"] = metadata["meta"].get("description") or metadata["openGraph"].get("description")
    metadata["author"] = metadata["meta"].get("author")
    return metadata


def extract_headings(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    return [
        {"level": int(h.name[1]), "text": h.get_text(" ", strip=True), "id": h.get("id")}
        for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
        if h.get_text(strip=True)
    ]


def classify_links(soup: BeautifulSoup, base_url: str) -> Dict[str, List[Dict[str, Any]]]:
    """Split anchors into ``internal``, ``external``, ``resources`` and in-page ``anchors``."""
    links: Dict[str, List[Dict[str, Any]]] = {"internal": [], "external": [], "resources": [], "anchors": []}
    base_host = urllib.parse.urlsplit(base_url).netloc.lower()

    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        text = a.get_text(" ", strip=True)[:100]
        if not href or href.lower().startswith(("javascript:", "mailto:", "tel:")):
            continue
        if href.startswith("#"):
            links["anchors"].append({"url": href, "text": text})
            continue

        url = urllib.parse.urljoin(base_url, href) if base_url else href
        parts = urllib.parse.urlsplit(url)
        if parts.scheme not in ("http", "https"):
            continue

        entry = {"url": url, "text": text, "title": a.get("title") or "", "rel": a.get("rel") or []}
        if parts.path.lower().endswith(RESOURCE_EXTENSIONS):
            links["resources"].append(entry)
        elif not base_host or parts.netloc.lower() == base_host:
            links["internal"].append(entry)
        else:
            links["external"].append(entry)
    return links


def score_element(element) -> float:
    """Main-content score of one container, bounded by ``readability_score``."""
    class_name = " ".join(element.get("class") or [])
    element_id = element.get("id") or ""
    role = element.get("role") or ""
    text = element.get_text(" ", strip=True)

    density = text_density(len(text), len(str(element)))
    density_bonus = 0
    if density is not None:
        if exceeds_threshold(density, 0.3):
            density_bonus += 20
        if exceeds_threshold(density, 0.5):
            density_bonus += 10

    return readability_score({
        "tagWeight": TAG_WEIGHTS.get(element.name, 0),
        "classBonus": 25 if POSITIVE_RE.search(class_name) else 0,
        "idBonus": 25 if POSITIVE_RE.search(element_id) else 0,
        "roleBonus": 30 if role in POSITIVE_ROLES else 0,
        "wordCountBonus": len(text.split()) // 10,
        "punctuationBonus": len(PUNCTUATION_RE.findall(text)),
        "paragraphBonus": len(element.find_all("p")) * 3,
        "densityBonus": density_bonus,
        "classPenalty": 50 if NEGATIVE_RE.search(class_name) else 0,
        "idPenalty": 50 if NEGATIVE_RE.search(element_id) else 0,
        "rolePenalty": 50 if role in NEGATIVE_ROLES else 0,
    })


def remove_noise(soup: BeautifulSoup) -> int:
    removed = 0
    for selector in NOISE_SELECTORS:
        for element in soup.select(selector):
            if element.decomposed:
                continue
            element.decompose()
            removed += 1
    return removed


def find_main_content(soup: BeautifulSoup, threshold: float = 20):
    """Highest-scoring candidate above ``threshold``; ``(body, None)`` when none qualifies."""
    best, best_score = None, None
    for element in soup.select(CANDIDATE_SELECTOR):
        if len(element.get_text(" ", strip=True)) < MIN_CANDIDATE_CHARS:
            continue
        score = score_element(element)
        if score > threshold and (best_score is None or score > best_score):
            best, best_score = element, score
    if best is None:
        return soup.body or soup, None
    return best, best_score


def compute_statistics(element, words_per_minute: float = 200) -> Dict[str, Any]:
    text = element.get_text(" ", strip=True)
    words = text.split()
    word_count = len(words)
    sentence_count = len([s for s in SENTENCE_SPLIT_RE.split(text) if s.strip()])
    paragraph_count = len([p for p in element.find_all("p") if p.get_text(strip=True)])
    syllables = count_total_syllables(words)
    avg_words = safe_divide(word_count, sentence_count)

    flesch = flesch_score(word_count, sentence_count, syllables)
    quality = quality_score({
        "wordCount": word_count,
        "paragraphCount": paragraph_count,
        "avgWordsPerSentence": avg_words,
    })
    if flesch["valid"] and flesch["value"] >= 50:
        quality = clamp(quality + 5, 0, 100)

    return {
        "wordCount": word_count,
        "sentenceCount": sentence_count,
        "paragraphCount": paragraph_count,
        "syllableCount": syllables,
        "characterCount": len(text),
        "avgWordsPerSentence": round(avg_words, 2) if avg_words is not None else None,
        "fleschReadingEase": flesch,
        "qualityScore": quality,
        "readingTimeMinutes": reading_time(word_count, words_per_minute),
        "textDensity": text_density(len(text), len(str(element))),
    }


def describe(element) -> str:
    label = element.name or "document"
    if element.get("id"):
        label += f"#{element['id']}"
    for cls in element.get("class") or []:
        label += f".{cls}"
    return label


def analyze_html(
    html: str,
    base_url: str = "",
    *,
    threshold: float = 20,
    words_per_minute: float = 200,
) -> Dict[str, Any]:
    """Full analysis of one HTML document. Metadata, headings and links are read before noise removal."""
    soup = BeautifulSoup(html or "", "html.parser")
    metadata = extract_metadata(soup, base_url)
    headings = extract_headings(soup)
    links = classify_links(soup, base_url)

    noise_removed = remove_noise(soup)
    main, score = find_main_content(soup, threshold)
    statistics = compute_statistics(main, words_per_minute)
    text = main.get_text(" ", strip=True)

    return {
        "content": {
            "text": text,
            "excerpt": text[:300],
            "container": describe(main),
            "score": score,
            "noiseRemoved": noise_removed,
        },
        "metadata": metadata,
        "statistics": statistics,
        "headings": headings,
        "links": links,
    }


# ───────── passes ─────────

async def settle(session, state: "TextExtractor") -> None:
    delay = state.options["wait_for_dynamic_content"]
    if delay > 0:
        await state._sleep(delay / 1000)


async def read_content(session, state: "TextExtractor") -> None:
    html = await session.page.content()
    base_url = session.url or state.current_url
    state.analysis = analyze_html(
        html,
        base_url,
        threshold=state.options["readability_threshold"],
        words_per_minute=state.options["words_per_minute"],
    )

    stats = state.analysis["statistics"]
    state.add_item(base_url, {
        "source": "page",
        "title": state.analysis["metadata"].get("title"),
        "wordCount": stats["wordCount"],
    })
    _log(state.logger, "info", f"📝 [{state.name}] {stats['wordCount']} words, quality score {stats['qualityScore']}")


class TextExtractor(PassExtractor):
    name = "text"
    INSTRUMENT = False
    DEFAULTS = {
        "monitor_network": False,
        "extract_metadata": True,
    }

    PASSES = (
        PassDescriptor("settle", "wait", settle),
        PassDescriptor("content", "dom", read_content),
    )

    @classmethod
    def validate_options(cls, options: Dict[str, Any]) -> Dict[str, Any]:
        merged = super().validate_options(options)
        wait = merged.get("wait_for_dynamic_content")
        merged["wait_for_dynamic_content"] = int(clamp(2000 if wait is None else wait, 0, 60000))
        threshold = merged.get("readability_threshold")
        merged["readability_threshold"] = clamp(20 if threshold is None else threshold, -100, 200)
        wpm = merged.get("words_per_minute")
        merged["words_per_minute"] = clamp(wpm or 200, 50, 1000)
        # link URLs are pages, not media
        merged["download_media"] = False
        return merged

    def __init__(self, session, options: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(session, options, **kwargs)
        self.analysis: Dict[str, Any] = {}

    def export_results(self) -> Dict[str, Any]:
        results = super().export_results()
        results.update({
            "content": self.analysis.get("content", {}),
            "metadata": self.analysis.get("metadata", {}) if self.options["extract_metadata"] else {},
            "statistics": self.analysis.get("statistics", {}),
            "headings": self.analysis.get("headings", []),
            "links": self.analysis.get("links", {}),
        })
        return results
