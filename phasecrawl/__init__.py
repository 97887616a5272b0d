"""Headless-browser media and link harvester."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .discovery import DiscoveryLoop
from .errors import (
    AbortedRequest,
    ExtractionFailed,
    FetchTimeout,
    HttpError,
    InteractionError,
    InvalidOption,
    InvalidRange,
    InvalidUrl,
    NetworkError,
    PhaseCrawlError,
    TimingAnomaly,
)
from .extractors import (
    EXTRACTORS,
    AudioExtractor,
    DocumentExtractor,
    ExtractorBase,
    ImageExtractor,
    PassExtractor,
    TextExtractor,
    UniversalExtractor,
    VideoExtractor,
)
from .media_store import DownloadResult, DownloadStatus, MediaStore
from .rate_gate import RateGate
from .runtime import BrowserSession
from .synthesis import DataSynthesizer

__version__ = "1.0.0"


# ───────── factories ─────────

def create_crawler(options: Optional[Dict[str, Any]] = None) -> DiscoveryLoop:
    options = options or {}
    return DiscoveryLoop(BrowserSession(options.get("browser")), options.get("crawler"))


def create_image_extractor(options: Optional[Dict[str, Any]] = None) -> ImageExtractor:
    options = options or {}
    return ImageExtractor(BrowserSession(options.get("browser")), options.get("extractor"))


def create_video_extractor(options: Optional[Dict[str, Any]] = None) -> VideoExtractor:
    options = options or {}
    return VideoExtractor(BrowserSession(options.get("browser")), options.get("extractor"))


def create_audio_extractor(options: Optional[Dict[str, Any]] = None) -> AudioExtractor:
    options = options or {}
    return AudioExtractor(BrowserSession(options.get("browser")), options.get("extractor"))


def create_document_extractor(options: Optional[Dict[str, Any]] = None) -> DocumentExtractor:
    options = options or {}
    return DocumentExtractor(BrowserSession(options.get("browser")), options.get("extractor"))


def create_text_extractor(options: Optional[Dict[str, Any]] = None) -> TextExtractor:
    options = options or {}
    return TextExtractor(BrowserSession(options.get("browser")), options.get("extractor"))


def create_universal_extractor(options: Optional[Dict[str, Any]] = None) -> UniversalExtractor:
    """``options`` carries ``browser`` plus the orchestrator's own keys (``extract``, per-kind options)."""
    options = dict(options or {})
    browser = options.pop("browser", None)
    return UniversalExtractor(BrowserSession(browser), options)


__all__ = [
    "EXTRACTORS",
    "AbortedRequest",
    "AudioExtractor",
    "BrowserSession",
    "DataSynthesizer",
    "DiscoveryLoop",
    "DocumentExtractor",
    "DownloadResult",
    "DownloadStatus",
    "ExtractionFailed",
    "ExtractorBase",
    "FetchTimeout",
    "HttpError",
    "ImageExtractor",
    "InteractionError",
    "InvalidOption",
    "InvalidRange",
    "InvalidUrl",
    "MediaStore",
    "NetworkError",
    "PassExtractor",
    "PhaseCrawlError",
    "RateGate",
    "TextExtractor",
    "TimingAnomaly",
    "UniversalExtractor",
    "VideoExtractor",
    "create_audio_extractor",
    "create_crawler",
    "create_document_extractor",
    "create_image_extractor",
    "create_text_extractor",
    "create_universal_extractor",
    "create_video_extractor",
]
