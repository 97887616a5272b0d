from __future__ import annotations

from typing import Any, Dict, Optional, Type

from .audio import AudioExtractor
from .base import ExtractorBase, PassDescriptor, PassExtractor, normalize_media_url
from .documents import DocumentExtractor
from .images import ImageExtractor
from .players import AUDIO_PLAYERS, VIDEO_PLAYERS, PlayerDetector, PlayerRegistry
from .text import TextExtractor
from .universal import UniversalExtractor
from .video import VideoExtractor


class ExtractorRegistry:
    def __init__(self) -> None:
        self._extractors: Dict[str, Type[PassExtractor]] = {}

    def register(self, name: str):
        def deco(cls):
            self._extractors[name] = cls
            return cls
        return deco

    def resolve(self, name: str) -> str:
        variants = [name, name.rstrip("s"), name + "s", name.replace("_", "-"), name.replace("-", "_")]
        for v in variants:
            if v in self._extractors:
                return v
        return name

    def get(self, name: str) -> Optional[Type[PassExtractor]]:
        return self._extractors.get(self.resolve(name))

    def create(self, name: str, session, options: Optional[Dict[str, Any]] = None, **kwargs) -> PassExtractor:
        cls = self.get(name)
        if cls is None:
            raise KeyError(f"Unknown extractor: {name}")
        return cls(session, options, **kwargs)

    @property
    def extractors(self) -> Dict[str, Type[PassExtractor]]:
        return self._extractors


EXTRACTORS = ExtractorRegistry()

for _name, _cls in (
    ("images", ImageExtractor),
    ("video", VideoExtractor),
    ("audio", AudioExtractor),
    ("documents", DocumentExtractor),
    ("text", TextExtractor),
    ("universal", UniversalExtractor),
):
    EXTRACTORS.register(_name)(_cls)

__all__ = [
    "AUDIO_PLAYERS",
    "EXTRACTORS",
    "VIDEO_PLAYERS",
    "AudioExtractor",
    "DocumentExtractor",
    "ExtractorBase",
    "ExtractorRegistry",
    "ImageExtractor",
    "PassDescriptor",
    "PassExtractor",
    "PlayerDetector",
    "PlayerRegistry",
    "TextExtractor",
    "UniversalExtractor",
    "VideoExtractor",
    "normalize_media_url",
]
