"""Records shared by the browser session, the discovery loop and the writers."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class InteractionKind(str, Enum):
    SCROLL = "SCROLL"
    PAGE_NEXT = "PAGE_NEXT"


@dataclass(frozen=True)
class Discovery:
    """A hyperlink seen in the live DOM. Identity is ``url``."""
    url: str
    anchor_text: str = ""
    title: str = ""
    discovered_at_phase: Optional[int] = None
    discovered_at_timestamp: Optional[int] = None  # epoch ms

    @classmethod
    def from_link(cls, link: Dict[str, Any]) -> "Discovery":
        return cls(
            url=str(link.get("url", "")),
            anchor_text=str(link.get("text") or "")[:100],
            title=str(link.get("title") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "anchorText": self.anchor_text,
            "title": self.title,
            "discoveredAtPhase": self.discovered_at_phase,
            "discoveredAtTimestamp": self.discovered_at_timestamp,
        }


@dataclass(frozen=True)
class InteractionRecord:
    """One log entry per newly discovered link. Append-only."""
    discovery: Discovery
    phase: int
    interaction_kind: InteractionKind
    batch_size_at_time: int
    timestamp: int  # epoch ms

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["discovery"] = self.discovery.to_dict()
        data["interaction_kind"] = self.interaction_kind.value
        return data
