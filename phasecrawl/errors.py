"""Error taxonomy for the harvester.

Every error carries a category, a severity and a pydantic context so callers
can log it as structured data:
- validation errors (programmer mistakes, raised synchronously)
- transport errors (surfaced as failure results by the media store)
- interaction / extraction errors (logged, counted, loop continues)
- timing anomalies in the rate gate (fatal)
"""

from __future__ import annotations

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorSeverity(str, Enum):
    """Error severity levels for prioritized handling."""
    CRITICAL = "critical"  # Run cannot continue
    HIGH = "high"          # Component failed, caller decides
    MEDIUM = "medium"      # Recoverable, retry possible
    LOW = "low"            # Single item lost
    INFO = "info"          # Informational only


class ErrorCategory(str, Enum):
    """Error categories used in logs and metric labels."""
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP = "http"
    BROWSER = "browser"
    EXTRACTION = "extraction"
    TIMING = "timing"
    ROBOTS = "robots"
    UNKNOWN = "unknown"


class ErrorContext(BaseModel):
    """Context captured at the point an error is raised."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    url: Optional[str] = None
    extractor: Optional[str] = None
    phase: Optional[int] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    traceback: Optional[str] = None


class PhaseCrawlError(Exception):
    """Base error with category, severity and context."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        *,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause

        if not self.context.traceback and cause is not None:
            self.context.traceback = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/storage."""
        return {
            "kind": self.kind,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": self.context.model_dump(mode="json"),
            "cause": str(self.cause) if self.cause else None,
        }


# ───────── validation (programmer errors) ─────────

class InvalidRange(PhaseCrawlError, ValueError):
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.HIGH


class InvalidUrl(PhaseCrawlError, ValueError):
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW


class InvalidOption(PhaseCrawlError, ValueError):
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.HIGH


# ───────── transport ─────────

class FetchTimeout(PhaseCrawlError):
    category = ErrorCategory.TIMEOUT
    severity = ErrorSeverity.MEDIUM


class NetworkError(PhaseCrawlError):
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.MEDIUM


class HttpError(PhaseCrawlError):
    """Non-OK HTTP status returned by the remote server."""
    category = ErrorCategory.HTTP
    severity = ErrorSeverity.MEDIUM

    def __init__(self, status: int, status_text: str = "", **kwargs):
        super().__init__(f"HTTP {status}: {status_text}", **kwargs)
        self.status = status
        self.status_text = status_text

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class AbortedRequest(PhaseCrawlError):
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.LOW


# ───────── browser / extraction ─────────

class InteractionError(PhaseCrawlError):
    """A single BrowserSession.interact() call failed."""
    category = ErrorCategory.BROWSER
    severity = ErrorSeverity.MEDIUM

    def __init__(self, message: str, kind: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.interaction_kind = kind


class ExtractionFailed(PhaseCrawlError):
    """An extractor run aborted before finalize."""
    category = ErrorCategory.EXTRACTION
    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, extractor: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.extractor = extractor
        if extractor and not self.context.extractor:
            self.context.extractor = extractor


class TimingAnomaly(PhaseCrawlError):
    """The rate gate retried more often than its bound allows."""
    category = ErrorCategory.TIMING
    severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str, depth: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.depth = depth


class RobotsBlocked(PhaseCrawlError):
    """Marker for robots-disallowed destinations. Never raised."""
    category = ErrorCategory.ROBOTS
    severity = ErrorSeverity.INFO


__all__ = [
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    "PhaseCrawlError",
    "InvalidRange",
    "InvalidUrl",
    "InvalidOption",
    "FetchTimeout",
    "NetworkError",
    "HttpError",
    "AbortedRequest",
    "InteractionError",
    "ExtractionFailed",
    "TimingAnomaly",
    "RobotsBlocked",
]
