"""Sliding-window rate limiter guarding every browser action."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional

from .errors import TimingAnomaly
from .mathcore import clamp, rate_limit_wait
from .observability import get_metrics


def _now_ms() -> float:
    return time.monotonic() * 1000


class RateGate:
    """Admit at most ``max_requests`` actions per ``interval`` milliseconds."""

    MIN_WAIT_MS = 100
    MAX_RECURSION_DEPTH = 10

    def __init__(
        self,
        max_requests: int = 10,
        interval: int = 60000,
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.max_requests = int(max(1, max_requests or 10))
        self.interval = max(1000, interval or 60000)
        self._clock = clock or _now_ms
        self._sleep = sleep or asyncio.sleep
        self._logger = logger or logging.getLogger("phasecrawl.rate_gate")
        self._window: List[float] = []
        self._depth = 0

    @classmethod
    def from_options(cls, options: Optional[Dict[str, Any]] = None) -> "RateGate":
        options = options or {}
        return cls(
            max_requests=options.get("maxRequests", options.get("max_requests", 10)),
            interval=options.get("interval", 60000),
        )

    def _prune(self, now: float) -> None:
        self._window = [ts for ts in self._window if now - ts < self.interval]

    async def admit(self) -> None:
        """Wait until a slot is free, then record the admission."""
        while True:
            if self._depth >= self.MAX_RECURSION_DEPTH:
                depth = self._depth
                self._depth = 0
                raise TimingAnomaly(
                    f"Rate gate exceeded max recursion depth ({self.MAX_RECURSION_DEPTH}). "
                    "This indicates a timing anomaly.",
                    depth=depth,
                )

            now = self._clock()
            self._prune(now)

            if len(self._window) < self.max_requests:
                self._window.append(now)
                self._depth = 0
                return

            wait_ms = rate_limit_wait(self.interval, now - self._window[0], self.MIN_WAIT_MS)
            self._logger.info(
                f"⏳ Rate limit reached ({len(self._window)}/{self.max_requests}). "
                f"Waiting {math.ceil(wait_ms / 1000)}s..."
            )
            get_metrics().rate_gate_waits.inc()
            await self._sleep(wait_ms / 1000)
            self._depth += 1

    def status(self) -> Dict[str, Any]:
        now = self._clock()
        active = len([ts for ts in self._window if now - ts < self.interval])
        return {
            "activeRequests": active,
            "maxRequests": self.max_requests,
            "interval": self.interval,
            "availableSlots": int(clamp(self.max_requests - active, 0, self.max_requests)),
            "isLimited": active >= self.max_requests,
        }

    def time_until_available(self) -> float:
        """Milliseconds until the next slot opens, 0 when one is free now."""
        now = self._clock()
        self._prune(now)
        if len(self._window) < self.max_requests:
            return 0
        return max(0, self.interval - (now - self._window[0]))

    def reset(self) -> None:
        self._window = []
        self._depth = 0
