"""Adaptive discovery loop.

Each phase performs one interaction (even phases scroll, odd phases follow
the "next" link), records unseen links, and computes the phase tension
``new_links / batch_size``. The batch size follows a three-branch rule:

    tension > threshold            -> batch_size + 1
    tension == 0 and batch_size > 1 -> batch_size - 1
    otherwise                      -> unchanged

The loop stops (stasis) when the last ``stasis_window`` tensions are all
zero or the phase cap is reached.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .checkpoint_manager import CheckpointManager
from .errors import InvalidOption, PhaseCrawlError, TimingAnomaly
from .events import ListenerSet
from .mathcore import mean
from .models import Discovery, InteractionKind, InteractionRecord
from .observability import get_metrics
from .synthesis import DataSynthesizer


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class LoopState:
    phase: int = 0
    batch_size: int = 1
    tensions: List[float] = field(default_factory=list)
    discovered: Dict[str, Discovery] = field(default_factory=dict)
    stasis: bool = False


def adapt_batch_size(batch_size: int, tension: float, threshold: float) -> int:
    if tension > threshold:
        return batch_size + 1
    if tension == 0 and batch_size > 1:
        return batch_size - 1
    return batch_size


def interaction_for_phase(phase: int) -> InteractionKind:
    return InteractionKind.SCROLL if phase % 2 == 0 else InteractionKind.PAGE_NEXT


class DiscoveryLoop:
    """Feedback-controlled crawl over one BrowserSession."""

    def __init__(
        self,
        session,
        options: Optional[Dict[str, Any]] = None,
        *,
        checkpoint_manager: Optional[CheckpointManager] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] = _now_ms,
        logger: Optional[logging.Logger] = None,
    ):
        options = dict(options or {})
        self.max_phases = int(options.get("max_phases", 50))
        self.tension_threshold = float(options.get("tension_threshold", 0.5))
        self.stasis_window = int(options.get("stasis_window", 3))
        self.save_interval = int(options.get("save_interval", 10))
        self.output_dir = options.get("output_dir", "./output")
        self.phase_delay_ms = int(options.get("phase_delay_ms", 500))
        self.write_outputs = bool(options.get("write_outputs", True))

        if self.max_phases < 1:
            raise InvalidOption(f"max_phases must be >= 1, got {self.max_phases}")
        if self.stasis_window < 1:
            raise InvalidOption(f"stasis_window must be >= 1, got {self.stasis_window}")
        if self.save_interval < 1:
            raise InvalidOption(f"save_interval must be >= 1, got {self.save_interval}")
        if self.phase_delay_ms < 0 or math.isnan(self.tension_threshold):
            raise InvalidOption("phase_delay_ms must be >= 0 and tension_threshold a number")

        self.session = session
        self.state = LoopState()
        self.log: List[InteractionRecord] = []
        self.errors: List[Dict[str, Any]] = []
        self.events = ListenerSet()
        self.checkpoints = checkpoint_manager or CheckpointManager(self.output_dir)
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or logging.getLogger("phasecrawl.discovery")
        self._start_ms: Optional[int] = None
        self._end_ms: Optional[int] = None
        self.start_url = ""

    # ───────── convenience views ─────────

    @property
    def phase(self) -> int:
        return self.state.phase

    @property
    def batch_size(self) -> int:
        return self.state.batch_size

    @property
    def tensions(self) -> List[float]:
        return list(self.state.tensions)

    @property
    def discovered(self) -> Dict[str, Discovery]:
        return dict(self.state.discovered)

    @property
    def stasis(self) -> bool:
        return self.state.stasis

    def on(self, event: str, listener) -> None:
        self.events.on(event, listener)

    # ───────── one phase ─────────

    def record_discoveries(self, links: List[Discovery], kind: InteractionKind) -> int:
        """Insert unseen links and log them. Returns the number of new links."""
        state = self.state
        new_count = 0
        for link in links:
            if not link.url or link.url in state.discovered:
                continue
            now = self._clock()
            stamped = replace(link, discovered_at_phase=state.phase, discovered_at_timestamp=now)
            state.discovered[link.url] = stamped
            self.log.append(InteractionRecord(
                discovery=stamped,
                phase=state.phase,
                interaction_kind=kind,
                batch_size_at_time=state.batch_size,
                timestamp=now,
            ))
            new_count += 1
        return new_count

    def _check_stasis(self) -> None:
        state = self.state
        recent = state.tensions[-self.stasis_window:]
        if len(recent) >= self.stasis_window and all(t == 0 for t in recent):
            state.stasis = True
            self._logger.info("🧊 Stasis detected - no new discoveries in recent phases")
        if state.phase >= self.max_phases:
            state.stasis = True
            self._logger.info(f"🏁 Phase limit ({self.max_phases}) reached")

    async def phase_shift(self) -> None:
        """Run a single phase. No-op once stasis has been reached."""
        state = self.state
        if state.stasis:
            return

        kind = interaction_for_phase(state.phase)
        metrics = get_metrics()
        started = time.monotonic()
        self.events.emit("phaseStart", {"phase": state.phase, "interaction": kind.value})
        self._logger.info(f"[Phase {state.phase}] Executing {kind.value}...")

        try:
            links = await self.session.interact(kind)
            new_count = self.record_discoveries(links, kind)
            tension = new_count / state.batch_size
            state.tensions.append(tension)
            self._logger.debug(f"Phase {state.phase}: {new_count} new links, tension: {tension:.2f}")

            previous = state.batch_size
            state.batch_size = adapt_batch_size(previous, tension, self.tension_threshold)
            if state.batch_size > previous:
                self._logger.info(f"-> Tension high ({tension:.2f}): Expanding batch to {state.batch_size}")
            elif state.batch_size < previous:
                self._logger.info(f"-> Tension zero: Contracting batch to {state.batch_size}")

            metrics.discoveries_total.inc(new_count)
            metrics.tension.set(tension)
            metrics.batch_size.set(state.batch_size)
            self.events.emit("phaseComplete", {
                "phase": state.phase,
                "tension": tension,
                "discovered": len(state.discovered),
            })
        except TimingAnomaly:
            raise
        except Exception as e:
            entry = e.to_dict() if isinstance(e, PhaseCrawlError) else {
                "kind": "InteractionError", "message": str(e),
            }
            entry["phase"] = state.phase
            self.errors.append(entry)
            self._logger.error(f"❌ Phase {state.phase} failed: {e}")
            self.events.emit("phaseError", {"phase": state.phase, "error": e})
        finally:
            metrics.phase_duration.observe(time.monotonic() - started)

        # a failed phase still counts towards the phase cap
        self._check_stasis()
        state.phase += 1
        if state.phase % self.save_interval == 0:
            self.checkpoints.save_checkpoint(state.phase, state.discovered, state.tensions)

    # ───────── full run ─────────

    async def run(self, start_url: str) -> Dict[str, Any]:
        self._start_ms = self._clock()
        self.start_url = start_url
        self.events.emit("crawlStart", {"url": start_url})
        self._logger.info(f"🚀 Starting discovery for {start_url}...")

        try:
            await self.session.initialize(start_url)

            while not self.state.stasis:
                await self.phase_shift()
                if not self.state.stasis:
                    await self._sleep(self.phase_delay_ms * self.state.batch_size / 1000)

            self._end_ms = self._clock()
            self.finalize()
            return self.report()
        except Exception as e:
            self._logger.error(f"❌ Crawl failed: {e}")
            self.events.emit("crawlError", {"error": e})
            raise
        finally:
            await self.session.close()
            self.events.emit("crawlEnd", {})

    def finalize(self) -> List[str]:
        self._logger.info(f"Stasis reached after {self.state.phase} phases")
        self._logger.info(f"Total unique links: {len(self.state.discovered)}")
        if not self.write_outputs:
            return []
        return DataSynthesizer(self.log).write_all(self.output_dir)

    def report(self) -> Dict[str, Any]:
        end = self._end_ms if self._end_ms is not None else self._clock()
        start = self._start_ms if self._start_ms is not None else end
        return {
            "durationSeconds": (end - start) / 1000,
            "phases": self.state.phase,
            "uniqueDiscoveries": len(self.state.discovered),
            "averageTension": mean(self.state.tensions),
            "finalBatchSize": self.state.batch_size,
            "sessionStats": self.session.stats(),
            "url": self.start_url,
            "errors": len(self.errors),
        }
