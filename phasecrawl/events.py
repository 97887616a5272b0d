from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

Listener = Callable[[Dict[str, Any]], Any]

logger = logging.getLogger("phasecrawl.events")


class ListenerSet:
    """Explicit per-owner listener registry. Emission is synchronous."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        handlers = self._listeners.get(event, [])
        if listener in handlers:
            handlers.remove(listener)

    def emit(self, event: str, payload: Dict[str, Any] | None = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload or {})
            except Exception as e:
                # listeners are observers; a broken one must not stop the run
                logger.warning(f"⚠️ Listener for '{event}' failed: {e}")

    def count(self, event: str) -> int:
        return len(self._listeners.get(event, []))
