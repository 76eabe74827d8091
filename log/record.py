"""JSON lines audit recorder.

:class:`ActionRecorder` is the side-effect port of the browser core: the
executor reports security incidents, warnings and action outcomes through
``log(event, data)`` and never waits on the result.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def log(self, event: str, data: Dict[str, Any]) -> None: ...


class ActionRecorder:
    """Append structured audit events to a log file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log(self, event: str, data: Dict[str, Any]) -> None:
        entry = {"ts": time.time(), "event": event, **data}
        try:
            with self._lock, self.path.open("a", encoding="utf-8") as f:
                json.dump(entry, f, ensure_ascii=False, default=str)
                f.write("\n")
        except OSError as exc:
            logger.warning("Could not record %s event: %s", event, exc)


class MemoryRecorder:
    """Keep events in a list; used where no audit file is configured."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def log(self, event: str, data: Dict[str, Any]) -> None:
        self.events.append({"ts": time.time(), "event": event, **data})

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == event]
