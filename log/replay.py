"""Read back recorded audit events."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterator, List, Optional


def replay(path: Path, event: Optional[str] = None) -> Iterator[Dict]:
    """Yield log entries from ``path`` in order, optionally of one event type."""

    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                data = json.loads(line)
                if event is None or data.get("event") == event:
                    yield data


def history(path: Path, event: str, user: str, limit: int = 10) -> List[Dict]:
    """Return the ``limit`` most recent ``event`` entries for ``user``."""

    entries = [e for e in replay(path, event) if e.get("user") == user]
    return list(reversed(entries))[:limit]


def conversation(path: Path, session_id: str) -> List[Dict]:
    """Return ``chat_message`` entries for ``session_id`` since its last ``chat_cleared``."""

    messages: List[Dict] = []
    for entry in replay(path):
        if entry.get("session_id") != session_id:
            continue
        if entry.get("event") == "chat_cleared":
            messages = []
        elif entry.get("event") == "chat_message":
            messages.append(entry)
    return messages
