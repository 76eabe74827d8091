from __future__ import annotations

"""Browser session metadata.

A :class:`BrowserSession` is the durable half of a session: who owns it, where
its page was last seen and how many credits it has consumed.  The live page
handle is held separately by :class:`~sessions.manager.SessionRegistry` and is
never serialised, so metadata reloaded after a restart describes a session
that can no longer execute actions.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ACTIVE = "active"
PAUSED = "paused"
CLOSED = "closed"
SYNCED = "synced"
STATUSES = (ACTIVE, PAUSED, CLOSED, SYNCED)


@dataclass
class BrowserSession:
    """Metadata for one user's automated browser session.

    Parameters
    ----------
    session_id:
        Random, unguessable identifier.
    owner:
        Identifier of the user the session belongs to.
    url, title:
        Last known location of the page.
    status:
        One of ``active``, ``paused``, ``closed`` or ``synced``.
    cookies:
        Cookie jar pushed by the browser extension, keyed by domain.
    """

    session_id: str
    owner: str
    url: str = "about:blank"
    title: str = ""
    status: str = ACTIVE
    chat_enabled: bool = False
    navigation_enabled: bool = False
    credits_used: int = 0
    created_at: float = field(default_factory=time.time)
    closed_at: Optional[float] = None
    last_sync_at: Optional[float] = None
    cookies: Optional[Dict[str, List[Dict[str, Any]]]] = None

    def __post_init__(self) -> None:
        if self.status not in STATUSES:
            raise ValueError(f"unknown session status: {self.status}")

    @property
    def is_closed(self) -> bool:
        return self.status == CLOSED

    def mark_closed(self) -> None:
        self.status = CLOSED
        if self.closed_at is None:
            self.closed_at = time.time()

    def to_dict(self, include_cookies: bool = True) -> Dict[str, Any]:
        """Serialise session metadata to a dictionary."""
        data = asdict(self)
        if not include_cookies:
            data.pop("cookies", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BrowserSession":
        """Reconstruct a :class:`BrowserSession` from stored metadata."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
