from __future__ import annotations

"""Session registry.

:class:`SessionRegistry` maps session ids to live browser pages.  It is
in-process state only: metadata is handed to a :class:`SessionStore` for
persistence, but page handles die with the process and are never reattached.

Access to a page is serialised per session.  :meth:`SessionRegistry.lease`
hands out the page under a FIFO lock so two actions for one session never
touch the DOM at the same time, while different sessions proceed in parallel.
"""

import asyncio
import contextlib
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from control.errors import SessionNotFound
from tools.browser_session import BrowserDriver, PageHandle

from .session import CLOSED, SYNCED, BrowserSession

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Persistence port for session metadata."""

    def save(self, session: BrowserSession) -> None: ...

    def load(self, session_id: str) -> Optional[BrowserSession]: ...

    def list(self, owner: Optional[str] = None) -> List[BrowserSession]: ...


class JsonSessionStore:
    """Store each session's metadata as ``<storage>/<session_id>/session.json``."""

    def __init__(self, storage: Path) -> None:
        self.storage = storage
        self.storage.mkdir(parents=True, exist_ok=True)

    def save(self, session: BrowserSession) -> None:
        path = self.storage / session.session_id / "session.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f, ensure_ascii=False, indent=2)

    def load(self, session_id: str) -> Optional[BrowserSession]:
        path = self.storage / session_id / "session.json"
        if not path.is_file():
            return None
        return BrowserSession.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list(self, owner: Optional[str] = None) -> List[BrowserSession]:
        """Return stored sessions, newest first, optionally for one owner."""
        found = []
        for path in self.storage.glob("*/session.json"):
            session = BrowserSession.from_dict(json.loads(path.read_text(encoding="utf-8")))
            if owner is None or session.owner == owner:
                found.append(session)
        return sorted(found, key=lambda s: s.created_at, reverse=True)

    def find_synced(self, owner: str) -> Optional[BrowserSession]:
        for session in self.list(owner):
            if session.status == SYNCED:
                return session
        return None


@dataclass
class _LiveSession:
    meta: BrowserSession
    page: Optional[PageHandle]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    started: float = field(default_factory=time.monotonic)


def flatten_cookies(jar: Optional[Dict[str, List[Dict[str, Any]]]]) -> List[Dict[str, Any]]:
    """Turn a domain-keyed cookie jar into the flat list the driver accepts."""
    if not jar:
        return []
    cookies = []
    for domain, entries in jar.items():
        for entry in entries or []:
            if not isinstance(entry, dict) or "name" not in entry or "value" not in entry:
                continue
            cookie = {"name": entry["name"], "value": entry["value"], "path": entry.get("path", "/")}
            cookie["domain"] = entry.get("domain", domain)
            for key in ("expires", "httpOnly", "secure", "sameSite"):
                if key in entry:
                    cookie[key] = entry[key]
            cookies.append(cookie)
    return cookies


class SessionRegistry:
    """Create, look up and close live browser sessions.

    Parameters
    ----------
    driver:
        Headless browser driver that opens pages.
    store:
        Optional persistence port; failures there are logged, never raised.
    max_age:
        Seconds after which :meth:`cleanup_expired` closes a session.
    """

    def __init__(self, driver: BrowserDriver, store: Optional[SessionStore] = None, max_age: float = 120.0) -> None:
        self.driver = driver
        self.store = store
        self.max_age = max_age
        self._sessions: Dict[str, _LiveSession] = {}

    def _new_id(self) -> str:
        while True:
            session_id = secrets.token_urlsafe(24)
            if session_id not in self._sessions:
                return session_id

    def persist(self, meta: BrowserSession) -> None:
        if self.store is None:
            return
        try:
            self.store.save(meta)
        except Exception as exc:  # pragma: no cover - depends on the store
            logger.warning("Failed to persist session %s: %s", meta.session_id, exc)

    async def create_session(
        self,
        user_id: str,
        url: Optional[str] = None,
        chat_enabled: bool = False,
        navigation_enabled: bool = False,
        cookies: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> str:
        """Open a fresh page for ``user_id`` and return the new session id.

        ``url`` is recorded as the session's starting location; loading it is
        left to a ``navigate`` action so that it passes the same screening.
        """
        page = await self.driver.open_page(flatten_cookies(cookies))
        session_id = self._new_id()
        meta = BrowserSession(
            session_id=session_id,
            owner=user_id,
            url=url or "about:blank",
            chat_enabled=chat_enabled,
            navigation_enabled=navigation_enabled,
            cookies=cookies,
        )
        self._sessions[session_id] = _LiveSession(meta=meta, page=page)
        logger.info("Created browser session %s for user %s", session_id, user_id)
        self.persist(meta)
        return session_id

    def get(self, session_id: str) -> Optional[BrowserSession]:
        live = self._sessions.get(session_id)
        return live.meta if live else None

    def get_page(self, session_id: str) -> PageHandle:
        """Return the live page for ``session_id`` or raise :class:`SessionNotFound`."""
        live = self._sessions.get(session_id)
        if live is None or live.page is None or live.meta.is_closed:
            raise SessionNotFound(session_id)
        if live.page.is_closed():
            raise SessionNotFound(session_id, "browser page for this session is no longer available")
        return live.page

    @contextlib.asynccontextmanager
    async def lease(self, session_id: str) -> AsyncIterator[tuple[BrowserSession, PageHandle]]:
        """Hold exclusive use of a session's page for the duration of the block."""
        live = self._sessions.get(session_id)
        if live is None:
            raise SessionNotFound(session_id)
        async with live.lock:
            # The session may have been closed while we queued.
            page = self.get_page(session_id)
            yield live.meta, page

    def user_sessions(self, user_id: str) -> List[str]:
        return [sid for sid, live in self._sessions.items() if live.meta.owner == user_id and not live.meta.is_closed]

    async def close_session(self, session_id: str) -> None:
        """Release the page and mark the session closed; repeated calls are no-ops."""
        live = self._sessions.pop(session_id, None)
        if live is None:
            return
        page, live.page = live.page, None
        live.meta.mark_closed()
        if page is not None:
            try:
                await page.close()
            except Exception as exc:
                logger.warning("Error closing page for session %s: %s", session_id, exc)
        logger.info("Closed browser session %s", session_id)
        self.persist(live.meta)

    async def discard(self, session_id: str, reason: str) -> None:
        """Tear down a session whose page can no longer be trusted."""
        logger.error("Tearing down session %s: %s", session_id, reason)
        await self.close_session(session_id)

    async def cleanup_expired(self) -> List[str]:
        """Close sessions that have outlived ``max_age``; returns their ids."""
        now = time.monotonic()
        expired = [sid for sid, live in self._sessions.items() if now - live.started > self.max_age]
        for session_id in expired:
            await self.close_session(session_id)
        return expired

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close_session(session_id)
        await self.driver.shutdown()

    def __contains__(self, session_id: str) -> bool:
        live = self._sessions.get(session_id)
        return live is not None and live.meta.status != CLOSED

    def __len__(self) -> int:
        return len(self._sessions)
