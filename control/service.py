"""Browser control facade.

:class:`BrowserControl` bundles the rate limiter, session registry and action
executor into one injectable object.  The web layer keeps a single instance
on ``app.state``; tests build their own with a fake driver.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from guard.security import SecurityFinding, Verdict, detect_prompt_injection, validate_url
from limiter import RateLimitResult, UserRateLimiter
from log.record import EventSink
from sessions.manager import SessionRegistry, SessionStore
from sessions.session import BrowserSession
from tools.browser_session import BrowserDriver

from .actions import Action, Navigate, parse_action
from .errors import RateLimitExceeded
from .executor import ActionExecutor, ActionResult

logger = logging.getLogger(__name__)


class BrowserControl:
    """Entry point for creating sessions and running actions on them."""

    def __init__(
        self,
        driver: BrowserDriver,
        store: Optional[SessionStore] = None,
        events: Optional[EventSink] = None,
        limiter: Optional[UserRateLimiter] = None,
        action_timeout: float = 30.0,
        selector_timeout: float = 10.0,
        max_session_age: float = 120.0,
    ) -> None:
        self.events = events
        self.limiter = limiter or UserRateLimiter()
        self.registry = SessionRegistry(driver, store=store, max_age=max_session_age)
        self.executor = ActionExecutor(
            self.registry, events=events, timeout=action_timeout, selector_timeout=selector_timeout
        )
        self._reaper: Optional[asyncio.Task] = None

    # Screening is exposed directly so callers can vet text bound for an AI
    # prompt without going through an action.
    @staticmethod
    def detect_prompt_injection(text: str) -> SecurityFinding:
        return detect_prompt_injection(text)

    @staticmethod
    def validate_url(url: str) -> Verdict:
        return validate_url(url)

    def check_rate_limit(self, user_id: str) -> RateLimitResult:
        return self.limiter.check(user_id)

    async def create_session(
        self,
        user_id: str,
        url: Optional[str] = None,
        chat_enabled: bool = False,
        navigation_enabled: bool = False,
        cookies: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> str:
        """Open a session for ``user_id``; each opened session uses one unit of the hourly budget.

        When ``url`` is given it is screened before the budget is touched and then
        loaded as an ordinary ``navigate`` action, so its cost shows up in the
        session's ``credits_used``.  A failed initial load leaves the session
        open on ``about:blank``.

        Raises
        ------
        RateLimitExceeded
            When the user has used up the budget for the current window.
        SecurityViolation, InvalidURL
            When ``url`` fails screening.
        """
        initial = Navigate(url=url) if url else None
        if initial is not None:
            self.executor.vet(initial, user_id)
        budget = self.check_rate_limit(user_id)
        if not budget.allowed:
            logger.info("Rate limit reached for user %s", user_id)
            raise RateLimitExceeded(remaining=0)
        session_id = await self.registry.create_session(
            user_id,
            chat_enabled=chat_enabled,
            navigation_enabled=navigation_enabled,
            cookies=cookies,
        )
        if initial is not None:
            result = await self.executor.execute_action(session_id, initial)
            if not result.success:
                logger.warning("Initial navigation for session %s failed: %s", session_id, result.error)
        return session_id

    async def execute_action(self, session_id: str, action: Union[Action, Dict[str, Any]]) -> ActionResult:
        """Validate (when given a raw payload), screen and run one action."""
        if isinstance(action, dict):
            try:
                action = parse_action(action)
            except ValidationError as exc:
                kind = str(action.get("type", "unknown"))
                first = exc.errors()[0] if exc.errors() else {}
                message = f"Invalid action: {first.get('msg', 'malformed parameters')}"
                return ActionResult(success=False, action=kind, error=message, error_kind="InvalidAction")
        return await self.executor.execute_action(session_id, action)

    async def close_session(self, session_id: str) -> None:
        await self.registry.close_session(session_id)

    def get_session(self, session_id: str) -> Optional[BrowserSession]:
        return self.registry.get(session_id)

    def user_sessions(self, user_id: str) -> List[str]:
        return self.registry.user_sessions(user_id)

    # --- lifecycle ---------------------------------------------------------

    async def _reap(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            expired = await self.registry.cleanup_expired()
            purged = self.limiter.purge_expired()
            if expired or purged:
                logger.info("Closed %d expired sessions, purged %d rate-limit windows", len(expired), purged)

    def start_reaper(self, interval: float = 300.0) -> None:
        """Periodically close expired sessions and drop stale rate windows."""
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap(interval))

    async def shutdown(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper
            self._reaper = None
        await self.registry.close_all()
