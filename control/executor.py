"""Action execution against a live browser session.

Each call moves one action through ``validated -> screened -> dispatched ->
succeeded | failed``.  The action arrives already validated (it is a typed
model from :mod:`control.actions`).  Screening runs every free-form parameter
through the injection check, plus the URL policy for ``navigate`` and the
script policy for ``evaluate``; a rejected action never reaches the page.
Dispatch happens under the session's lease and inside a timeout.

Whatever goes wrong is reported in the returned :class:`ActionResult`;
callers never have to catch driver exceptions.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from guard.security import check_script, detect_prompt_injection, detect_xss, validate_url
from log.record import EventSink
from sessions.manager import SessionRegistry
from sessions.session import BrowserSession
from tools.browser_session import PageHandle

from .actions import ACTION_COSTS, Action, Click, Evaluate, Extract, Navigate, Screenshot, TypeText
from .errors import (
    ActionFault,
    ActionTimeout,
    BrowserControlError,
    DriverError,
    InvalidURL,
    PageCrashed,
    PolicyRejection,
    SecurityViolation,
    SessionFault,
    SessionNotFound,
)

logger = logging.getLogger(__name__)

MAX_SCREENSHOT_BYTES = 5 * 1024 * 1024
MAX_HTML_CHARS = 50_000


@dataclass
class ActionResult:
    """Structured outcome of one action."""

    success: bool
    action: str
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = False
    cost: int = 0
    patterns: List[str] = field(default_factory=list)
    security_warnings: List[str] = field(default_factory=list)
    html: Optional[str] = None

    @classmethod
    def failed(cls, action: str, exc: BrowserControlError, warnings: Optional[List[str]] = None) -> "ActionResult":
        return cls(
            success=False,
            action=action,
            error=exc.message,
            error_kind=exc.kind,
            retryable=exc.retryable,
            patterns=list(getattr(exc, "patterns", [])),
            security_warnings=list(warnings or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _host(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


class ActionExecutor:
    """Screen and run typed actions on pages held by a :class:`SessionRegistry`.

    Parameters
    ----------
    registry:
        Source of live pages and per-session serialisation.
    events:
        Audit port; receives ``security_incident``, ``security_warning`` and
        ``action`` events.
    timeout:
        Seconds allowed for one dispatch before it is cancelled.
    selector_timeout:
        Seconds to wait for a selector before reporting it missing.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        events: Optional[EventSink] = None,
        timeout: float = 30.0,
        selector_timeout: float = 10.0,
    ) -> None:
        self.registry = registry
        self.events = events
        self.timeout = timeout
        self.selector_timeout = selector_timeout
        self._handlers: Dict[type, Callable[[PageHandle, Any, List[str]], Awaitable[Any]]] = {
            Navigate: self._navigate,
            Click: self._click,
            TypeText: self._type,
            Screenshot: self._screenshot,
            Extract: self._extract,
            Evaluate: self._evaluate,
        }
        missing = {t.model_fields["type"].default for t in self._handlers} ^ set(ACTION_COSTS)
        if missing:
            raise RuntimeError(f"actions without a handler or cost: {sorted(missing)}")

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.events is None:
            return
        try:
            self.events.log(event, data)
        except Exception as exc:  # pragma: no cover - depends on the sink
            logger.warning("Audit sink rejected %s event: %s", event, exc)

    # --- screening ---------------------------------------------------------

    def screen(self, action: Action) -> None:
        """Raise a :class:`PolicyRejection` if ``action`` must not run."""
        matched: List[str] = []
        for value in action.text_fields().values():
            finding = detect_prompt_injection(value)
            matched.extend(p for p in finding.patterns if p not in matched)
        if matched:
            raise SecurityViolation(matched)
        if isinstance(action, Navigate):
            verdict = validate_url(action.url)
            if not verdict.valid:
                raise InvalidURL(verdict.reason or "URL not allowed")
        if isinstance(action, Evaluate):
            finding = check_script(action.code)
            if finding:
                raise SecurityViolation(finding.patterns, "Dangerous code patterns detected")

    def vet(self, action: Action, owner: str, session_id: Optional[str] = None) -> None:
        """Screen ``action`` for ``owner``, recording an incident when it is blocked."""
        try:
            self.screen(action)
        except SecurityViolation as exc:
            logger.warning("Blocked %s action in session %s: %s", action.type, session_id, ", ".join(exc.patterns))
            self._emit(
                "security_incident",
                {"type": "prompt_injection", "user": owner, "session_id": session_id, "action": action.type, "patterns": exc.patterns},
            )
            raise
        except PolicyRejection as exc:
            logger.info("Rejected %s action in session %s: %s", action.type, session_id, exc.message)
            raise

    # --- dispatch ----------------------------------------------------------

    async def _navigate(self, page: PageHandle, action: Navigate, warnings: List[str]) -> Dict[str, Any]:
        await page.goto(action.url, timeout=self.timeout)
        final = page.url
        verdict = validate_url(final)
        if not verdict.valid:
            # A redirect landed somewhere we would have refused to load.
            await page.goto("about:blank", timeout=self.timeout)
            raise InvalidURL(f"redirected to a blocked location ({verdict.reason})")
        if _host(final) != _host(action.url):
            warnings.append(f"Navigation ended on a different domain: {_host(final)}")
        return {"url": final, "title": await page.title()}

    async def _click(self, page: PageHandle, action: Click, warnings: List[str]) -> Dict[str, Any]:
        await page.click(action.selector, timeout=self.selector_timeout)
        return {"clicked": action.selector}

    async def _type(self, page: PageHandle, action: TypeText, warnings: List[str]) -> Dict[str, Any]:
        await page.type(action.selector, action.value, timeout=self.selector_timeout)
        return {"typed": action.selector}

    async def _screenshot(self, page: PageHandle, action: Screenshot, warnings: List[str]) -> Dict[str, Any]:
        image = await page.screenshot()
        if len(image) > MAX_SCREENSHOT_BYTES:
            warnings.append(f"Screenshot size ({len(image)} bytes) exceeds limit")
        return {"screenshot": base64.b64encode(image).decode("ascii"), "format": "png"}

    async def _extract(self, page: PageHandle, action: Extract, warnings: List[str]) -> Dict[str, Any]:
        extracted = await page.extract(action.selector, action.attribute, timeout=self.selector_timeout)
        if extracted and detect_xss(extracted):
            warnings.append("Potential XSS detected in extracted content")
        return {"extracted": extracted}

    async def _evaluate(self, page: PageHandle, action: Evaluate, warnings: List[str]) -> Dict[str, Any]:
        return {"result": await page.evaluate(action.code)}

    async def _dispatch(self, meta: BrowserSession, page: PageHandle, action: Action) -> Tuple[Any, List[str], Optional[str]]:
        warnings: List[str] = []
        start_host = _host(page.url)
        data = await self._handlers[type(action)](page, action, warnings)
        end_host = _host(page.url)
        if not isinstance(action, Navigate) and start_host and end_host != start_host:
            warnings.append(f"Page navigated to unexpected domain: {end_host or page.url}")
        html = None
        if not isinstance(action, Screenshot):
            html = await page.content()
            if len(html) > MAX_HTML_CHARS:
                warnings.append(f"Page content ({len(html)} characters) truncated")
                html = html[:MAX_HTML_CHARS]
        if isinstance(action, Navigate):
            meta.url, meta.title = data["url"], data["title"]
        elif end_host != start_host:
            meta.url = page.url
        return data, warnings, html

    # --- entry point -------------------------------------------------------

    async def execute_action(self, session_id: str, action: Action) -> ActionResult:
        """Run ``action`` on the session's page and report the outcome."""
        kind = action.type
        try:
            self.registry.get_page(session_id)
        except SessionNotFound as exc:
            return ActionResult.failed(kind, exc)
        owner = self.registry.get(session_id).owner

        try:
            self.vet(action, owner, session_id)
        except PolicyRejection as exc:
            return ActionResult.failed(kind, exc)

        try:
            async with self.registry.lease(session_id) as (meta, page):
                try:
                    data, warnings, html = await asyncio.wait_for(self._dispatch(meta, page, action), self.timeout)
                except asyncio.TimeoutError as exc:
                    raise ActionTimeout(f"{kind} did not finish within {self.timeout:g}s") from exc
                cost = ACTION_COSTS[kind]
                meta.credits_used += cost
        except (SessionNotFound, ActionFault, PolicyRejection) as exc:
            self._emit("action", {"user": owner, "session_id": session_id, "action": kind, "success": False, "error_kind": exc.kind})
            return ActionResult.failed(kind, exc)
        except (PageCrashed, DriverError) as exc:
            await self.registry.discard(session_id, f"{exc.kind}: {exc.message}")
            self._emit("action", {"user": owner, "session_id": session_id, "action": kind, "success": False, "error_kind": exc.kind})
            return ActionResult.failed(kind, exc)
        except SessionFault as exc:
            return ActionResult.failed(kind, exc)
        except Exception as exc:
            logger.exception("Unexpected failure running %s in session %s", kind, session_id)
            await self.registry.discard(session_id, repr(exc))
            return ActionResult.failed(kind, DriverError(f"browser failure: {exc}"))

        self.registry.persist(meta)
        if warnings:
            self._emit("security_warning", {"user": owner, "session_id": session_id, "action": kind, "warnings": warnings})
        self._emit("action", {"user": owner, "session_id": session_id, "action": kind, "success": True, "cost": cost})
        return ActionResult(success=True, action=kind, data=data, cost=cost, security_warnings=warnings, html=html)
