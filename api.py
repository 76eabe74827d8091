"""REST API routes for browser sessions, actions, AI navigation and page chat."""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Dict, List, Optional

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

import config
from auth.router import get_current_user
from control.actions import action_cost, parse_action
from control.chat import ask, chat_history, clear_history
from control.errors import BrowserControlError, PolicyRejection
from control.navigation import EXAMPLE_COMMANDS, PLANNING_COST, plan_command, run_plan, screen_command
from control.service import BrowserControl
from log.replay import history
from sessions.manager import JsonSessionStore
from sessions.session import ACTIVE, PAUSED, SYNCED, BrowserSession
from users.auth import UserManager
from users.deps import get_browser_control, get_session_store, get_user_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/browser", tags=["Browser"])

# Rejections that mean the request itself was refused; anything else is
# reported as a failed action with a 200.
_REJECTION_STATUS = {
    "SecurityViolation": 400,
    "InvalidURL": 400,
    "InvalidAction": 400,
    "SessionNotFound": 404,
}


class SessionCreateRequest(BaseModel):
    url: Optional[str] = None
    chat_enabled: bool = False
    navigation_enabled: bool = False
    use_synced_cookies: bool = False


class SessionCloseRequest(BaseModel):
    session_id: str


class ActionRequest(BaseModel):
    session_id: str
    action: Dict[str, Any]


class NavigateRequest(BaseModel):
    session_id: str
    command: str
    current_url: Optional[str] = None
    page_context: Optional[str] = None


class CookieSyncRequest(BaseModel):
    cookies: Dict[str, List[Dict[str, Any]]]
    timestamp: Optional[float] = Field(default=None, description="Client sync time, epoch milliseconds")


def _owned_session(control: BrowserControl, session_id: str, user: str) -> BrowserSession:
    meta = control.get_session(session_id)
    if meta is None or meta.owner != user:
        raise HTTPException(status_code=404, detail="session not found")
    return meta


def _record(request: Request, event: str, data: Dict[str, Any]) -> None:
    recorder = getattr(request.app.state, "recorder", None)
    if recorder is not None:
        recorder.log(event, data)


@router.post("/session")
async def create_session(
    req: SessionCreateRequest,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    users: UserManager = Depends(get_user_manager),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    """Open a browser session; costs ``BROWSER_SESSION_COST`` credits."""

    if users.plan(user) == "free":
        raise HTTPException(status_code=403, detail="Browser control requires Pro or Enterprise plan")
    users.require_credits(user, config.BROWSER_SESSION_COST)

    cookies = None
    if req.use_synced_cookies:
        synced = store.find_synced(user)
        cookies = synced.cookies if synced else None

    session_id = await control.create_session(
        user,
        url=req.url,
        chat_enabled=req.chat_enabled,
        navigation_enabled=req.navigation_enabled,
        cookies=cookies,
    )
    meta = control.get_session(session_id)
    # credits_used so far is the cost of loading the initial URL, if any.
    charge = config.BROWSER_SESSION_COST + meta.credits_used
    remaining = users.debit(user, charge, strict=False)
    meta.credits_used += config.BROWSER_SESSION_COST
    control.registry.persist(meta)
    return {
        "success": True,
        "session_id": session_id,
        "session": meta.to_dict(include_cookies=False),
        "credits_used": charge,
        "credits_remaining": remaining,
        "rate_limit_remaining": control.limiter.peek(user).remaining,
    }


@router.get("/session")
async def list_sessions(
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    """List the caller's active and paused sessions, newest first."""

    sessions = [s for s in store.list(user) if s.status in (ACTIVE, PAUSED)][:20]
    return {
        "success": True,
        "sessions": [{**s.to_dict(include_cookies=False), "live": s.session_id in control.registry} for s in sessions],
    }


@router.delete("/session")
async def close_session(
    req: SessionCloseRequest,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    """Close a session. Closing an already closed session succeeds."""

    meta = control.get_session(req.session_id)
    if meta is None:
        # Not live in this process; it may be a closed or orphaned record.
        meta = store.load(req.session_id)
        if meta is None or meta.owner != user:
            raise HTTPException(status_code=404, detail="session not found")
        if not meta.is_closed:
            meta.mark_closed()
            store.save(meta)
        return {"success": True}
    if meta.owner != user:
        raise HTTPException(status_code=404, detail="session not found")
    await control.close_session(req.session_id)
    return {"success": True}


@router.post("/action")
async def execute_action(
    req: ActionRequest,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    users: UserManager = Depends(get_user_manager),
):
    """Run one action; its fixed cost is charged only if it succeeds."""

    _owned_session(control, req.session_id, user)
    try:
        action = parse_action(req.action)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Invalid action: {first.get('msg', 'malformed')}", "error_kind": "InvalidAction"},
        )
    cost = action_cost(action)
    available = users.require_credits(user, cost)

    result = await control.execute_action(req.session_id, action)
    body = result.to_dict()
    if result.success:
        body["credits_used"] = cost
        body["credits_remaining"] = users.debit(user, cost, strict=False)
    else:
        body["credits_used"] = 0
        body["credits_remaining"] = available
    status = _REJECTION_STATUS.get(result.error_kind or "", 200)
    return JSONResponse(status_code=status, content=body)


@router.post("/navigate")
async def navigate(
    req: NavigateRequest,
    request: Request,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    users: UserManager = Depends(get_user_manager),
) -> dict:
    """Plan a natural-language command with the LLM and run it."""

    try:
        screen_command(req.command, req.page_context)
    except PolicyRejection as exc:
        _record(request, "security_incident", {"type": "navigation_command", "user": user, "session_id": req.session_id, **exc.details})
        raise
    meta = _owned_session(control, req.session_id, user)
    if not meta.navigation_enabled:
        raise HTTPException(status_code=403, detail="AI navigation not enabled for this session")
    users.require_credits(user, config.NAVIGATION_MIN_CREDITS)

    try:
        plan = await asyncio.to_thread(plan_command, req.command, req.current_url, req.page_context)
    except (ValueError, requests.RequestException) as exc:
        raise HTTPException(status_code=400, detail=f"Failed to parse command: {exc}") from exc

    result = await run_plan(control, req.session_id, plan)
    remaining = users.debit(user, result.credits, strict=False)
    live = control.get_session(req.session_id)
    if live is not None:
        live.credits_used += PLANNING_COST
        control.registry.persist(live)
    _record(
        request,
        "ai_navigation",
        {
            "user": user,
            "session_id": req.session_id,
            "command": plan.description or req.command,
            "actions": result.total_actions,
            "successful_actions": result.successful_actions,
            "credits": result.credits,
            "execution_time": result.execution_time,
        },
    )
    return {
        "success": result.success,
        "command": {
            "original": req.command,
            "parsed": plan.description,
            "reasoning": plan.reasoning,
            "actions": plan.actions,
        },
        "execution": {
            "total_actions": result.total_actions,
            "successful_actions": result.successful_actions,
            "results": result.to_dict()["results"],
            "execution_time": result.execution_time,
        },
        "usage": {"credits": result.credits, "credits_remaining": remaining},
    }


@router.get("/navigate/history")
async def navigation_history(request: Request, limit: int = 10, user: str = Depends(get_current_user)) -> dict:
    recorder = getattr(request.app.state, "recorder", None)
    path = getattr(recorder, "path", None)
    entries = history(path, "ai_navigation", user, min(max(limit, 1), 50)) if path else []
    return {"success": True, "history": entries}


@router.get("/navigate/examples")
async def navigation_examples() -> dict:
    return {"examples": EXAMPLE_COMMANDS}


class ChatRequest(BaseModel):
    session_id: str
    message: str = Field(min_length=1)


def _session_record(control: BrowserControl, store: JsonSessionStore, session_id: str, user: str) -> BrowserSession:
    meta = control.get_session(session_id) or store.load(session_id)
    if meta is None or meta.owner != user:
        raise HTTPException(status_code=404, detail="session not found")
    return meta


@router.post("/chat")
async def chat(
    req: ChatRequest,
    request: Request,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    users: UserManager = Depends(get_user_manager),
) -> dict:
    """Ask the LLM about the page open in a chat-enabled session."""

    meta = _owned_session(control, req.session_id, user)
    if not meta.chat_enabled:
        raise HTTPException(status_code=403, detail="Chat not enabled for this session")
    users.require_credits(user, config.CHAT_MIN_CREDITS)

    try:
        reply = await ask(control, request.app.state.recorder, req.session_id, user, req.message)
    except requests.RequestException as exc:
        logger.warning("Chat model call failed for session %s: %s", req.session_id, exc)
        raise HTTPException(status_code=502, detail="Failed to process message") from exc
    remaining = users.debit(user, reply.credits, strict=False)
    return {
        "success": True,
        "message": reply.message,
        "context": {"url": reply.url, "title": reply.title, "word_count": reply.word_count},
        "usage": {"credits": reply.credits, "credits_remaining": remaining},
        "quick_actions": reply.quick_actions,
    }


@router.get("/chat")
async def get_chat(
    session_id: str,
    request: Request,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    meta = _session_record(control, store, session_id, user)
    return {
        "success": True,
        "messages": chat_history(request.app.state.recorder, session_id),
        "session_info": {"url": meta.url, "title": meta.title, "chat_enabled": meta.chat_enabled},
    }


@router.delete("/chat")
async def delete_chat(
    session_id: str,
    request: Request,
    user: str = Depends(get_current_user),
    control: BrowserControl = Depends(get_browser_control),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    """Start a new conversation; earlier turns stay in the audit log."""

    _session_record(control, store, session_id, user)
    clear_history(request.app.state.recorder, session_id, user)
    return {"success": True}


@router.post("/session/cookies")
async def sync_cookies(
    req: CookieSyncRequest,
    user: str = Depends(get_current_user),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    """Store cookies pushed by the browser extension in the user's synced session."""

    synced_at = (req.timestamp / 1000) if req.timestamp else time.time()
    record = store.find_synced(user)
    if record is None:
        record = BrowserSession(session_id=secrets.token_urlsafe(24), owner=user, url="", status=SYNCED)
    record.cookies = req.cookies
    record.last_sync_at = synced_at
    store.save(record)
    cookie_count = sum(len(v) for v in req.cookies.values() if isinstance(v, list))
    logger.info("Synced %d cookies across %d domains for user %s", cookie_count, len(req.cookies), user)
    return {
        "success": True,
        "session_id": record.session_id,
        "domains": len(req.cookies),
        "cookies": cookie_count,
    }


@router.get("/session/cookies")
async def get_cookies(
    domain: Optional[str] = None,
    user: str = Depends(get_current_user),
    store: JsonSessionStore = Depends(get_session_store),
) -> dict:
    record = store.find_synced(user)
    if record is None or not record.cookies:
        return {"success": True, "cookies": [], "message": "No cookies stored"}
    if domain:
        return {"success": True, "domain": domain, "cookies": record.cookies.get(domain, []), "last_sync": record.last_sync_at}
    return {"success": True, "cookies": record.cookies, "domains": list(record.cookies), "last_sync": record.last_sync_at}


async def browser_error_handler(request: Request, exc: BrowserControlError) -> JSONResponse:
    """Map core rejections that escape a route onto their HTTP status."""
    return JSONResponse(status_code=exc.status_code, content={"success": False, **exc.to_dict()})
