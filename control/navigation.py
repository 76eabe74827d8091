"""AI navigation: turn a natural-language command into browser actions.

The command (and any page context sent with it) is screened before it is put
into the planning prompt, and every planned step is screened again by the
executor before it runs.  Steps run in order and execution stops at the first
failure.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

import requests
from pydantic import BaseModel, Field, ValidationError

import config
from guard.security import detect_prompt_injection, validate_command

from .actions import Action, Evaluate, known_fields, parse_action
from .errors import PolicyRejection, SecurityViolation
from .executor import ActionResult

logger = logging.getLogger(__name__)

PLANNING_COST = 10
MAX_WAIT_MS = 10_000
SCROLL_SCRIPT = "window.scrollBy(0, window.innerHeight)"

SYSTEM_PROMPT = """You are a browser automation assistant. Convert user commands into structured browser actions.

AVAILABLE ACTIONS:
- navigate: go to a URL ({"type": "navigate", "url": "https://..."})
- click: click an element ({"type": "click", "selector": "css"})
- type: type text into an input ({"type": "type", "selector": "css", "value": "text"})
- extract: read text from an element ({"type": "extract", "selector": "css"})
- screenshot: capture the viewport ({"type": "screenshot"})
- wait: pause in milliseconds ({"type": "wait", "wait": 1000})
- scroll: scroll one screen down ({"type": "scroll"})

Reply with a single JSON object:
{"type": "...", "description": "...", "reasoning": "...", "actions": [...]}

Use specific CSS selectors, navigate to a search engine before searching, and
add short waits after clicks that load new content."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class Wait(BaseModel):
    type: Literal["wait"] = "wait"
    wait: int = Field(default=1000, ge=0)


class Scroll(BaseModel):
    type: Literal["scroll"] = "scroll"


Step = Union[Action, Wait, Scroll]


class NavigationPlan(BaseModel):
    type: str = "composite"
    description: str = ""
    reasoning: Optional[str] = None
    actions: List[Dict[str, Any]]


@dataclass
class StepResult:
    action: Dict[str, Any]
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class NavigationResult:
    success: bool
    description: str
    reasoning: Optional[str]
    actions: List[Dict[str, Any]]
    results: List[StepResult] = field(default_factory=list)
    total_actions: int = 0
    successful_actions: int = 0
    credits: int = 0
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def screen_command(command: str, page_context: Optional[str] = None) -> None:
    """Raise :class:`PolicyRejection` if the command may not be planned."""
    verdict = validate_command(command)
    if not verdict.valid:
        raise PolicyRejection(verdict.reason or "invalid command")
    patterns: List[str] = []
    for text in (command, page_context or ""):
        patterns.extend(p for p in detect_prompt_injection(text).patterns if p not in patterns)
    if patterns:
        raise SecurityViolation(patterns)


def call_llm(system: str, prompt: str, history: Optional[List[Dict[str, str]]] = None) -> str:
    """Call the configured chat-completions endpoint and return the reply text.

    ``history`` holds earlier ``{"role", "content"}`` turns placed between the
    system prompt and ``prompt``.
    """
    messages = [{"role": "system", "content": system}]
    messages.extend(history or [])
    messages.append({"role": "user", "content": prompt})
    response = requests.post(
        config.LLM_ENDPOINT,
        json={
            "model": config.LLM_MODEL,
            "messages": messages,
            "max_tokens": config.LLM_MAX_TOKENS,
            "temperature": 0.1,
        },
        timeout=60,
    )
    response.raise_for_status()
    data = response.json()
    return data.get("choices", [{}])[0].get("message", {}).get("content", "")


def parse_plan(text: str) -> NavigationPlan:
    """Extract and validate the JSON plan embedded in an LLM reply.

    Raises
    ------
    ValueError
        If no JSON object is present or it does not describe a plan.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ValueError("No JSON found in response")
    try:
        return NavigationPlan.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError("Invalid command structure: missing actions array") from exc


def plan_command(command: str, current_url: Optional[str] = None, page_context: Optional[str] = None) -> NavigationPlan:
    """Ask the LLM for a plan. Blocking; run it in a worker thread from async code."""
    context = ""
    if current_url:
        context = f"\n\nCURRENT PAGE: {current_url}"
        if page_context:
            context += f"\n\nPAGE CONTENT SUMMARY:\n{page_context[:1000]}"
    prompt = f'Convert this command into browser actions:\n"{command}"{context}'
    return parse_plan(call_llm(SYSTEM_PROMPT, prompt))


def to_step(payload: Dict[str, Any]) -> Step:
    """Validate one planned step, ignoring keys its action does not use."""
    kind = payload.get("type")
    if kind == "wait":
        return Wait.model_validate(payload)
    if kind == "scroll":
        return Scroll()
    return parse_action(known_fields(payload))


async def run_plan(control, session_id: str, plan: NavigationPlan) -> NavigationResult:
    """Execute ``plan`` step by step on ``session_id``, stopping at the first failure.

    ``control`` is a :class:`~control.service.BrowserControl`.  Credits are the
    planning fee plus the cost of every step that succeeded.
    """
    started = time.monotonic()
    result = NavigationResult(
        success=False,
        description=plan.description,
        reasoning=plan.reasoning,
        actions=plan.actions,
        total_actions=len(plan.actions),
        credits=PLANNING_COST,
    )
    for payload in plan.actions:
        try:
            step = to_step(payload)
        except ValidationError as exc:
            result.results.append(StepResult(payload, False, error=f"Invalid step: {exc.errors()[0]['msg']}", error_kind="InvalidAction"))
            break

        if isinstance(step, Wait):
            waited = min(step.wait, MAX_WAIT_MS)
            await asyncio.sleep(waited / 1000)
            outcome = ActionResult(success=True, action="wait", data={"waited": waited})
        elif isinstance(step, Scroll):
            outcome = await control.execute_action(session_id, Evaluate(code=SCROLL_SCRIPT))
        else:
            outcome = await control.execute_action(session_id, step)

        result.results.append(StepResult(payload, outcome.success, outcome.data, outcome.error, outcome.error_kind))
        if not outcome.success:
            break
        result.successful_actions += 1
        result.credits += outcome.cost

    result.success = result.successful_actions == result.total_actions
    result.execution_time = time.monotonic() - started
    logger.info(
        "Navigation in session %s: %d/%d steps succeeded",
        session_id,
        result.successful_actions,
        result.total_actions,
    )
    return result


EXAMPLE_COMMANDS = [
    {"label": "Search Google", "command": "search google for latest news about AI"},
    {"label": "Click Element", "command": "click the login button"},
    {"label": "Extract Data", "command": "extract all article headlines from this page"},
    {"label": "Fill Form", "command": "fill the email field with test@example.com"},
    {"label": "Navigate", "command": "go to wikipedia.org"},
    {"label": "Multi-Step", "command": "go to github.com, click sign in, and take a screenshot"},
]
