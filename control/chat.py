"""Chat about the page open in a browser session.

The page's HTML is reduced to readable text with BeautifulSoup and screened
for prompt injection like any other text bound for a prompt.  It is then sent
to the LLM together with the most recent turns of the conversation.

Turns are stored as ``chat_message`` events through the audit recorder and
read back with :func:`log.replay.conversation`.  Clearing a conversation
appends a ``chat_cleared`` marker; the log itself is append-only.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from guard.security import detect_prompt_injection
from log.replay import conversation

from . import navigation
from .errors import ActionTimeout, SecurityViolation

logger = logging.getLogger(__name__)

MAX_HISTORY = 20
MAX_CONTEXT_WORDS = 3000
MAX_HEADINGS = 50
MAX_LINKS = 100
CHAT_COST = 5
# Charged once per conversation, on its first message
CONTEXT_COST = 5

SYSTEM_PROMPT = """You are an AI assistant helping the user understand and interact with a webpage. Here is the page content:

{context}

Answer questions about this page, extract information, summarize sections, or help with any tasks related to the content. Be concise and accurate."""


@dataclass
class PageContent:
    """Readable text and outline of one page."""

    url: str
    title: str
    text: str
    headings: List[Dict[str, Any]] = field(default_factory=list)
    links: List[Dict[str, str]] = field(default_factory=list)
    description: Optional[str] = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass
class ChatReply:
    message: str
    credits: int
    url: str
    title: str
    word_count: int
    quick_actions: Optional[List[Dict[str, str]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract_page_content(html: str, url: str) -> PageContent:
    """Parse ``html`` into readable text, headings and links."""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    headings = []
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        text = heading.get_text(" ", strip=True)
        if text:
            headings.append({"level": int(heading.name[1]), "text": text})

    links = []
    for link in soup.find_all("a", href=True):
        text = link.get_text(" ", strip=True)
        href = link["href"]
        if text and href and not href.startswith("#"):
            links.append({"text": text, "href": href})

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    if not title and headings:
        title = headings[0]["text"]
    meta = soup.find("meta", attrs={"name": "description"})

    root = soup.find("main") or soup.find("article") or soup.body or soup
    return PageContent(
        url=url,
        title=title or "Untitled",
        text=root.get_text(" ", strip=True),
        headings=headings[:MAX_HEADINGS],
        links=links[:MAX_LINKS],
        description=meta.get("content") if meta else None,
    )


def build_context(content: PageContent, max_words: int = MAX_CONTEXT_WORDS) -> str:
    """Render page content for the system prompt, truncated to ``max_words``."""
    words = content.text.split()
    if len(words) <= max_words:
        return f"# {content.title}\n\n{content.text}"
    truncated = " ".join(words[:max_words])
    return (
        f"# {content.title}\n\n{truncated}\n\n...\n\n"
        f"(Content truncated. Original length: ~{len(words)} words)"
    )


def quick_actions(content: PageContent) -> List[Dict[str, str]]:
    """Suggested prompts for a fresh conversation about ``content``."""
    actions = [
        {"label": "Summarize", "prompt": "Provide a comprehensive summary of this page in 3-4 paragraphs."},
        {"label": "Key Points", "prompt": "Extract the main key points from this page as a bullet list."},
    ]
    if "code" in content.text.lower():
        actions.append({"label": "Explain Code", "prompt": "Explain any code examples on this page in simple terms."})
    if content.word_count > 1000:
        actions.append({"label": "TL;DR", "prompt": "Give me a one-paragraph TL;DR of this entire page."})
    actions.append({"label": "Ask Question", "prompt": "What questions can I ask about this page?"})
    return actions


def chat_history(recorder, session_id: str) -> List[Dict[str, Any]]:
    """Messages of the current conversation for ``session_id``, oldest first."""
    path = getattr(recorder, "path", None)
    if path is None:
        return []
    return [
        {"role": e["role"], "content": e["content"], "url": e.get("url"), "credits": e.get("credits", 0), "ts": e["ts"]}
        for e in conversation(path, session_id)
    ]


def clear_history(recorder, session_id: str, user: str) -> None:
    recorder.log("chat_cleared", {"user": user, "session_id": session_id})


def _block(recorder, kind: str, user: str, session_id: str, patterns: List[str], message: str) -> SecurityViolation:
    logger.warning("Blocked chat %s in session %s: %s", kind, session_id, ", ".join(patterns))
    recorder.log("security_incident", {"type": kind, "user": user, "session_id": session_id, "patterns": patterns})
    return SecurityViolation(patterns, message)


async def ask(control, recorder, session_id: str, user: str, message: str) -> ChatReply:
    """Answer ``message`` about the page currently open in ``session_id``.

    ``control`` is a :class:`~control.service.BrowserControl` and ``recorder``
    the audit recorder holding the conversation.  The LLM call runs in a
    worker thread.

    Raises
    ------
    SecurityViolation
        If the message or the page text matches an injection signature.
    SessionNotFound
        If the session is not live.
    ActionTimeout
        If the page content cannot be read in time.
    """
    finding = detect_prompt_injection(message)
    if finding:
        raise _block(recorder, "chat_message", user, session_id, finding.patterns, "Blocked for security reasons")

    timeout = control.executor.timeout
    async with control.registry.lease(session_id) as (meta, page):
        try:
            html = await asyncio.wait_for(page.content(), timeout)
        except asyncio.TimeoutError as exc:
            raise ActionTimeout(f"page content not available within {timeout:g}s") from exc
        url = page.url

    content = extract_page_content(html, url)
    finding = detect_prompt_injection(content.text)
    if finding:
        raise _block(recorder, "page_content", user, session_id, finding.patterns, "Page content blocked for security reasons")

    past = chat_history(recorder, session_id)[-MAX_HISTORY:]
    answer = await asyncio.to_thread(
        navigation.call_llm,
        SYSTEM_PROMPT.format(context=build_context(content)),
        message,
        [{"role": m["role"], "content": m["content"]} for m in past],
    )
    credits = CHAT_COST + (0 if past else CONTEXT_COST)

    recorder.log("chat_message", {"user": user, "session_id": session_id, "role": "user", "content": message, "url": url})
    recorder.log(
        "chat_message",
        {"user": user, "session_id": session_id, "role": "assistant", "content": answer, "url": url, "credits": credits},
    )
    meta.credits_used += credits
    control.registry.persist(meta)
    logger.info("Chat reply in session %s (%d history messages)", session_id, len(past))
    return ChatReply(
        message=answer,
        credits=credits,
        url=url,
        title=content.title,
        word_count=content.word_count,
        quick_actions=None if past else quick_actions(content),
    )
