"""Input screening for browser automation.

Everything a user or an AI planner hands to the browser passes through here
first: free-form text is matched against known prompt-injection signatures,
navigation targets are checked against the URL policy, and scripts bound for
``evaluate`` are checked for network and code-construction primitives.

All checks are pure functions over strings.  A rejection is returned as a
value (:class:`SecurityFinding`, :class:`Verdict`); it is up to the caller
to turn it into a refused action and an audit entry.
"""
from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple
from urllib.parse import urlsplit

# Identifiers are what callers see and log; the expressions stay private.
_INJECTION_SIGNATURES: List[Tuple[str, Pattern[str]]] = [
    (
        "instruction_override",
        re.compile(
            r"\b(?:ignore|forget|override)\s+(?:all\s+)?(?:of\s+)?(?:the\s+|your\s+|my\s+)?"
            r"(?:previous|prior|above|earlier|preceding)\s+(?:instructions|commands|prompts|rules|directives)"
            r"|\b(?:ignore|forget|override)\s+all\s+(?:instructions|commands|prompts|rules)",
            re.IGNORECASE,
        ),
    ),
    ("disregard_previous", re.compile(r"\bdisregard\s+(?:all|previous|prior|above|earlier)\b", re.IGNORECASE)),
    ("new_instructions", re.compile(r"\bnew\s+instructions\s*:", re.IGNORECASE)),
    ("system_role_header", re.compile(r"^\s*system\s*:", re.IGNORECASE | re.MULTILINE)),
    ("system_tag", re.compile(r"\[\s*system\s*\]", re.IGNORECASE)),
    ("chat_template_token", re.compile(r"<\|\s*(?:im_start|im_end|system|endoftext)\s*\|>", re.IGNORECASE)),
    ("admin_tag", re.compile(r"<\s*/?\s*admin\s*>", re.IGNORECASE)),
    ("privileged_mode", re.compile(r"\b(?:sudo|developer|god|DAN)\s+mode\b", re.IGNORECASE)),
    ("jailbreak", re.compile(r"\bjail\s*break", re.IGNORECASE)),
    (
        "filter_bypass",
        re.compile(r"\bbypass\s+(?:the\s+|your\s+|all\s+)?(?:filters?|safety|guardrails|restrictions)", re.IGNORECASE),
    ),
    (
        "role_reassignment",
        re.compile(r"\byou\s+are\s+now\s+(?:a|an|the|in|my)\b|\bpretend\s+(?:to\s+be|you\s+are)\b", re.IGNORECASE),
    ),
    (
        "prompt_exfiltration",
        re.compile(
            r"\b(?:reveal|print|show|repeat|output)\s+(?:me\s+)?(?:your|the)\s+"
            r"(?:system\s+prompt|hidden\s+instructions|initial\s+instructions)",
            re.IGNORECASE,
        ),
    ),
    (
        "encoded_payload",
        re.compile(
            r"(?:\\x[0-9a-f]{2}){4,}|(?:\\u[0-9a-f]{4}){4,}|\bdata:[\w/+.-]+;base64,"
            r"|\b(?:decode|execute|run)\s+(?:the\s+|this\s+)?(?:following\s+)?base64\b",
            re.IGNORECASE,
        ),
    ),
    (
        "html_injection",
        re.compile(
            r"<\s*(?:script|iframe|object|embed)\b|\bjavascript\s*:|\bon(?:error|load|click|mouseover|focus)\s*="
            r"|<!--\s*(?:ignore|system|assistant|instruction)",
            re.IGNORECASE,
        ),
    ),
    ("markdown_exfiltration", re.compile(r"!\[[^\]]*\]\(\s*https?://[^)\s]*\?[^)\s]*=")),
]

_XSS_SIGNATURES: List[Tuple[str, Pattern[str]]] = [
    ("script_block", re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE)),
    ("javascript_url", re.compile(r"javascript:", re.IGNORECASE)),
    ("inline_handler", re.compile(r"on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)),
    ("iframe", re.compile(r"<iframe[\s\S]*?>", re.IGNORECASE)),
    ("eval_call", re.compile(r"eval\s*\(", re.IGNORECASE)),
    ("css_expression", re.compile(r"expression\s*\(", re.IGNORECASE)),
]

_SCRIPT_SIGNATURES: List[Tuple[str, Pattern[str]]] = [
    ("network_fetch", re.compile(r"\bfetch\s*\(")),
    ("network_xhr", re.compile(r"XMLHttpRequest")),
    ("network_beacon", re.compile(r"\bsendBeacon\b")),
    ("network_websocket", re.compile(r"\bWebSocket\b")),
    ("dynamic_eval", re.compile(r"\beval\s*\(")),
    ("function_constructor", re.compile(r"\bFunction\s*\(")),
    ("dynamic_import", re.compile(r"\bimport\s*\(")),
]

_COMMAND_SIGNATURES: List[Pattern[str]] = [
    re.compile(r"delete.*database", re.IGNORECASE),
    re.compile(r"drop.*table", re.IGNORECASE),
    re.compile(r"rm\s+-rf", re.IGNORECASE),
    re.compile(r"format.*drive", re.IGNORECASE),
    re.compile(r"execute.*script", re.IGNORECASE),
]

ALLOWED_SCHEMES = frozenset({"http", "https"})
BLOCKED_HOSTS = frozenset(
    {
        "localhost",
        "0.0.0.0",
        "127.0.0.1",
        "::1",
        "169.254.169.254",
        "metadata",
        "metadata.google.internal",
    }
)
MAX_COMMAND_LENGTH = 500

_IPV4_LIKE = re.compile(r"^[0-9a-fx.]+$", re.IGNORECASE)


@dataclass(frozen=True)
class SecurityFinding:
    """Outcome of screening one string."""

    is_injection: bool
    patterns: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_injection


@dataclass(frozen=True)
class Verdict:
    valid: bool
    reason: Optional[str] = None


def _match(signatures: List[Tuple[str, Pattern[str]]], text: str) -> List[str]:
    return [name for name, pattern in signatures if pattern.search(text)]


def detect_prompt_injection(text: str) -> SecurityFinding:
    """Match ``text`` against the known prompt-injection signatures.

    Returns a finding listing the identifiers of every signature that matched.
    """
    if not text:
        return SecurityFinding(False, [])
    matched = _match(_INJECTION_SIGNATURES, text)
    return SecurityFinding(bool(matched), matched)


def detect_xss(content: str) -> SecurityFinding:
    """Flag script-injection markup in page content pulled from the browser."""
    if not content:
        return SecurityFinding(False, [])
    matched = _match(_XSS_SIGNATURES, content)
    return SecurityFinding(bool(matched), matched)


def check_script(code: str) -> SecurityFinding:
    """Flag scripts that would reach the network or build code at runtime."""
    matched = _match(_SCRIPT_SIGNATURES, code or "")
    return SecurityFinding(bool(matched), matched)


def _parse_ip(hostname: str):
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    # Browsers accept shorthand IPv4 forms such as ``2130706433`` or
    # ``0x7f.1``; normalise them the same way before checking ranges.
    if _IPV4_LIKE.match(hostname) and any(c.isdigit() for c in hostname):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(hostname))
        except OSError:
            return None
    return None


def _ip_reason(ip) -> Optional[str]:
    mapped = getattr(ip, "ipv4_mapped", None)
    if mapped is not None:
        ip = mapped
    if ip.is_loopback:
        return "Loopback addresses are blocked"
    if ip.is_link_local:
        return "Link-local addresses are blocked"
    if ip.is_private:
        return "Private IP addresses are blocked"
    if ip.is_unspecified or ip.is_reserved or ip.is_multicast or not ip.is_global:
        return "Non-public IP addresses are blocked"
    return None


def validate_url(url: str) -> Verdict:
    """Check that ``url`` is safe for the server-side browser to load.

    Only ``http`` and ``https`` are allowed.  Hosts that resolve to internal
    infrastructure by name or by literal address (private, loopback,
    link-local and other non-public ranges) are rejected.
    """
    if not isinstance(url, str) or not url.strip() or any(c.isspace() for c in url.strip()):
        return Verdict(False, "Invalid URL format")
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return Verdict(False, "Invalid URL format")

    scheme = parts.scheme.lower()
    if not scheme:
        return Verdict(False, "Invalid URL format")
    if scheme not in ALLOWED_SCHEMES:
        return Verdict(False, f"Protocol {scheme}: not allowed")
    if not hostname:
        return Verdict(False, "Invalid URL format")

    hostname = hostname.rstrip(".").lower()
    for blocked in BLOCKED_HOSTS:
        if hostname == blocked or hostname.endswith(f".{blocked}"):
            return Verdict(False, f"Domain {hostname} is blocked")

    ip = _parse_ip(hostname)
    if ip is not None:
        reason = _ip_reason(ip)
        if reason:
            return Verdict(False, reason)
    return Verdict(True)


def validate_command(command: str) -> Verdict:
    """Check a natural-language navigation command before it is planned."""
    if not command or not command.strip():
        return Verdict(False, "Command cannot be empty")
    if len(command) > MAX_COMMAND_LENGTH:
        return Verdict(False, f"Command too long (max {MAX_COMMAND_LENGTH} characters)")
    for pattern in _COMMAND_SIGNATURES:
        if pattern.search(command):
            return Verdict(False, "Command contains potentially dangerous operations")
    return Verdict(True)
