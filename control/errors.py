"""Error taxonomy for browser control.

Every failure the core can report derives from :class:`BrowserControlError`.
Each class carries a stable ``kind`` string (what callers switch on), whether
retrying the same request can succeed, and the HTTP status the web layer maps
it to.
"""
from __future__ import annotations

from typing import List


class BrowserControlError(Exception):
    """Base class for all browser control failures."""

    kind = "Unexpected"
    category = "unexpected"
    retryable = False
    status_code = 500

    def __init__(self, message: str = "", **details) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "error_kind": self.kind, **self.details}


# --- Policy rejections -----------------------------------------------------


class PolicyRejection(BrowserControlError):
    kind = "PolicyRejection"
    category = "policy"
    status_code = 400


class RateLimitExceeded(PolicyRejection):
    kind = "RateLimitExceeded"
    status_code = 429

    def __init__(self, message: str = "Maximum browser sessions per hour reached", **details) -> None:
        super().__init__(message, **details)


class SecurityViolation(PolicyRejection):
    """Input matched a prompt-injection signature or a forbidden script pattern."""

    kind = "SecurityViolation"

    def __init__(self, patterns: List[str], message: str = "Blocked for security reasons") -> None:
        super().__init__(message, patterns=list(patterns))
        self.patterns = list(patterns)


class InvalidURL(PolicyRejection):
    kind = "InvalidURL"

    def __init__(self, reason: str) -> None:
        super().__init__(f"URL validation failed: {reason}")
        self.reason = reason


class InsufficientCredits(PolicyRejection):
    kind = "InsufficientCredits"
    status_code = 402

    def __init__(self, required: int, available: int) -> None:
        super().__init__("Insufficient credits", required=required, available=available)


# --- Session faults --------------------------------------------------------


class SessionFault(BrowserControlError):
    category = "session"
    status_code = 404


class SessionNotFound(SessionFault):
    kind = "SessionNotFound"

    def __init__(self, session_id: str, message: str = "") -> None:
        super().__init__(message or f"session {session_id} not found or closed")
        self.session_id = session_id


class PageCrashed(SessionFault):
    kind = "PageCrashed"


# --- Action faults ---------------------------------------------------------


class ActionFault(BrowserControlError):
    category = "action"
    status_code = 422


class SelectorNotFound(ActionFault):
    kind = "SelectorNotFound"

    def __init__(self, selector: str) -> None:
        super().__init__(f"no element matches selector {selector!r}")
        self.selector = selector


class ScriptError(ActionFault):
    kind = "ScriptError"


class NavigationFailed(ActionFault):
    kind = "NavigationFailed"
    retryable = True


class ActionTimeout(ActionFault):
    kind = "ActionTimeout"
    retryable = True
    status_code = 504


# --- Unexpected ------------------------------------------------------------


class DriverError(BrowserControlError):
    """The underlying browser driver failed in a way we cannot classify."""

    kind = "DriverError"
