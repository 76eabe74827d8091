"""Browser session metadata and the live session registry."""

from .manager import JsonSessionStore, SessionRegistry
from .session import BrowserSession

__all__ = ["BrowserSession", "JsonSessionStore", "SessionRegistry"]
