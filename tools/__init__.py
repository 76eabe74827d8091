"""Headless browser driver used by the session registry."""

from .browser_session import BrowserDriver, BrowserPage, PageHandle, PlaywrightDriver

__all__ = ["BrowserDriver", "BrowserPage", "PageHandle", "PlaywrightDriver"]
