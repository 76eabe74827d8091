"""Headless browser driver.

:class:`PlaywrightDriver` owns one Chromium process and hands out
:class:`BrowserPage` handles, each living in its own browser context so that
cookies and storage never leak between sessions.  Contexts are configured to
look less like automation: a desktop user agent, a realistic viewport, an init
script that hides the usual headless tells, and short randomised pauses around
pointer and keyboard input.

Playwright errors are translated into :mod:`control.errors` at this boundary;
nothing above this module imports Playwright.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from control.errors import (
    ActionTimeout,
    DriverError,
    NavigationFailed,
    PageCrashed,
    ScriptError,
    SelectorNotFound,
)

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--hide-scrollbars",
    "--mute-audio",
    "--no-default-browser-check",
]

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
if (!window.chrome) {
    window.chrome = { runtime: {}, loadTimes: function(){}, csi: function(){}, app: {} };
}
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

_BLOCKED_RESOURCES = {"font", "media"}
_CLOSED_MARKERS = ("has been closed", "Target closed", "crashed")


class PageHandle(Protocol):
    """What the registry and executor need from a live page."""

    @property
    def url(self) -> str: ...

    def is_closed(self) -> bool: ...

    async def title(self) -> str: ...

    async def goto(self, url: str, timeout: float) -> None: ...

    async def click(self, selector: str, timeout: float) -> None: ...

    async def type(self, selector: str, text: str, timeout: float) -> None: ...

    async def screenshot(self) -> bytes: ...

    async def extract(self, selector: str, attribute: Optional[str], timeout: float) -> Optional[str]: ...

    async def evaluate(self, code: str) -> Any: ...

    async def content(self) -> str: ...

    async def close(self) -> None: ...


class BrowserDriver(Protocol):
    async def open_page(self, cookies: Optional[List[Dict[str, Any]]] = None) -> PageHandle: ...

    async def shutdown(self) -> None: ...


class BrowserPage:
    """A single page in its own browser context."""

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self._context = context
        self._page = page
        self._crashed = False
        page.on("crash", self._on_crash)

    def _on_crash(self, _page: Page) -> None:
        logger.warning("Page crashed at %s", self._page.url)
        self._crashed = True

    @property
    def url(self) -> str:
        return self._page.url

    def is_closed(self) -> bool:
        return self._crashed or self._page.is_closed()

    def _translate(self, exc: PlaywrightError, fallback):
        message = str(exc)
        if self.is_closed() or any(marker in message for marker in _CLOSED_MARKERS):
            return PageCrashed(message)
        return fallback(message)

    async def _human_delay(self, min_delay: float = 0.05, max_delay: float = 0.2) -> None:
        """Sleep for a randomised short interval to mimic human behaviour."""
        await asyncio.sleep(random.uniform(min_delay, max_delay))

    async def _wait_for(self, selector: str, timeout: float):
        try:
            return await self._page.wait_for_selector(selector, timeout=timeout * 1000, state="attached")
        except PlaywrightTimeoutError as exc:
            raise SelectorNotFound(selector) from exc
        except PlaywrightError as exc:
            raise self._translate(exc, ScriptError) from exc

    async def title(self) -> str:
        try:
            return await self._page.title()
        except PlaywrightError as exc:
            raise self._translate(exc, DriverError) from exc

    async def goto(self, url: str, timeout: float) -> None:
        try:
            await self._page.goto(url, wait_until="load", timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeout(f"navigation to {url} timed out") from exc
        except PlaywrightError as exc:
            raise self._translate(exc, NavigationFailed) from exc

    async def click(self, selector: str, timeout: float) -> None:
        element = await self._wait_for(selector, timeout)
        try:
            box = await element.bounding_box()
            if box:
                await self._page.mouse.move(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2, steps=10)
                await self._human_delay()
            await element.click(timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeout(f"click on {selector!r} timed out") from exc
        except PlaywrightError as exc:
            raise self._translate(exc, DriverError) from exc

    async def type(self, selector: str, text: str, timeout: float) -> None:
        element = await self._wait_for(selector, timeout)
        try:
            await element.click(timeout=timeout * 1000)
            await self._human_delay()
            await self._page.keyboard.type(text, delay=random.randint(30, 80))
        except PlaywrightTimeoutError as exc:
            raise ActionTimeout(f"typing into {selector!r} timed out") from exc
        except PlaywrightError as exc:
            raise self._translate(exc, DriverError) from exc

    async def screenshot(self) -> bytes:
        try:
            return await self._page.screenshot(type="png", full_page=False)
        except PlaywrightError as exc:
            raise self._translate(exc, DriverError) from exc

    async def extract(self, selector: str, attribute: Optional[str], timeout: float) -> Optional[str]:
        element = await self._wait_for(selector, timeout)
        try:
            if attribute:
                return await element.get_attribute(attribute)
            return await element.text_content()
        except PlaywrightError as exc:
            raise self._translate(exc, DriverError) from exc

    async def evaluate(self, code: str) -> Any:
        try:
            return await self._page.evaluate(code)
        except PlaywrightError as exc:
            raise self._translate(exc, ScriptError) from exc

    async def content(self) -> str:
        try:
            return await self._page.content()
        except PlaywrightError as exc:
            raise self._translate(exc, DriverError) from exc

    async def close(self) -> None:
        try:
            await self._context.close()
        except PlaywrightError as exc:
            logger.warning("Error closing browser context: %s", exc)


class PlaywrightDriver:
    """Launch Chromium on first use and open isolated stealth pages."""

    def __init__(self, headless: bool = True) -> None:
        self.headless = headless
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                logger.info("Launching Chromium (headless=%s)", self.headless)
                self._browser = await self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
            return self._browser

    async def open_page(self, cookies: Optional[List[Dict[str, Any]]] = None) -> BrowserPage:
        try:
            browser = await self._ensure_browser()
            context = await browser.new_context(
                user_agent=random.choice(USER_AGENTS),
                viewport={"width": 1280, "height": 720},
                locale="en-US",
                service_workers="block",
            )
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            await context.route("**/*", _block_heavy_resources)
            if cookies:
                await context.add_cookies(cookies)
            page = await context.new_page()
        except PlaywrightError as exc:
            raise DriverError(f"failed to open browser page: {exc}") from exc
        return BrowserPage(context, page)

    async def shutdown(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                logger.warning("Error closing browser: %s", exc)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


async def _block_heavy_resources(route) -> None:
    if route.request.resource_type in _BLOCKED_RESOURCES:
        await route.abort()
    else:
        await route.continue_()
