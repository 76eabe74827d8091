import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from control.errors import SelectorNotFound


class FakePage:
    """In-memory stand-in for a Playwright page."""

    def __init__(self, elements=None, redirects=None, delay=0.0, fail_on=None, html=None):
        self.url = "about:blank"
        self.elements: Dict[str, str] = elements if elements is not None else {
            "h1": "Example Domain",
            "#login": "Sign in",
            "#q": "",
        }
        self.redirects: Dict[str, str] = redirects or {}
        self.delay = delay
        self.fail_on: Dict[str, Exception] = fail_on or {}
        self.calls: List[tuple] = []
        self.closed = False
        self.html = html or "<html><body><h1>Example Domain</h1></body></html>"

    def is_closed(self) -> bool:
        return self.closed

    async def _step(self, name: str, arg: Any) -> None:
        self.calls.append(("start", name, arg))
        if name in self.fail_on:
            raise self.fail_on[name]
        await asyncio.sleep(self.delay)
        self.calls.append(("end", name, arg))

    def _require(self, selector: str) -> None:
        if selector not in self.elements:
            raise SelectorNotFound(selector)

    async def title(self) -> str:
        return "Example Domain"

    async def goto(self, url: str, timeout: float) -> None:
        await self._step("goto", url)
        self.url = self.redirects.get(url, url)

    async def click(self, selector: str, timeout: float) -> None:
        self._require(selector)
        await self._step("click", selector)
        if selector in self.redirects:
            self.url = self.redirects[selector]

    async def type(self, selector: str, text: str, timeout: float) -> None:
        self._require(selector)
        await self._step("type", selector)
        self.elements[selector] = text

    async def screenshot(self) -> bytes:
        await self._step("screenshot", None)
        return b"\x89PNG fake image"

    async def extract(self, selector: str, attribute: Optional[str], timeout: float) -> Optional[str]:
        self._require(selector)
        await self._step("extract", selector)
        return self.elements[selector]

    async def evaluate(self, code: str) -> Any:
        await self._step("evaluate", code)
        return None

    async def content(self) -> str:
        return self.html

    async def close(self) -> None:
        self.closed = True


class FakeDriver:
    def __init__(self, **page_options):
        self.page_options = page_options
        self.pages: List[FakePage] = []
        self.cookies: List[List[Dict[str, Any]]] = []
        self.shut_down = False

    async def open_page(self, cookies=None) -> FakePage:
        self.cookies.append(cookies or [])
        page = FakePage(**self.page_options)
        self.pages.append(page)
        return page

    async def shutdown(self) -> None:
        self.shut_down = True


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def make_driver():
    return FakeDriver
