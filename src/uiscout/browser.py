"""
Browser capability.

The exploration core only talks to a page through the ``Browser`` interface:
navigate, act, read, evaluate a script. ``PlaywrightBrowser`` implements it
over a Playwright async page and also captures console errors and network
requests while the page is driven, so coverage can pick them up after every
step.

Error text is the contract: Playwright's own messages ("Target closed",
"Timeout 30000ms exceeded") are what ``errors.classify_error`` recognises, so
they are passed through unchanged. Strict mode violations are reworded to
``Selector "x" matched N elements`` so ambiguous selectors can be narrowed.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError, async_playwright

from .fingerprint import quick_hash

logger = logging.getLogger(__name__)

_STRICT_VIOLATION = re.compile(r"strict mode violation.*?resolved to (\d+) elements", re.DOTALL)


@dataclass
class PageSnapshot:
    """Cheap before/after comparison point for one action."""

    url: str
    dom_hash: str


class Browser(ABC):
    """Abstract browser session used by the explorer."""

    @abstractmethod
    async def open(self, url: str) -> None:
        pass

    @abstractmethod
    async def click(self, selector: str) -> None:
        pass

    @abstractmethod
    async def fill(self, selector: str, text: str) -> None:
        pass

    @abstractmethod
    async def press(self, key: str) -> None:
        pass

    @abstractmethod
    async def hover(self, selector: str) -> None:
        pass

    @abstractmethod
    async def get_text(self, selector: str) -> str:
        pass

    @abstractmethod
    async def screenshot(self, path: Optional[str] = None) -> bytes:
        pass

    @abstractmethod
    async def snapshot(self) -> str:
        """Serialized DOM of the current page."""

    @abstractmethod
    async def eval(self, script: str) -> Any:
        pass

    @abstractmethod
    async def get_current_url(self) -> str:
        pass

    @abstractmethod
    async def set_viewport_size(self, width: int, height: int) -> None:
        pass

    @abstractmethod
    async def wait_for_stability(self, window_ms: int = 300) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def wait(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000)

    async def take_page_snapshot(self) -> PageSnapshot:
        url = await self.get_current_url()
        return PageSnapshot(url=url, dom_hash=quick_hash(await self.snapshot()))

    def drain_console_errors(self) -> List[str]:
        """Console errors seen since the last drain."""
        return []

    def drain_network_requests(self) -> List[Tuple[str, str]]:
        """(method, url) pairs requested since the last drain."""
        return []


class PlaywrightBrowser(Browser):
    """
    ``Browser`` over a Playwright async ``Page``.

    Construct it around an existing page, or use ``launch_browser`` to start
    Playwright and own the whole stack (closing the browser stops it).
    """

    def __init__(self, page: Page, navigation_timeout_ms: int = 30000, owned: Optional[list] = None):
        self.page = page
        self.navigation_timeout_ms = navigation_timeout_ms
        self._owned = owned or []
        self._console_errors: List[str] = []
        self._network_requests: List[Tuple[str, str]] = []
        self._attach_listeners()

    def _attach_listeners(self):
        def on_console(msg):
            if msg.type == "error":
                self._console_errors.append(msg.text)

        def on_page_error(error):
            self._console_errors.append(str(error))

        def on_request(request):
            self._network_requests.append((request.method, request.url))

        self.page.on("console", on_console)
        self.page.on("pageerror", on_page_error)
        self.page.on("request", on_request)

    async def open(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        await self.wait_for_stability()

    async def _on_locator(self, selector: str, action):
        try:
            return await action(self.page.locator(selector))
        except PlaywrightError as e:
            match = _STRICT_VIOLATION.search(str(e))
            if match is None:
                raise
            raise RuntimeError(f'Selector "{selector}" matched {match.group(1)} elements') from e

    async def click(self, selector: str) -> None:
        await self._on_locator(selector, lambda loc: loc.click())

    async def fill(self, selector: str, text: str) -> None:
        await self._on_locator(selector, lambda loc: loc.fill(text))

    async def press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def hover(self, selector: str) -> None:
        await self._on_locator(selector, lambda loc: loc.hover())

    async def get_text(self, selector: str) -> str:
        return await self._on_locator(selector, lambda loc: loc.inner_text())

    async def screenshot(self, path: Optional[str] = None) -> bytes:
        return await self.page.screenshot(path=path)

    async def snapshot(self) -> str:
        return await self.page.content()

    async def eval(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def get_current_url(self) -> str:
        return self.page.url

    async def set_viewport_size(self, width: int, height: int) -> None:
        await self.page.set_viewport_size({"width": width, "height": height})

    async def wait(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def wait_for_stability(self, window_ms: int = 300) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=max(window_ms * 10, 2000))
        except PlaywrightTimeoutError:
            logger.debug("networkidle timeout, continuing")
        await self.page.wait_for_timeout(window_ms)

    def drain_console_errors(self) -> List[str]:
        errors, self._console_errors = self._console_errors, []
        return errors

    def drain_network_requests(self) -> List[Tuple[str, str]]:
        requests, self._network_requests = self._network_requests, []
        return requests

    async def close(self) -> None:
        """Close the page and every owned resource; the first failure is re-raised at the end."""
        first_error: Optional[Exception] = None
        # page, context, browser, playwright
        for resource in [self.page] + self._owned:
            try:
                if hasattr(resource, "stop"):
                    await resource.stop()
                else:
                    await resource.close()
            except Exception as e:
                logger.warning("Failed to close %s: %s", type(resource).__name__, e)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error


async def launch_browser(
    headless: bool = True,
    viewport_width: int = 1280,
    viewport_height: int = 800,
    navigation_timeout_ms: int = 30000,
) -> PlaywrightBrowser:
    """Start Playwright and Chromium and return a browser on a fresh page."""
    playwright = await async_playwright().start()
    browser = await playwright.chromium.launch(headless=headless)
    context = await browser.new_context(viewport={"width": viewport_width, "height": viewport_height})
    page = await context.new_page()
    logger.debug("Launched Chromium (headless=%s, %dx%d)", headless, viewport_width, viewport_height)
    return PlaywrightBrowser(page, navigation_timeout_ms=navigation_timeout_ms, owned=[context, browser, playwright])
