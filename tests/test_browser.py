"""Tests for the Playwright browser adapter, driven by stand-in page objects."""

import os
import sys
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.browser import PlaywrightBrowser


class _Closable:
    def __init__(self, name, log, error=None):
        self.name = name
        self.log = log
        self.error = error

    async def close(self):
        self.log.append(self.name)
        if self.error is not None:
            raise self.error


class _Page(_Closable):
    def __init__(self, log, error=None):
        super().__init__("page", log, error)
        self.handlers = {}
        self.url = "about:blank"

    def on(self, event, handler):
        self.handlers[event] = handler


class _Driver:
    def __init__(self, log):
        self.log = log

    async def stop(self):
        self.log.append("playwright")


def _browser(log, page_error=None, browser_error=None):
    page = _Page(log, page_error)
    owned = [
        _Closable("context", log),
        _Closable("browser", log, browser_error),
        _Driver(log),
    ]
    return PlaywrightBrowser(page, owned=owned), page


class TestClose:
    """Test shutting down the page and the resources it owns."""

    @pytest.mark.asyncio
    async def test_closes_everything_in_order(self):
        log = []
        browser, _ = _browser(log)
        await browser.close()
        assert log == ["page", "context", "browser", "playwright"]

    @pytest.mark.asyncio
    async def test_crashed_page_still_stops_browser_and_driver(self):
        log = []
        browser, _ = _browser(log, page_error=RuntimeError("Target closed"))
        with pytest.raises(RuntimeError, match="Target closed"):
            await browser.close()
        assert log == ["page", "context", "browser", "playwright"]

    @pytest.mark.asyncio
    async def test_first_failure_is_reported(self):
        log = []
        browser, _ = _browser(
            log, page_error=RuntimeError("Target closed"), browser_error=RuntimeError("Browser has been closed")
        )
        with pytest.raises(RuntimeError, match="Target closed"):
            await browser.close()
        assert log[-1] == "playwright"


class TestCapture:
    """Test console and network capture from page events."""

    def test_console_errors_drained(self):
        browser, page = _browser([])
        page.handlers["console"](SimpleNamespace(type="error", text="Uncaught TypeError"))
        page.handlers["console"](SimpleNamespace(type="log", text="hello"))
        page.handlers["pageerror"](ValueError("boom"))
        assert browser.drain_console_errors() == ["Uncaught TypeError", "boom"]
        assert browser.drain_console_errors() == []

    def test_requests_drained(self):
        browser, page = _browser([])
        page.handlers["request"](SimpleNamespace(method="GET", url="http://site.test/api"))
        assert browser.drain_network_requests() == [("GET", "http://site.test/api")]
