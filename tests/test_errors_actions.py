"""Tests for error classification, selector recovery and action execution."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.actions import DEFAULT_FILL_VALUE, execute_action, perform_with_selector_retry
from uiscout.errors import (
    BlockingError,
    ErrorKind,
    classify_error,
    narrow_selector,
    parse_multiple_match,
    sanitize_selector,
    strip_ansi,
)
from uiscout.scoring import ActionType

from fakes import FakeBrowser, FakeElement, FakePage


class TestClassifyError:
    """Test the error taxonomy."""

    def test_blocking(self):
        assert classify_error("Target closed") == ErrorKind.BLOCKING
        assert classify_error("Browser has been closed") == ErrorKind.BLOCKING
        assert classify_error("Protocol error (Page.navigate)") == ErrorKind.BLOCKING

    def test_skippable(self):
        assert classify_error("Timeout 30000ms exceeded") == ErrorKind.SKIPPABLE
        assert classify_error("net::ERR_CONNECTION_REFUSED") == ErrorKind.SKIPPABLE
        assert classify_error("Element not found: #x") == ErrorKind.SKIPPABLE

    def test_other_errors_fail(self):
        assert classify_error("Something odd happened") == ErrorKind.FAILED

    def test_strict_mode_promotes_everything(self):
        assert classify_error("Timeout 30000ms exceeded", strict_mode=True) == ErrorKind.BLOCKING

    def test_blocking_error_carries_step(self):
        error = BlockingError("Target closed", step_index=7)
        assert error.step_index == 7
        assert str(error) == "Target closed"


class TestSelectors:
    """Test selector recovery and sanitization."""

    def test_parse_multiple_match(self):
        match = parse_multiple_match('Error: Selector "button.primary" matched 3 elements')
        assert match.selector == "button.primary"
        assert match.count == 3
        assert parse_multiple_match("Timeout") is None

    def test_parse_multiple_match_with_ansi(self):
        message = '\x1b[31mSelector "a.nav" matched 2 elements\x1b[0m'
        assert parse_multiple_match(message).count == 2

    def test_strip_ansi_bare_codes(self):
        assert strip_ansi("[31mred[0m") == "red"

    def test_narrow_selector(self):
        assert narrow_selector("button.primary") == "button.primary >> nth=0"
        assert narrow_selector("#list li:nth-child(2)") == "#list li:nth-child(2) >> nth=0"

    def test_narrow_selector_idempotent(self):
        once = narrow_selector("a")
        assert narrow_selector(once) == once

    def test_sanitize_removes_empty_attributes(self):
        assert sanitize_selector("input[name=''][type='email']") == "input[type='email']"
        assert sanitize_selector('button[id=""]:first-of-type') == "button"

    def test_sanitize_leaves_valid_selectors(self):
        assert sanitize_selector("li:first-of-type") == "li:first-of-type"

    def test_sanitize_rejects_empty(self):
        with pytest.raises(ValueError):
            sanitize_selector("[aria-label='']")


@pytest.fixture
def form_browser():
    page = FakePage(
        elements=[
            FakeElement("button.primary", text="Go"),
            FakeElement("input#email", tag="input", action_type="fill"),
            FakeElement("#menu", text="Menu"),
        ]
    )
    return FakeBrowser({"http://site.test/": page})


class TestActions:
    """Test action execution."""

    @pytest.mark.asyncio
    async def test_execute_each_type(self, form_browser):
        await form_browser.open("http://site.test/")
        await execute_action(form_browser, ActionType.CLICK, "button.primary")
        await execute_action(form_browser, ActionType.FILL, "input#email")
        await execute_action(form_browser, ActionType.HOVER, "#menu")
        await execute_action(form_browser, ActionType.PRESS, "", "Escape")
        await execute_action(form_browser, ActionType.SELECT, "#menu")
        assert form_browser.actions == [
            ("click", "button.primary"),
            ("fill", "input#email", DEFAULT_FILL_VALUE),
            ("hover", "#menu"),
            ("press", "Escape"),
            ("click", "#menu"),
        ]

    @pytest.mark.asyncio
    async def test_ambiguous_selector_is_narrowed(self, form_browser):
        form_browser.ambiguous["button.primary"] = 3
        await form_browser.open("http://site.test/")
        used = await perform_with_selector_retry(form_browser, ActionType.CLICK, "button.primary")
        assert used == "button.primary >> nth=0"
        assert form_browser.actions == [("click", "button.primary >> nth=0")]

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, form_browser):
        await form_browser.open("http://site.test/")
        with pytest.raises(RuntimeError, match="Timeout"):
            await perform_with_selector_retry(form_browser, ActionType.CLICK, "#missing")
        assert form_browser.actions == []

    @pytest.mark.asyncio
    async def test_selector_sanitized_before_use(self, form_browser):
        await form_browser.open("http://site.test/")
        used = await perform_with_selector_retry(form_browser, ActionType.FILL, "input#email[name='']", "a@b.c")
        assert used == "input#email"
        assert form_browser.actions == [("fill", "input#email", "a@b.c")]
