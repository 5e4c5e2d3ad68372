"""
Performing a single action on the page.

``perform_with_selector_retry`` is the one entry point the explorer and the
smart interactions use: it sanitizes the selector, dispatches the action, and
when the selector turns out to be ambiguous retries against the first match.
"""

import logging
from typing import Optional

from .errors import narrow_selector, parse_multiple_match, sanitize_selector
from .retry import RetryPolicy, retry_async
from .scoring import ActionType

logger = logging.getLogger(__name__)

DEFAULT_FILL_VALUE = "test"


async def execute_action(browser, action_type: ActionType, selector: str, value: Optional[str] = None) -> None:
    """Dispatch one action to the browser."""
    if action_type == ActionType.CLICK:
        await browser.click(selector)
    elif action_type == ActionType.FILL:
        await browser.fill(selector, value if value is not None else DEFAULT_FILL_VALUE)
    elif action_type == ActionType.HOVER:
        await browser.hover(selector)
    elif action_type == ActionType.PRESS:
        await browser.press(value or "Enter")
    elif action_type == ActionType.SELECT:
        # Custom dropdowns are opened, not set; native selects get a click as well.
        await browser.click(selector)
    else:
        raise ValueError(f"Unknown action type: {action_type}")


def _is_multiple_match(error: BaseException) -> bool:
    return parse_multiple_match(str(error)) is not None


async def perform_with_selector_retry(
    browser,
    action_type: ActionType,
    selector: str,
    value: Optional[str] = None,
    max_retries: int = 2,
) -> str:
    """
    Run an action, narrowing an ambiguous selector to its first match.

    Only "matched N elements" failures are retried, at most ``max_retries``
    times. Returns the selector that finally worked.

    Raises:
        Exception: the last browser error when the action cannot be performed
    """
    current = {"selector": sanitize_selector(selector)}

    async def attempt(_: int) -> str:
        await execute_action(browser, action_type, current["selector"], value)
        return current["selector"]

    def narrow(attempt_index: int, error: BaseException) -> None:
        narrowed = narrow_selector(current["selector"])
        logger.info(
            "Selector %r is ambiguous, retrying as %r (%d/%d)",
            current["selector"],
            narrowed,
            attempt_index + 1,
            max_retries,
        )
        current["selector"] = narrowed

    policy = RetryPolicy(max_attempts=max_retries + 1, base_delay_s=0, retryable=_is_multiple_match)
    outcome = await retry_async(attempt, policy, on_retry=narrow)
    return outcome.unwrap()
