"""
Error taxonomy for browser actions.

Errors raised by the browser fall into three classes:

- BLOCKING: the browser itself is gone (crash, disconnect, closed target).
  Nothing further can run; the error unwinds to the run boundary.
- SKIPPABLE: the action or page could not be completed (timeouts, missing
  elements, network failures). Record it and move on.
- FAILED: anything else. Recorded as a failed step; the run continues.

Strict mode promotes every error to BLOCKING.

Also here: recovery for ambiguous selectors ("matched N elements"), which
narrows the selector to its first match, and sanitization of selectors with
empty attribute tests.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

BLOCKING_PATTERNS = (
    "crashed",
    "disconnected",
    "target closed",
    "session closed",
    "browser has been closed",
    "protocol error",
)

SKIPPABLE_PATTERNS = (
    "timeout",
    "navigation failed",
    "net::",
    "err_connection",
    "element not found",
    "no element matches",
)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")
_BARE_ANSI = re.compile(r"\[[\d;]*m")
_MULTIPLE_MATCH = re.compile(r'Selector "([^"]+)" matched (\d+) elements')


class ErrorKind(Enum):
    BLOCKING = "blocking"
    SKIPPABLE = "skippable"
    FAILED = "failed"


class BlockingError(RuntimeError):
    """The browser session is unusable; stop the run."""

    def __init__(self, message: str, step_index: Optional[int] = None):
        super().__init__(message)
        self.step_index = step_index


def is_blocking_error(message: str) -> bool:
    lowered = message.lower()
    return any(pattern in lowered for pattern in BLOCKING_PATTERNS)


def is_skippable_error(message: str) -> bool:
    lowered = message.lower()
    return any(pattern in lowered for pattern in SKIPPABLE_PATTERNS)


def classify_error(message: str, strict_mode: bool = False) -> ErrorKind:
    if strict_mode or is_blocking_error(message):
        return ErrorKind.BLOCKING
    if is_skippable_error(message):
        return ErrorKind.SKIPPABLE
    return ErrorKind.FAILED


def strip_ansi(text: str) -> str:
    return _BARE_ANSI.sub("", _ANSI.sub("", text))


@dataclass
class MultipleMatch:
    selector: str
    count: int


def parse_multiple_match(message: str) -> Optional[MultipleMatch]:
    """Detect a "Selector "x" matched N elements" failure."""
    match = _MULTIPLE_MATCH.search(strip_ansi(message))
    if match is None:
        return None
    return MultipleMatch(selector=match.group(1), count=int(match.group(2)))


def narrow_selector(selector: str) -> str:
    """
    Address the first element a selector matches.

    Uses Playwright's ``>> nth=0`` for every selector form. ``:first-of-type``
    is not equivalent: it filters by sibling position and can pick a
    different element, or none.
    """
    if selector.endswith(">> nth=0"):
        return selector
    return f"{selector} >> nth=0"


_EMPTY_ATTR = re.compile(r"""\[(name|id|aria-label)\s*=\s*(['"])\2\]""")
_BRACKET_FIRST_OF_TYPE = re.compile(r"\]\s*:first-of-type")
_FIRST_OF_TYPE = re.compile(r":first-of-type\b")
_SELECTED_OPTION = re.compile(r""":has\(option\[value=['"][^'"]*['"]\]\[selected\]\)""")


def sanitize_selector(selector: str) -> str:
    """
    Clean up a generated selector.

    Removes empty attribute tests (``[name='']``, ``[id=""]``,
    ``[aria-label='']``). When any were present the selector is treated as
    malformed and ``:first-of-type`` and selected-option ``:has(...)``
    filters are removed as well.

    Raises:
        ValueError: if nothing usable remains
    """
    result = _EMPTY_ATTR.sub("", selector)
    if result != selector:
        result = _BRACKET_FIRST_OF_TYPE.sub("]", result)
        result = _FIRST_OF_TYPE.sub("", result)
        result = _SELECTED_OPTION.sub("", result)
    result = result.strip()
    if not result:
        raise ValueError(f'Selector sanitization produced empty result from: "{selector}"')
    return result
