"""
Smart interactions: filling inputs with values that make sense for them.

A search box gets a query and an Enter press; an email field gets an email
address; a password field gets a password. Values come from the AI tier when
it is enabled and from keyword defaults otherwise, so inputs are always
fillable, even with no AI configured.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .actions import perform_with_selector_retry
from .backends.base import SmartInteractionResponse
from .graph import GraphEdge
from .scoring import ActionType

logger = logging.getLogger(__name__)


class InteractionType(Enum):
    SEARCH = "search"
    FILTER = "filter"
    LOGIN = "login"
    FORM = "form"


SEARCH_KEYWORDS = ["search", "find", "query", "look for"]
FILTER_KEYWORDS = ["filter", "sort", "select", "choose"]
LOGIN_KEYWORDS = ["login", "signin", "sign in"]


@dataclass
class SmartInteractionRequest:
    type: InteractionType
    url: str
    selector: str
    dom_summary: str = ""
    element_type: str = "input"
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None


@dataclass
class SmartInteractionResult:
    success: bool
    value: str
    state_changed: bool = False
    pressed_enter: bool = False
    error: Optional[str] = None


def detect_interaction_type(edge: GraphEdge) -> Optional[InteractionType]:
    element = edge.action.element
    combined = " ".join(
        [
            edge.action.selector.lower(),
            (element.placeholder or "").lower(),
            (element.aria_label or "").lower(),
            (element.text or "").lower(),
        ]
    )

    if element.type == "search" or element.role == "searchbox" or any(kw in combined for kw in SEARCH_KEYWORDS):
        return InteractionType.SEARCH
    if (
        element.tag_name == "select"
        or element.role in ("combobox", "listbox")
        or any(kw in combined for kw in FILTER_KEYWORDS)
    ):
        return InteractionType.FILTER
    if any(kw in combined for kw in LOGIN_KEYWORDS) or element.type == "password":
        return InteractionType.LOGIN
    if edge.action.type == ActionType.FILL:
        return InteractionType.FORM
    return None


def needs_smart_interaction(edge: GraphEdge) -> bool:
    return edge.action.type == ActionType.FILL and detect_interaction_type(edge) is not None


def default_value(request: SmartInteractionRequest) -> str:
    """Keyword-driven test value for an input."""
    hint = " ".join(
        [(request.placeholder or "").lower(), (request.aria_label or "").lower(), request.selector.lower()]
    )
    element_type = (request.element_type or "").lower()

    if request.type == InteractionType.SEARCH or "search" in hint:
        return "test query"
    if "email" in hint or element_type == "email":
        return "test@example.com"
    if "password" in hint or element_type == "password":
        return "TestPassword123!"
    if "phone" in hint or "tel" in hint or element_type == "tel":
        return "555-123-4567"
    if "name" in hint:
        if "first" in hint:
            return "John"
        if "last" in hint:
            return "Doe"
        return "John Doe"
    if "address" in hint or "street" in hint:
        return "123 Test Street"
    if "city" in hint:
        return "Test City"
    if "zip" in hint or "postal" in hint:
        return "12345"
    if "country" in hint:
        return "United States"
    if "url" in hint or "website" in hint or element_type == "url":
        return "https://example.com"
    if element_type == "number" or "number" in hint or "quantity" in hint:
        return "42"
    if "date" in hint or element_type == "date":
        return "2024-01-15"
    return "test value"


def default_interaction_response(request: SmartInteractionRequest) -> SmartInteractionResponse:
    is_search = request.type == InteractionType.SEARCH
    return SmartInteractionResponse(
        value=default_value(request),
        wait_for_ms=1500 if is_search else 500,
        expectation="Search results should appear" if is_search else "Form should accept input",
        press_enter_after=is_search,
    )


def build_request(edge: GraphEdge, dom_summary: str, current_url: str) -> Optional[SmartInteractionRequest]:
    interaction_type = detect_interaction_type(edge)
    if interaction_type is None:
        return None
    element = edge.action.element
    return SmartInteractionRequest(
        type=interaction_type,
        url=current_url,
        selector=edge.action.selector,
        dom_summary=dom_summary,
        element_type=element.type or element.tag_name,
        placeholder=element.placeholder,
        aria_label=element.aria_label,
    )


async def execute_smart_interaction(
    browser,
    edge: GraphEdge,
    dom_summary: str,
    current_url: str,
    engine=None,  # Optional[DecisionEngine]
    stability_window_ms: int = 300,
    selector_retries: int = 2,
) -> SmartInteractionResult:
    """
    Fill ``edge``'s input with a generated value and report whether the page changed.

    An interaction hint on the edge overrides the generated value. Browser
    errors are returned in the result for the caller to classify.
    """
    request = build_request(edge, dom_summary, current_url)
    if request is None:
        return SmartInteractionResult(success=False, value="", error="Could not determine interaction type")

    if engine is not None:
        response = await engine.generate_smart_interaction(request)
    else:
        response = default_interaction_response(request)

    if edge.interaction_hint:
        response.value = edge.interaction_hint

    try:
        before = await browser.take_page_snapshot()
        await perform_with_selector_retry(
            browser, ActionType.FILL, edge.action.selector, response.value, max_retries=selector_retries
        )
        if response.press_enter_after:
            await browser.press("Enter")
        await browser.wait(response.wait_for_ms)
        await browser.wait_for_stability(stability_window_ms)
        after = await browser.take_page_snapshot()
    except Exception as e:
        logger.debug("Smart interaction on %s failed: %s", edge.action.selector, e)
        return SmartInteractionResult(success=False, value=response.value, error=str(e))

    return SmartInteractionResult(
        success=True,
        value=response.value,
        state_changed=before.dom_hash != after.dom_hash or before.url != after.url,
        pressed_enter=response.press_enter_after,
    )
