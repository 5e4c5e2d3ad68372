"""
Abstract base interface for AI decision backends.

This module defines the contract every AI backend must implement. The
exploration engine only ever asks one thing of a backend: given a system
prompt and a user prompt, return a JSON object. Backends can therefore be
swapped between providers (Gemini, OpenAI, or anything that speaks JSON).
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class DeciderError(RuntimeError):
    """The backend failed or returned something that is not usable JSON."""


@dataclass
class ActionDecision:
    """One ranked action chosen by the AI."""

    action_id: str
    priority: int = 5
    rationale: str = ""
    interaction_hint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionDecision":
        """Create ActionDecision from dictionary response."""
        try:
            priority = int(data.get("priority", 5))
        except (TypeError, ValueError):
            priority = 5
        return cls(
            action_id=str(data.get("actionId", "")),
            priority=priority,
            rationale=data.get("rationale", "") or "",
            interaction_hint=data.get("interactionHint") or None,
        )


@dataclass
class NavigatorResponse:
    """Structured response to an action-selection request."""

    decisions: List[ActionDecision] = field(default_factory=list)
    branch_exhausted: bool = False
    exhausted_reason: Optional[str] = None
    observations: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigatorResponse":
        """Create NavigatorResponse from dictionary response."""
        raw = data.get("decisions") or []
        decisions = [ActionDecision.from_dict(d) for d in raw if isinstance(d, dict)]
        return cls(
            decisions=decisions,
            branch_exhausted=bool(data.get("branchExhausted", False)),
            exhausted_reason=data.get("exhaustedReason"),
            observations=data.get("observations"),
        )


@dataclass
class SmartInteractionResponse:
    """How to fill an input: the value, whether to submit, and how long to wait."""

    value: str
    wait_for_ms: int = 1500
    expectation: str = "Page should update"
    press_enter_after: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_value: str = "", default_enter: bool = False) -> "SmartInteractionResponse":
        """Create SmartInteractionResponse, falling back to defaults for missing fields."""
        try:
            wait = int(data.get("waitForMs") or 1500)
        except (TypeError, ValueError):
            wait = 1500
        enter = data.get("pressEnterAfter")
        return cls(
            value=str(data.get("value") or default_value),
            wait_for_ms=wait,
            expectation=data.get("expectation") or "Page should update",
            press_enter_after=default_enter if enter is None else bool(enter),
        )


def parse_json_response(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse a model's text output as a JSON object.

    Strips markdown code fences and a leading ``json`` tag, and falls back to
    the outermost ``{...}`` when the object is wrapped in prose.

    Raises:
        DeciderError: if no JSON object can be parsed
    """
    if not text:
        raise DeciderError("Empty response from model")

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("```")[1]
        if cleaned.startswith("json"):
            cleaned = cleaned[4:]
    cleaned = cleaned.strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise DeciderError(f"Failed to parse AI response: {text[:100]}")
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise DeciderError(f"Failed to parse AI response: {e}") from e

    if not isinstance(data, dict):
        raise DeciderError("AI response is not a JSON object")
    return data


class Decider(ABC):
    """
    Abstract interface for AI decision backends.

    Implementations are synchronous, like the provider SDKs they wrap; the
    decision engine runs them off the event loop with a timeout.

    Example:
        class MyDecider(Decider):
            def decide(self, system_prompt, user_prompt, timeout_s):
                text = my_client.complete(system_prompt, user_prompt)
                return parse_json_response(text)
    """

    model_name: str = ""

    @abstractmethod
    def decide(self, system_prompt: str, user_prompt: str, timeout_s: float) -> Dict[str, Any]:
        """
        Ask the model for a structured decision.

        Args:
            system_prompt: Instructions describing the task and JSON format
            user_prompt: The page context for this decision
            timeout_s: Upper bound for the provider call, in seconds

        Returns:
            Parsed JSON object

        Raises:
            DeciderError: if the call fails or the output is not a JSON object
        """
        pass
