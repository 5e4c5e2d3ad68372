"""
AI backends for uiScout.

Each backend turns a (system prompt, user prompt) pair into a JSON decision.
"""

import os
from typing import Optional

from .base import (
    ActionDecision,
    Decider,
    DeciderError,
    NavigatorResponse,
    SmartInteractionResponse,
    parse_json_response,
)

DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-4o-mini",
}


def create_decider(backend_type: str = "gemini", api_key: Optional[str] = None, model: Optional[str] = None) -> Decider:
    """
    Create a decider for ``backend_type``.

    The API key defaults to ``{BACKEND}_API_KEY`` from the environment.

    Raises:
        ValueError: for an unknown backend or a missing API key
    """
    backend_type = backend_type.lower()
    if backend_type not in DEFAULT_MODELS:
        raise ValueError(f"Unknown backend: {backend_type}. Use 'gemini' or 'openai'.")

    api_key = api_key or os.environ.get(f"{backend_type.upper()}_API_KEY")
    if not api_key:
        raise ValueError(
            f"No API key provided. Set {backend_type.upper()}_API_KEY environment variable or pass api_key."
        )

    model = model or DEFAULT_MODELS[backend_type]
    if backend_type == "gemini":
        from .gemini import GeminiDecider

        return GeminiDecider(api_key=api_key, model=model)

    from .openai import OpenAIDecider

    return OpenAIDecider(api_key=api_key, model=model)


__all__ = [
    "ActionDecision",
    "Decider",
    "DeciderError",
    "NavigatorResponse",
    "SmartInteractionResponse",
    "create_decider",
    "parse_json_response",
]
