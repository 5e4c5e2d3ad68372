"""
OpenAI backend implementation for uiScout.

Supports GPT-4o and other chat models through the Chat Completions API.
"""

from typing import Any, Dict

from .base import Decider, DeciderError, parse_json_response


class OpenAIDecider(Decider):
    """
    OpenAI implementation of Decider.

    Uses Chat Completions in JSON-object mode.

    Example:
        ```python
        decider = OpenAIDecider(api_key="your-openai-api-key", model="gpt-4o-mini")
        engine = DecisionEngine(decider=decider)
        ```
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", temperature: float = 0.3):
        """
        Initialize OpenAI backend.

        Args:
            api_key: OpenAI API key
            model: OpenAI model name (default: gpt-4o-mini)
            temperature: Sampling temperature
        """
        from openai import OpenAI

        self.client = OpenAI(api_key=api_key)
        self.model_name = model
        self.temperature = temperature

    def decide(self, system_prompt: str, user_prompt: str, timeout_s: float) -> Dict[str, Any]:
        """Ask the chat model for a JSON decision."""
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
                max_tokens=1000,
                timeout=timeout_s,
            )
        except Exception as e:
            raise DeciderError(f"OpenAI request failed: {e}") from e
        return parse_json_response(response.choices[0].message.content)
