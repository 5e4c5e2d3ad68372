"""
Google Gemini backend implementation for uiScout.

Supports Gemini 2.x Flash and other Gemini models for exploration decisions.
Includes automatic fallback to cheaper models on rate limits.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from .base import Decider, DeciderError, parse_json_response

logger = logging.getLogger(__name__)


# Model hierarchy: primary -> fallback (on rate limits)
MODEL_FALLBACKS = {
    "gemini-2.5-pro": "gemini-2.5-flash",
    "gemini-2.5-flash": "gemini-2.0-flash",
    "gemini-2.0-flash": "gemini-2.0-flash-lite",
    "gemini-2.0-flash-lite": None,
}


def is_rate_limit_error(error: Exception) -> bool:
    text = str(error).lower()
    return "429" in text or "quota" in text or "rate" in text


class GeminiDecider(Decider):
    """
    Google Gemini implementation of Decider.

    Uses Google's Generative AI SDK in JSON mode. On rate limits it waits and
    retries, then moves on to the fallback model.

    Example:
        ```python
        decider = GeminiDecider(api_key="your-gemini-api-key", model="gemini-2.0-flash")
        engine = DecisionEngine(decider=decider)
        ```
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        fallback_model: Optional[str] = "use-default",
        temperature: float = 0.3,
        rate_limit_wait_s: float = 10.0,
    ):
        """
        Initialize Gemini backend.

        Args:
            api_key: Google Generative AI API key
            model: Gemini model name (default: gemini-2.0-flash)
            fallback_model: Model to use when primary hits rate limits
                (default: from MODEL_FALLBACKS; None disables fallback)
            temperature: Sampling temperature
            rate_limit_wait_s: Base wait between rate-limited attempts
        """
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self.genai = genai
        if fallback_model == "use-default":
            fallback_model = MODEL_FALLBACKS.get(model)
        self.model_name = model
        self.fallback_model_name = fallback_model
        self.temperature = temperature
        self.rate_limit_wait_s = rate_limit_wait_s
        self.last_used_model = model

    def _model(self, name: str, system_prompt: str):
        return self.genai.GenerativeModel(
            name,
            system_instruction=system_prompt,
            generation_config={
                "temperature": self.temperature,
                "response_mime_type": "application/json",
            },
        )

    def _generate_with_fallback(
        self, system_prompt: str, content: List[str], timeout_s: float, max_retries: int = 3
    ) -> Tuple[Any, str]:
        """
        Generate content with automatic fallback on rate limits.

        Returns:
            Tuple of (response, model_name_used)
        """
        names = [self.model_name]
        if self.fallback_model_name:
            names.append(self.fallback_model_name)

        last_error: Optional[Exception] = None
        for name in names:
            model = self._model(name, system_prompt)
            for attempt in range(max_retries):
                try:
                    response = model.generate_content(content, request_options={"timeout": timeout_s})
                    self.last_used_model = name
                    return response, name
                except Exception as e:
                    last_error = e
                    if not is_rate_limit_error(e):
                        raise DeciderError(f"Gemini request failed: {e}") from e
                    if attempt < max_retries - 1:
                        wait = self.rate_limit_wait_s * (attempt + 1)
                        logger.warning(
                            "Rate limit on %s, waiting %.0fs (attempt %d/%d)", name, wait, attempt + 1, max_retries
                        )
                        time.sleep(wait)
                    else:
                        logger.warning("Rate limit exhausted on %s, trying fallback", name)

        raise DeciderError(f"All Gemini models failed: {last_error}")

    def decide(self, system_prompt: str, user_prompt: str, timeout_s: float) -> Dict[str, Any]:
        """Ask Gemini for a JSON decision."""
        response, _ = self._generate_with_fallback(system_prompt, [user_prompt], timeout_s)
        try:
            text = response.text
        except (AttributeError, ValueError) as e:
            raise DeciderError(f"Gemini returned no text: {e}") from e
        return parse_json_response(text)
