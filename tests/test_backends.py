"""Tests for AI backend parsing and construction. No network calls are made."""

import os
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.backends import (
    ActionDecision,
    DeciderError,
    NavigatorResponse,
    SmartInteractionResponse,
    create_decider,
    parse_json_response,
)
from uiscout.backends.gemini import GeminiDecider, is_rate_limit_error
from uiscout.backends.openai import OpenAIDecider


class TestParseJsonResponse:
    """Test extraction of JSON objects from model output."""

    def test_plain_json(self):
        assert parse_json_response('{"decisions": []}') == {"decisions": []}

    def test_fenced_json(self):
        text = '```json\n{"branchExhausted": true}\n```'
        assert parse_json_response(text) == {"branchExhausted": True}

    def test_fence_without_tag(self):
        assert parse_json_response('```\n{"a": 1}\n```') == {"a": 1}

    def test_json_wrapped_in_prose(self):
        text = 'Here is my answer: {"decisions": [{"actionId": "e_1"}]} Hope it helps.'
        assert parse_json_response(text)["decisions"][0]["actionId"] == "e_1"

    def test_empty(self):
        with pytest.raises(DeciderError, match="Empty response"):
            parse_json_response("")
        with pytest.raises(DeciderError):
            parse_json_response(None)

    def test_not_json(self):
        with pytest.raises(DeciderError, match="Failed to parse"):
            parse_json_response("I could not decide")

    def test_array_rejected(self):
        with pytest.raises(DeciderError, match="not a JSON object"):
            parse_json_response("[1, 2, 3]")


class TestResponseTypes:
    """Test tolerant parsing of decision payloads."""

    def test_action_decision(self):
        decision = ActionDecision.from_dict(
            {"actionId": "e_abc", "priority": "8", "rationale": "Pricing matters", "interactionHint": "laptop"}
        )
        assert decision.action_id == "e_abc"
        assert decision.priority == 8
        assert decision.interaction_hint == "laptop"

    def test_action_decision_bad_priority(self):
        decision = ActionDecision.from_dict({"actionId": "e_abc", "priority": "high", "rationale": None})
        assert decision.priority == 5
        assert decision.rationale == ""
        assert decision.interaction_hint is None

    def test_navigator_response_skips_malformed_entries(self):
        response = NavigatorResponse.from_dict(
            {"decisions": [{"actionId": "e_1", "priority": 9}, "junk", None], "observations": "Shop page"}
        )
        assert [d.action_id for d in response.decisions] == ["e_1"]
        assert response.branch_exhausted is False
        assert response.observations == "Shop page"

    def test_navigator_response_exhausted(self):
        response = NavigatorResponse.from_dict({"decisions": None, "branchExhausted": True, "exhaustedReason": "done"})
        assert response.decisions == []
        assert response.branch_exhausted
        assert response.exhausted_reason == "done"

    def test_smart_interaction_defaults(self):
        response = SmartInteractionResponse.from_dict({}, default_value="test query", default_enter=True)
        assert response.value == "test query"
        assert response.wait_for_ms == 1500
        assert response.press_enter_after is True

    def test_smart_interaction_explicit(self):
        response = SmartInteractionResponse.from_dict(
            {"value": "42", "waitForMs": "200", "pressEnterAfter": False, "expectation": "Quantity updates"},
            default_enter=True,
        )
        assert response.value == "42"
        assert response.wait_for_ms == 200
        assert response.press_enter_after is False
        assert response.expectation == "Quantity updates"


class TestCreateDecider:
    """Test backend selection."""

    def test_unknown_backend(self, clean_env):
        with pytest.raises(ValueError, match="Unknown backend"):
            create_decider("claude", api_key="x")

    def test_missing_key(self, clean_env):
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            create_decider("gemini")

    def test_openai_default_model(self, clean_env):
        decider = create_decider("OpenAI", api_key="sk-test")
        assert isinstance(decider, OpenAIDecider)
        assert decider.model_name == "gpt-4o-mini"

    def test_key_from_environment(self, clean_env):
        clean_env.setenv("GEMINI_API_KEY", "env-key")
        decider = create_decider("gemini", model="gemini-2.5-flash")
        assert isinstance(decider, GeminiDecider)
        assert decider.model_name == "gemini-2.5-flash"
        assert decider.fallback_model_name == "gemini-2.0-flash"


class TestOpenAIDecider:
    """Test the OpenAI backend against a stub client."""

    def _decider(self, content=None, error=None):
        decider = OpenAIDecider(api_key="sk-test")
        create = MagicMock()
        if error is not None:
            create.side_effect = error
        else:
            create.return_value = SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
            )
        decider.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        return decider, create

    def test_decide(self):
        decider, create = self._decider('{"decisions": [{"actionId": "e_1", "priority": 7}]}')
        result = decider.decide("system", "user", 5.0)
        assert result["decisions"][0]["actionId"] == "e_1"
        kwargs = create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["timeout"] == 5.0
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_request_failure(self):
        decider, _ = self._decider(error=RuntimeError("connection reset"))
        with pytest.raises(DeciderError, match="OpenAI request failed"):
            decider.decide("system", "user", 5.0)


class TestGeminiDecider:
    """Test rate-limit fallback against a stub SDK."""

    def _decider(self, outcomes_by_model):
        decider = GeminiDecider(api_key="test-key", model="gemini-2.0-flash", rate_limit_wait_s=0)
        calls = []

        def model_factory(name, system_instruction=None, generation_config=None):
            def generate_content(content, request_options=None):
                calls.append(name)
                outcome = outcomes_by_model[name].pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return SimpleNamespace(text=outcome)

            return SimpleNamespace(generate_content=generate_content)

        decider.genai = SimpleNamespace(GenerativeModel=model_factory)
        return decider, calls

    def test_is_rate_limit_error(self):
        assert is_rate_limit_error(RuntimeError("429 Resource exhausted"))
        assert is_rate_limit_error(RuntimeError("Quota exceeded"))
        assert not is_rate_limit_error(RuntimeError("invalid argument"))

    def test_decide(self):
        decider, calls = self._decider({"gemini-2.0-flash": ['{"decisions": []}']})
        assert decider.decide("system", "user", 10.0) == {"decisions": []}
        assert calls == ["gemini-2.0-flash"]
        assert decider.last_used_model == "gemini-2.0-flash"

    def test_falls_back_after_rate_limits(self):
        limited = RuntimeError("429 rate limited")
        decider, calls = self._decider(
            {
                "gemini-2.0-flash": [limited, limited, limited],
                "gemini-2.0-flash-lite": ['{"decisions": []}'],
            }
        )
        assert decider.decide("system", "user", 10.0) == {"decisions": []}
        assert calls == ["gemini-2.0-flash"] * 3 + ["gemini-2.0-flash-lite"]
        assert decider.last_used_model == "gemini-2.0-flash-lite"

    def test_other_errors_not_retried(self):
        decider, calls = self._decider({"gemini-2.0-flash": [RuntimeError("invalid argument")]})
        with pytest.raises(DeciderError, match="Gemini request failed"):
            decider.decide("system", "user", 10.0)
        assert calls == ["gemini-2.0-flash"]

    def test_all_models_limited(self):
        limited = RuntimeError("quota exceeded")
        decider, _ = self._decider(
            {"gemini-2.0-flash": [limited] * 3, "gemini-2.0-flash-lite": [limited] * 3}
        )
        with pytest.raises(DeciderError, match="All Gemini models failed"):
            decider.decide("system", "user", 10.0)
