"""
Pytest configuration and shared fixtures for uiScout tests.

Most tests run against ``fakes.FakeBrowser``; tests marked ``ai_e2e`` need a
real browser and an API key.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from fakes import FakeBrowser, ScriptedDecider, small_site


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (exploration, etc.)")
    config.addinivalue_line("markers", "ai_e2e: marks tests as requiring AI API keys")


@pytest.fixture
def site():
    """Pages of a three-page site on http://site.test."""
    return small_site()


@pytest.fixture
def fake_browser(site) -> FakeBrowser:
    return FakeBrowser(site)


@pytest.fixture
def clean_env(monkeypatch):
    """Environment without any uiScout or API key variables."""
    for name in list(os.environ):
        if name.startswith("UISCOUT_") or name in ("GEMINI_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def scripted_decider():
    return ScriptedDecider({"decisions": []})


# Utility functions for tests
def has_api_key() -> bool:
    """Check if any AI API key is available."""
    return bool(os.environ.get("GEMINI_API_KEY") or os.environ.get("OPENAI_API_KEY"))


def get_api_key_and_backend():
    """Get available API key and backend type."""
    if os.environ.get("GEMINI_API_KEY"):
        return os.environ.get("GEMINI_API_KEY"), "gemini"
    elif os.environ.get("OPENAI_API_KEY"):
        return os.environ.get("OPENAI_API_KEY"), "openai"
    return None, None
