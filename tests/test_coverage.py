"""Tests for coverage tracking."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.coverage import (
    ActionOutcome,
    CoverageGain,
    CoverageTracker,
    collect_page_coverage,
    format_coverage_stats,
    get_coverage_recommendations,
    normalize_console_error,
    normalize_url,
)

from fakes import FakeBrowser, FakePage


class TestNormalization:
    """Test URL and error normalization."""

    def test_normalize_url_drops_query_fragment_and_slash(self):
        assert normalize_url("https://Example.com/Docs/?page=2#top") == "https://example.com/docs"

    def test_normalize_url_relative(self):
        assert normalize_url("/About/") == "/about"

    def test_normalize_console_error_strips_positions(self):
        assert normalize_console_error("TypeError at app.js:10:42") == "TypeError at app.js"

    def test_normalize_console_error_truncates(self):
        assert len(normalize_console_error("x" * 500)) == 200


class TestCoverageTracker:
    """Test coverage recording and gains."""

    def test_record_returns_novelty(self):
        tracker = CoverageTracker()
        assert tracker.record_url("http://a.test/page?x=1")
        assert not tracker.record_url("http://a.test/page/")
        assert tracker.record_network_request("get", "http://a.test/api")
        assert not tracker.record_network_request("GET", "http://a.test/api?x=2")

    def test_element_interaction_is_case_insensitive(self):
        tracker = CoverageTracker()
        assert tracker.record_element_interaction("#Submit ")
        assert not tracker.record_element_interaction("#submit")

    def test_gain_against_snapshot(self):
        tracker = CoverageTracker()
        tracker.record_url("http://a.test/")
        snapshot = tracker.take_snapshot(0)
        tracker.record_url("http://a.test/")
        tracker.record_url("http://a.test/new")
        tracker.record_form("POST-/login")
        gain = tracker.calculate_gain(snapshot)
        assert gain.new_urls == ["http://a.test/new"]
        assert gain.new_forms == ["POST-/login"]
        assert gain.total_gain == 2
        assert gain.has_gain

    def test_snapshot_is_isolated(self):
        """Later records must not leak into an earlier snapshot."""
        tracker = CoverageTracker()
        snapshot = tracker.take_snapshot(0)
        tracker.record_dialog("dialog-confirm")
        assert snapshot.metrics.unique_dialogs == set()

    def test_stats_and_score(self):
        tracker = CoverageTracker()
        for i in range(10):
            tracker.record_url(f"http://a.test/{i}")
        tracker.record_form("f1")
        stats = tracker.get_stats()
        assert stats.total_urls == 10
        # urls capped at 40, one form is 5
        assert stats.coverage_score == 45

    def test_most_effective_action_types(self):
        tracker = CoverageTracker()
        tracker.record_action_outcome(ActionOutcome("click", CoverageGain(new_urls=["a", "b"]), 1))
        tracker.record_action_outcome(ActionOutcome("click", CoverageGain(), 2))
        tracker.record_action_outcome(ActionOutcome("fill", CoverageGain(new_forms=["f"] * 3), 3))
        ranked = tracker.get_most_effective_action_types()
        assert ranked[0]["type"] == "fill"
        assert ranked[0]["avg_gain"] == 3
        assert ranked[1] == {"type": "click", "avg_gain": 1.0, "count": 2}

    def test_reset(self):
        tracker = CoverageTracker()
        tracker.record_url("http://a.test/")
        tracker.record_action_outcome(ActionOutcome("click", CoverageGain(), 0))
        tracker.reset()
        assert tracker.get_stats().total_urls == 0
        assert tracker.get_action_outcomes() == []


class TestRecommendations:
    """Test coverage recommendations."""

    def test_empty_tracker_recommends_breadth_and_dialogs(self):
        types = [r.type for r in get_coverage_recommendations(CoverageTracker())]
        assert types == ["increase_breadth", "find_dialogs"]

    def test_unvisited_forms(self):
        tracker = CoverageTracker()
        tracker.record_form("f1")
        tracker.record_form("f2")
        tracker.record_url_with_form("http://a.test/")
        recommendations = get_coverage_recommendations(tracker)
        assert recommendations[0].type == "explore_forms"
        assert "1 forms" in recommendations[0].message

    def test_format_stats(self):
        tracker = CoverageTracker()
        tracker.record_url("http://a.test/")
        tracker.record_url("http://a.test/b")
        text = format_coverage_stats(tracker.get_stats())
        assert "URLs: 2" in text
        assert "Coverage Score: " in text


class TestCollectPageCoverage:
    """Test reading coverage from a page."""

    @pytest.mark.asyncio
    async def test_collects_forms_errors_and_requests(self):
        browser = FakeBrowser({"http://a.test/login": FakePage(title="Login", forms=["POST-/login-inputs:2"])})
        await browser.open("http://a.test/login")
        browser.console_errors.append("Uncaught TypeError at main.js:1:2")
        tracker = CoverageTracker()

        await collect_page_coverage(browser, tracker, "http://a.test/login")

        metrics = tracker.get_metrics()
        assert metrics.unique_urls == {"http://a.test/login"}
        assert metrics.unique_forms == {"POST-/login-inputs:2"}
        assert metrics.urls_with_forms == {"http://a.test/login"}
        assert metrics.unique_console_errors == {"Uncaught TypeError at main.js"}
        assert metrics.urls_with_errors == {"http://a.test/login"}
        assert metrics.unique_network_requests == {"GET http://a.test/login"}

    @pytest.mark.asyncio
    async def test_detection_failure_still_records_url(self):
        browser = FakeBrowser({"http://a.test/": FakePage()})
        await browser.open("http://a.test/")
        browser.fail_eval = True
        tracker = CoverageTracker()
        await collect_page_coverage(browser, tracker, "http://a.test/")
        assert tracker.get_stats().total_urls == 1
