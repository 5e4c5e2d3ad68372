"""Tests for action scoring."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.coverage import CoverageTracker
from uiscout.scoring import (
    ActionCandidate,
    ActionScorer,
    ActionType,
    ElementInfo,
    ScoringContext,
    build_scoring_context,
    business_criticality_score,
    extract_action_candidates,
    format_candidate,
    is_same_domain,
    novelty_score,
    risk_score,
)

from fakes import FakeBrowser, FakeElement, FakePage


def _candidate(selector="#x", tag="button", text="", href=None, type=None, action=ActionType.CLICK, **flags):
    return ActionCandidate(
        selector=selector,
        action_type=action,
        element=ElementInfo(tag_name=tag, text=text, href=href, type=type, **flags),
    )


CONTEXT = ScoringContext(current_url="http://site.test/", base_domain="site.test")


class TestSameDomain:
    """Test the domain restriction rule."""

    def test_relative_links_are_same_domain(self):
        assert is_same_domain("/about", "site.test", "http://site.test/")

    def test_www_prefix_ignored(self):
        assert is_same_domain("https://www.site.test/x", "site.test")

    def test_subdomain_is_external(self):
        assert not is_same_domain("https://docs.site.test/", "site.test")

    def test_non_http_scheme_is_external(self):
        assert not is_same_domain("mailto:a@site.test", "site.test")

    def test_no_base_domain_allows_everything(self):
        assert is_same_domain("https://anywhere.test/", None)


class TestFactors:
    """Test the individual scoring factors."""

    def test_unvisited_link_is_novel(self):
        assert novelty_score(_candidate(tag="a", href="/new"), CONTEXT) == 8

    def test_visited_link_is_not_novel(self):
        context = ScoringContext(current_url="http://site.test/", visited_urls={"http://site.test/new"})
        assert novelty_score(_candidate(tag="a", href="/new/"), context) == 1

    def test_external_link_has_zero_novelty(self):
        assert novelty_score(_candidate(tag="a", href="https://other.test/"), CONTEXT) == 0

    def test_unsubmitted_form(self):
        assert novelty_score(_candidate(type="submit", form_id="login"), CONTEXT) == 7

    def test_interacted_element_penalized(self):
        context = ScoringContext(current_url="http://site.test/", interacted_elements={"#more"})
        assert novelty_score(_candidate("#more", text="Show more"), context) == 1

    def test_cta_is_business_critical(self):
        assert business_criticality_score(_candidate(text="Sign up now")) == 10
        assert business_criticality_score(_candidate(tag="a", text="Home")) == 5
        assert business_criticality_score(_candidate(tag="span")) == 3

    def test_fill_is_risky(self):
        assert risk_score(_candidate(tag="input", action=ActionType.FILL)) == 8


class TestActionScorer:
    """Test scoring, ranking and selection."""

    def test_disabled_candidates_score_near_zero(self):
        scorer = ActionScorer()
        scored = scorer.score_action(_candidate(text="Submit", is_disabled=True), CONTEXT)
        assert scored.priority_score <= 0.1

    def test_enables_submit_bonus(self):
        scorer = ActionScorer()
        plain = scorer.score_action(_candidate(tag="input", action=ActionType.FILL), CONTEXT)
        enabling = scorer.score_action(
            _candidate(tag="input", action=ActionType.FILL, enables_submit_button=True), CONTEXT
        )
        assert enabling.priority_score == pytest.approx(plain.priority_score + 50)

    def test_attempts_decay_score(self):
        scorer = ActionScorer()
        candidate = _candidate("#go", text="Go")
        first = scorer.score_action(candidate, CONTEXT)
        scorer.record_attempt("#go", ActionType.CLICK)
        second = scorer.score_action(candidate, CONTEXT)
        assert second.was_attempted
        assert second.decay_factor == pytest.approx(0.7)
        assert second.priority_score == pytest.approx(first.priority_score * 0.7)

    def test_type_overuse_decay(self):
        scorer = ActionScorer()
        candidate = _candidate("#go", text="Go")
        base = scorer.score_action(candidate, CONTEXT).priority_score
        overused = ScoringContext(current_url="http://site.test/", action_type_counts={"click": 11})
        assert scorer.score_action(candidate, overused).priority_score == pytest.approx(base * 0.9)

    def test_rank_orders_by_score(self):
        scorer = ActionScorer()
        ranked = scorer.rank_actions(
            [_candidate("#plain", tag="span"), _candidate("#signup", text="Sign up")], CONTEXT
        )
        assert [c.selector for c in ranked] == ["#signup", "#plain"]

    def test_select_top_excludes_disabled_and_exhausted(self):
        scorer = ActionScorer()
        candidates = [
            _candidate("#a", text="Sign up"),
            _candidate("#b", text="Submit", is_disabled=True),
            _candidate("#c", tag="span"),
        ]
        scorer.record_attempt("#a", ActionType.CLICK)
        scorer.record_attempt("#a", ActionType.CLICK)
        top = scorer.select_top_actions(candidates, CONTEXT, 5)
        assert [c.selector for c in top] == ["#c"]

    def test_format_candidate(self):
        scored = ActionScorer().score_action(_candidate("#go", text="Go"), CONTEXT)
        assert "Selector: #go" in format_candidate(scored)


class TestCandidateExtraction:
    """Test reading candidates from the page."""

    @pytest.mark.asyncio
    async def test_extract_action_candidates(self):
        browser = FakeBrowser(
            {
                "http://site.test/": FakePage(
                    elements=[
                        FakeElement("a#about", tag="a", text="About", href="/about"),
                        FakeElement("input#q", tag="input", type="search", action_type="fill"),
                    ]
                )
            }
        )
        await browser.open("http://site.test/")
        candidates = await extract_action_candidates(browser)
        assert [c.selector for c in candidates] == ["a#about", "input#q"]
        assert candidates[0].element.tag_name == "a"
        assert candidates[1].action_type == ActionType.FILL

    @pytest.mark.asyncio
    async def test_extraction_failure_returns_empty(self):
        browser = FakeBrowser({})
        browser.fail_eval = True
        assert await extract_action_candidates(browser) == []

    def test_build_scoring_context(self):
        coverage = CoverageTracker()
        coverage.record_url("http://site.test/a")
        coverage.record_element_interaction("#x")
        context = build_scoring_context(coverage, "http://site.test/", "site.test")
        assert context.visited_urls == {"http://site.test/a"}
        assert context.interacted_elements == {"#x"}
        assert context.base_domain == "site.test"
