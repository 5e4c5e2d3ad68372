"""Tests for the rule-based decision fast path."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.decision import DecisionContext, DecisionEngine
from uiscout.heuristics import (
    HeuristicAnalyzer,
    HeuristicConfig,
    HeuristicDecision,
    is_cta_button,
    is_navigation_link,
    leads_to_novel_url,
)
from uiscout.scoring import ActionType

from fakes import ScriptedDecider, make_edge, make_node


def _analyze(edges, visited=None, explored=None, config=None):
    analyzer = HeuristicAnalyzer(config)
    node = make_node(edges=edges)
    return analyzer, analyzer.analyze(node, edges, explored or [], set(visited or ()), base_domain="site.test")


class TestPatterns:
    """Test the element patterns."""

    def test_cta_button(self):
        assert is_cta_button(make_edge("n1", "#s", tag="button", text="Sign Up"))
        assert not is_cta_button(make_edge("n1", "#s", tag="a", text="Sign Up"))

    def test_navigation_link(self):
        assert is_navigation_link(make_edge("n1", "#p", tag="a", text="Pricing", href="/pricing"))
        assert not is_navigation_link(make_edge("n1", "#p", tag="a", text="Read article", href="/post"))

    def test_novel_url(self):
        edge = make_edge("n1", "#p", tag="a", href="/pricing")
        assert leads_to_novel_url(edge, set(), "http://site.test/")
        assert not leads_to_novel_url(edge, {"http://site.test/pricing"}, "http://site.test/")
        assert not leads_to_novel_url(make_edge("n1", "#b"), set(), "http://site.test/")


class TestHeuristicAnalyzer:
    """Test the decision rules."""

    def test_no_pending_backtracks(self):
        analyzer, result = _analyze([])
        assert result.decision == HeuristicDecision.BACKTRACK
        assert result.reason == "no_pending_actions"
        assert analyzer.should_accept(result)

    def test_only_option(self):
        edge = make_edge("n1", "#only")
        _, result = _analyze([edge])
        assert result.decision == HeuristicDecision.SELECT_ACTION
        assert result.selected_edge_id == edge.id
        assert result.confidence == 100

    def test_dominant_score(self):
        """A novel link with a CTA label dwarfs a plain span."""
        signup = make_edge("n1", "#signup", tag="a", text="Sign up", href="/signup")
        plain = make_edge("n1", "#x", tag="span")
        _, result = _analyze([plain, signup])
        assert result.reason == "dominant_score"
        assert result.selected_edge_id == signup.id
        assert result.confidence == 95

    def test_similar_buttons_are_uncertain(self):
        alpha = make_edge("n1", "#alpha", text="Alpha")
        beta = make_edge("n1", "#beta", text="Beta")
        analyzer, result = _analyze([alpha, beta])
        assert result.decision == HeuristicDecision.UNCERTAIN
        assert result.reason == "multiple_viable_candidates"
        assert not analyzer.should_accept(result)

    def test_navigation_to_new_url(self):
        """Two novel nav links tie on score; the first nav link wins."""
        pricing = make_edge("n1", "#pricing", tag="a", text="Pricing", href="/pricing")
        about = make_edge("n1", "#about", tag="a", text="About", href="/about")
        _, result = _analyze([pricing, about])
        assert result.reason == "navigation_to_new_url"
        assert result.selected_edge_id == pricing.id

    def test_single_cta_button(self):
        """Sign Up outranks Learn More without dominating it; the CTA rule picks it."""
        learn = make_edge("n1", "#learn", text="Learn More")
        signup = make_edge("n1", "#signup", text="Sign Up")
        analyzer, result = _analyze([learn, signup])
        assert result.reason == "cta_button"
        assert result.selected_edge_id == signup.id
        assert result.confidence == 90
        assert analyzer.should_accept(result)

    def test_cta_that_is_not_top_falls_through(self):
        save = make_edge("n1", "#save", text="Save")
        features = make_edge("n1", "#features", tag="a", text="Features", href="/features")
        _, result = _analyze([save, features])
        assert result.reason == "navigation_to_new_url"
        assert result.selected_edge_id == features.id

    def test_novel_url_exploration(self):
        """Links without a nav label still win when they lead somewhere new."""
        article = make_edge("n1", "#article", tag="a", text="Read article", href="/post")
        story = make_edge("n1", "#story", tag="a", text="Latest story", href="/story")
        analyzer, result = _analyze([article, story])
        assert result.reason == "novel_url_exploration"
        assert result.confidence == 80
        assert result.selected_edge_id == article.id
        assert analyzer.should_accept(result)

    def test_visited_links_are_not_novel(self):
        article = make_edge("n1", "#article", tag="a", text="Read article", href="/post")
        story = make_edge("n1", "#story", tag="a", text="Latest story", href="/story")
        _, result = _analyze([article, story], visited={"http://site.test/post", "http://site.test/story"})
        assert result.decision == HeuristicDecision.UNCERTAIN

    def test_novel_url_needs_min_score(self):
        article = make_edge("n1", "#article", tag="a", text="Read article", href="/post")
        story = make_edge("n1", "#story", tag="a", text="Latest story", href="/story")
        _, result = _analyze([article, story], config=HeuristicConfig(novel_url_min_score=60))
        assert result.decision == HeuristicDecision.UNCERTAIN

    def test_high_score_clear_leader(self):
        """A plain button scores about 1.9x a span: a clear leader, not dominant."""
        editor = make_edge("n1", "#editor", text="Open editor")
        plain = make_edge("n1", "#x", tag="span")
        analyzer, result = _analyze([plain, editor])
        assert result.reason == "high_score_clear_leader"
        assert result.confidence == 75
        assert result.selected_edge_id == editor.id
        assert 1.5 <= result.metadata["score_ratio"] < 2.0
        assert analyzer.should_accept(result)

    def test_clear_leader_below_threshold_escalates(self):
        editor = make_edge("n1", "#editor", text="Open editor")
        plain = make_edge("n1", "#x", tag="span")
        analyzer, result = _analyze([plain, editor], config=HeuristicConfig(confidence_threshold=80))
        assert result.reason == "high_score_clear_leader"
        assert not analyzer.should_accept(result)

    def test_clear_leader_needs_min_score(self):
        editor = make_edge("n1", "#editor", text="Open editor")
        plain = make_edge("n1", "#x", tag="span")
        _, result = _analyze([plain, editor], config=HeuristicConfig(clear_leader_min_score=40))
        assert result.decision == HeuristicDecision.UNCERTAIN

    def test_top_candidates_for_ai(self):
        analyzer = HeuristicAnalyzer()
        edges = [
            make_edge("n1", "#plain", tag="span"),
            make_edge("n1", "#signup", text="Sign up"),
            make_edge("n1", "#email", tag="input", action_type=ActionType.FILL),
        ]
        top = analyzer.top_candidates_for_ai(edges, set(), "http://site.test/", n=2)
        assert len(top) == 2
        assert top[0].action.selector == "#signup"
        assert all(e.action.selector != "#plain" for e in top)


class TestHeuristicsInEngine:
    """Test that confident rules never reach the decider."""

    @pytest.mark.asyncio
    async def test_single_cta_decided_without_ai(self):
        learn = make_edge("n1", "#learn", text="Learn More")
        signup = make_edge("n1", "#signup", text="Sign Up")
        decider = ScriptedDecider({"decisions": []})
        engine = DecisionEngine(decider)
        result = await engine.select_action(
            DecisionContext(node=make_node(edges=[learn, signup]), pending_edges=[learn, signup])
        )
        assert result.top_action is signup
        assert result.tier == "heuristic"
        assert result.decisions[0].rationale == "Heuristic: cta_button"
        assert decider.calls == []
        assert engine.get_stats().ai_escalations == 0
