"""
Rule-based fast path for action selection.

Most decisions during exploration are obvious: only one action is left, a
call-to-action button clearly dominates, or a navigation link leads to a page
we have not seen. The analyzer resolves those cases locally with a confidence
value; anything below the threshold is escalated to the AI tier.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import urljoin

from .coverage import normalize_url
from .graph import GraphEdge, GraphNode
from .scoring import ActionCandidate, ActionScorer, ActionType, ScoringContext

CTA_KEYWORDS = [
    "sign up", "signup", "register", "create account",
    "get started", "try free", "start free",
    "buy now", "purchase", "checkout", "add to cart",
    "subscribe", "upgrade", "pro", "premium",
    "download", "install", "get app",
    "contact", "book", "schedule", "demo",
    "submit", "send", "confirm", "save",
    "next", "continue", "proceed",
    "login", "log in", "sign in",
]

NAV_KEYWORDS = [
    "home", "about", "contact", "pricing", "features",
    "products", "services", "blog", "news",
    "support", "help", "faq", "docs", "documentation",
    "dashboard", "account", "profile", "settings",
]


class HeuristicDecision(Enum):
    SELECT_ACTION = "select_action"
    BACKTRACK = "backtrack"
    UNCERTAIN = "uncertain"


@dataclass
class HeuristicResult:
    decision: HeuristicDecision
    confidence: int
    reason: str
    selected_edge_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HeuristicConfig:
    confidence_threshold: int = 75
    dominant_score_ratio: float = 2.0
    dominant_min_score: float = 30
    novel_url_min_score: float = 20
    clear_leader_ratio: float = 1.5
    clear_leader_min_score: float = 25


def is_cta_button(edge: GraphEdge) -> bool:
    element = edge.action.element
    is_button = element.tag_name == "button" or element.role == "button"
    text = element.text.lower()
    return is_button and any(kw in text for kw in CTA_KEYWORDS)


def is_navigation_link(edge: GraphEdge) -> bool:
    element = edge.action.element
    text = element.text.lower()
    return (element.tag_name == "a" or bool(element.href)) and any(kw in text for kw in NAV_KEYWORDS)


def leads_to_novel_url(edge: GraphEdge, visited_urls: Set[str], current_url: str) -> bool:
    href = edge.action.element.href
    if not href:
        return False
    try:
        target = urljoin(current_url, href)
    except ValueError:
        return False
    return normalize_url(target) not in visited_urls


def edge_to_candidate(edge: GraphEdge) -> ActionCandidate:
    return ActionCandidate(
        selector=edge.action.selector,
        action_type=edge.action.type,
        element=edge.action.element,
        was_attempted=edge.attempt_count > 0,
    )


def _ratio(top: float, second: float) -> float:
    return top / second if second > 0 else float("inf")


class HeuristicAnalyzer:
    """Applies the decision rules in a fixed order; the first match wins."""

    def __init__(self, config: Optional[HeuristicConfig] = None, scorer: Optional[ActionScorer] = None):
        self.config = config or HeuristicConfig()
        self.scorer = scorer or ActionScorer()

    def _rank(
        self,
        edges: List[GraphEdge],
        context: ScoringContext,
    ) -> List[Tuple[ActionCandidate, GraphEdge]]:
        by_key: Dict[Tuple[str, ActionType], GraphEdge] = {}
        for edge in edges:
            by_key.setdefault((edge.action.selector, edge.action.type), edge)
        ranked = self.scorer.rank_actions([edge_to_candidate(e) for e in edges], context)
        return [(c, by_key.get((c.selector, c.action_type))) for c in ranked]

    def analyze(
        self,
        node: GraphNode,
        pending_edges: List[GraphEdge],
        explored_edges: List[GraphEdge],
        visited_urls: Set[str],
        base_domain: Optional[str] = None,
        submitted_forms: Optional[Set[str]] = None,
    ) -> HeuristicResult:
        cfg = self.config
        if not pending_edges:
            return HeuristicResult(HeuristicDecision.BACKTRACK, 100, "no_pending_actions", metadata={"candidate_count": 0})

        if len(pending_edges) == 1:
            return HeuristicResult(
                HeuristicDecision.SELECT_ACTION,
                100,
                "only_option",
                selected_edge_id=pending_edges[0].id,
                metadata={"candidate_count": 1},
            )

        context = ScoringContext(
            current_url=node.url,
            visited_urls=visited_urls,
            submitted_forms=set(submitted_forms or ()),
            interacted_elements={e.action.selector.lower().strip() for e in explored_edges},
            base_domain=base_domain,
        )
        ranked = [(c, e) for c, e in self._rank(pending_edges, context) if not c.element.is_disabled]
        if not ranked:
            return HeuristicResult(HeuristicDecision.BACKTRACK, 100, "no_valid_candidates", metadata={"candidate_count": 0})

        top_candidate, top_edge = ranked[0]
        top = top_candidate.priority_score
        second = ranked[1][0].priority_score if len(ranked) > 1 else 0.0
        count = len(pending_edges)

        if top_edge is None:
            return HeuristicResult(HeuristicDecision.UNCERTAIN, 0, "edge_not_found")

        if top > cfg.dominant_min_score and top >= cfg.dominant_score_ratio * second:
            return HeuristicResult(
                HeuristicDecision.SELECT_ACTION,
                95,
                "dominant_score",
                selected_edge_id=top_edge.id,
                metadata={"score_ratio": _ratio(top, second), "candidate_count": count},
            )

        cta = next((e for e in pending_edges if is_cta_button(e)), None)
        if cta is not None and cta.id == top_edge.id:
            return HeuristicResult(
                HeuristicDecision.SELECT_ACTION,
                90,
                "cta_button",
                selected_edge_id=cta.id,
                metadata={"matched_pattern": "cta", "candidate_count": count},
            )

        nav = next(
            (e for e in pending_edges if is_navigation_link(e) and leads_to_novel_url(e, visited_urls, node.url)),
            None,
        )
        if nav is not None and nav.id == top_edge.id:
            return HeuristicResult(
                HeuristicDecision.SELECT_ACTION,
                85,
                "navigation_to_new_url",
                selected_edge_id=nav.id,
                metadata={"matched_pattern": "nav_link", "candidate_count": count},
            )

        if top > cfg.novel_url_min_score and leads_to_novel_url(top_edge, visited_urls, node.url):
            return HeuristicResult(
                HeuristicDecision.SELECT_ACTION,
                80,
                "novel_url_exploration",
                selected_edge_id=top_edge.id,
                metadata={"candidate_count": count},
            )

        if top > cfg.clear_leader_min_score and top >= cfg.clear_leader_ratio * second:
            return HeuristicResult(
                HeuristicDecision.SELECT_ACTION,
                75,
                "high_score_clear_leader",
                selected_edge_id=top_edge.id,
                metadata={"score_ratio": _ratio(top, second), "candidate_count": count},
            )

        return HeuristicResult(
            HeuristicDecision.UNCERTAIN,
            0,
            "multiple_viable_candidates",
            metadata={"candidate_count": count, "score_ratio": _ratio(top, second)},
        )

    def should_accept(self, result: HeuristicResult) -> bool:
        return result.confidence >= self.config.confidence_threshold

    def top_candidates_for_ai(
        self,
        pending_edges: List[GraphEdge],
        visited_urls: Set[str],
        current_url: str,
        n: int = 5,
        base_domain: Optional[str] = None,
    ) -> List[GraphEdge]:
        """The ``n`` best-scored pending edges, in score order."""
        context = ScoringContext(current_url=current_url, visited_urls=visited_urls, base_domain=base_domain)
        top: List[GraphEdge] = []
        seen: Set[str] = set()
        for candidate, edge in self._rank(pending_edges, context):
            if edge is not None and not candidate.element.is_disabled and edge.id not in seen:
                seen.add(edge.id)
                top.append(edge)
            if len(top) >= n:
                break
        return top
