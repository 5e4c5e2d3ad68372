"""
Tiered decision engine: which action to take next at a page state.

Tier 1 - heuristics. Obvious cases (a single option, a dominant score, a
call-to-action, a link to an unseen page) are decided locally.

Tier 2 - AI. When the heuristics are not confident, the top candidates are
sent to the configured Decider. Its answer is validated against the offered
candidates; if it names none of them, a context-free ordering is used
instead (links first, then forms, then everything else).

Tier 3 - failure. If the AI call itself fails, the branch is reported as
exhausted with the error as reason, so the explorer backtracks instead of
crashing.

Example:
    ```python
    engine = DecisionEngine(decider=create_decider("gemini"))
    result = await engine.select_action(context)
    if result.branch_exhausted:
        backtrack()
    else:
        run(result.top_action)
    ```
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .backends.base import ActionDecision, Decider, NavigatorResponse, SmartInteractionResponse
from .graph import EdgeStatus, GraphEdge, GraphNode
from .heuristics import HeuristicAnalyzer, HeuristicDecision
from .interactions import InteractionType, SmartInteractionRequest, default_interaction_response, default_value
from .prompts import (
    ACTION_SELECTION_SYSTEM_PROMPT,
    SMART_INTERACTION_SYSTEM_PROMPT,
    build_action_selection_prompt,
    build_compact_action_selection_prompt,
    build_smart_interaction_prompt,
)
from .retry import RetryPolicy, retry_async
from .scoring import ActionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigatorConfig:
    """Knobs for the decision engine."""

    enabled: bool = True
    model: Optional[str] = None
    temperature: float = 0.3
    max_llm_calls_per_step: int = 2
    smart_interactions: bool = True
    max_retries: int = 2
    timeout_ms: int = 30000
    enable_heuristic_first: bool = True
    max_ai_timeout_ms: int = 10000
    max_ai_retries: int = 1
    ai_candidate_count: int = 5
    retry_base_delay_s: float = 1.0


@dataclass
class CoverageContext:
    url_count: int = 0
    form_count: int = 0
    search_count: int = 0
    total_steps: int = 0
    current_depth: int = 0


@dataclass
class HistoryEntry:
    """A recent step, as shown to the AI."""

    action: str
    url: str
    new_state: bool
    node_id: Optional[str] = None


@dataclass
class DecisionContext:
    node: GraphNode
    pending_edges: List[GraphEdge]
    coverage: CoverageContext = field(default_factory=CoverageContext)
    recent_history: List[HistoryEntry] = field(default_factory=list)
    visited_urls: Set[str] = field(default_factory=set)
    submitted_forms: Set[str] = field(default_factory=set)
    base_domain: Optional[str] = None


@dataclass
class DecisionResult:
    top_action: Optional[GraphEdge]
    decisions: List[ActionDecision] = field(default_factory=list)
    branch_exhausted: bool = False
    exhausted_reason: Optional[str] = None
    interaction_hint: Optional[str] = None
    tier: str = "heuristic"  # heuristic | ai | fallback | failure


@dataclass
class DecisionStats:
    heuristic_decisions: int = 0
    ai_escalations: int = 0
    fallback_decisions: int = 0
    failures: int = 0
    total_decisions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _fallback_rank(edge: GraphEdge) -> int:
    element = edge.action.element
    if element.href:
        return 0
    if element.tag_name == "form" or element.type == "submit" or edge.action.type == ActionType.FILL:
        return 1
    return 2


def fallback_ordering(edges: List[GraphEdge]) -> List[GraphEdge]:
    """Context-free order: links, then forms, then the rest (stable)."""
    return sorted(edges, key=_fallback_rank)


class DecisionEngine:
    """
    Chooses the next action, escalating from heuristics to AI only when needed.

    ``decider`` may be None, in which case Tier 2 goes straight to the
    context-free ordering and smart interactions use keyword defaults.
    """

    def __init__(
        self,
        decider: Optional[Decider] = None,
        config: Optional[NavigatorConfig] = None,
        analyzer: Optional[HeuristicAnalyzer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or NavigatorConfig()
        self.decider = decider if self.config.enabled else None
        self.analyzer = analyzer or HeuristicAnalyzer()
        self._sleep = sleep
        self._stats = DecisionStats()

    def get_stats(self) -> DecisionStats:
        return DecisionStats(**asdict(self._stats))

    async def _call_decider(self, system_prompt: str, user_prompt: str, retries: int, timeout_ms: int) -> Dict[str, Any]:
        timeout_s = timeout_ms / 1000

        async def attempt(_: int) -> Dict[str, Any]:
            return await asyncio.wait_for(
                asyncio.to_thread(self.decider.decide, system_prompt, user_prompt, timeout_s),
                timeout=timeout_s,
            )

        policy = RetryPolicy(max_attempts=retries + 1, base_delay_s=self.config.retry_base_delay_s)
        outcome = await retry_async(attempt, policy, sleep=self._sleep)
        return outcome.unwrap()

    def _fallback(self, pending: List[GraphEdge], reason: str) -> DecisionResult:
        self._stats.fallback_decisions += 1
        ordered = fallback_ordering(pending)
        logger.info("[Fallback] %s; choosing %s", reason, ordered[0].action.selector)
        decisions = [
            ActionDecision(action_id=edge.id, priority=max(1, 10 - i), rationale=f"Fallback: {reason}")
            for i, edge in enumerate(ordered)
        ]
        return DecisionResult(top_action=ordered[0], decisions=decisions, tier="fallback")

    async def select_action(self, context: DecisionContext) -> DecisionResult:
        """Pick the next edge to take from ``context.node``."""
        cfg = self.config
        node, pending = context.node, context.pending_edges
        self._stats.total_decisions += 1

        if not pending:
            return DecisionResult(None, branch_exhausted=True, exhausted_reason="No pending actions available")

        explored = [e for e in node.actions if e.status in (EdgeStatus.EXPLORED, EdgeStatus.FAILED)]
        heuristic = None

        if cfg.enable_heuristic_first:
            heuristic = self.analyzer.analyze(
                node,
                pending,
                explored,
                context.visited_urls,
                base_domain=context.base_domain,
                submitted_forms=context.submitted_forms,
            )
            if self.analyzer.should_accept(heuristic):
                if heuristic.decision == HeuristicDecision.BACKTRACK:
                    self._stats.heuristic_decisions += 1
                    logger.debug("[Heuristic] %s (confidence: %d%%)", heuristic.reason, heuristic.confidence)
                    return DecisionResult(None, branch_exhausted=True, exhausted_reason=heuristic.reason)
                selected = next((e for e in pending if e.id == heuristic.selected_edge_id), None)
                if selected is not None:
                    self._stats.heuristic_decisions += 1
                    logger.debug("[Heuristic] %s (confidence: %d%%)", heuristic.reason, heuristic.confidence)
                    return DecisionResult(
                        top_action=selected,
                        decisions=[
                            ActionDecision(action_id=selected.id, priority=10, rationale=f"Heuristic: {heuristic.reason}")
                        ],
                    )
            logger.debug("[Escalating] %s (confidence: %d%%)", heuristic.reason, heuristic.confidence)

        self._stats.ai_escalations += 1
        if self.decider is None:
            return self._fallback(pending, "no AI decider configured")

        try:
            if heuristic is not None:
                candidates = self.analyzer.top_candidates_for_ai(
                    pending, context.visited_urls, node.url, cfg.ai_candidate_count, context.base_domain
                ) or pending[: cfg.ai_candidate_count]
                user = build_compact_action_selection_prompt(
                    node, candidates, heuristic.reason, context.coverage, context.recent_history
                )
                raw = await self._call_decider(
                    ACTION_SELECTION_SYSTEM_PROMPT, user, cfg.max_ai_retries, cfg.max_ai_timeout_ms
                )
            else:
                user = build_action_selection_prompt(node, pending, explored, context.coverage, context.recent_history)
                raw = await self._call_decider(ACTION_SELECTION_SYSTEM_PROMPT, user, cfg.max_retries, cfg.timeout_ms)
        except Exception as e:
            self._stats.failures += 1
            logger.warning("[Failure] Decision failed: %s", e)
            return DecisionResult(
                None, branch_exhausted=True, exhausted_reason=f"Decision failed: {e}", tier="failure"
            )

        response = NavigatorResponse.from_dict(raw)
        by_id = {edge.id: edge for edge in pending}
        valid = []
        for decision in response.decisions:
            if decision.action_id in by_id:
                decision.priority = max(1, min(10, decision.priority))
                valid.append(decision)
        valid.sort(key=lambda d: d.priority, reverse=True)

        if not valid:
            if response.branch_exhausted:
                return DecisionResult(
                    None,
                    branch_exhausted=True,
                    exhausted_reason=response.exhausted_reason or "AI reported branch exhausted",
                    tier="ai",
                )
            return self._fallback(pending, "AI named no offered action")

        top = valid[0]
        return DecisionResult(
            top_action=by_id[top.action_id],
            decisions=valid,
            interaction_hint=top.interaction_hint,
            tier="ai",
        )

    async def generate_smart_interaction(self, request: SmartInteractionRequest) -> SmartInteractionResponse:
        """AI-suggested input value, merged over keyword defaults."""
        if not self.config.smart_interactions or self.decider is None:
            return default_interaction_response(request)

        try:
            raw = await self._call_decider(
                SMART_INTERACTION_SYSTEM_PROMPT,
                build_smart_interaction_prompt(request),
                self.config.max_retries,
                self.config.timeout_ms,
            )
        except Exception as e:
            logger.warning("Smart interaction generation failed, using defaults: %s", e)
            return default_interaction_response(request)

        return SmartInteractionResponse.from_dict(
            raw,
            default_value=default_value(request),
            default_enter=request.type == InteractionType.SEARCH,
        )
