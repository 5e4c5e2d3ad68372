"""
Graph explorer - depth-first exploration of a web application's states.

Starting from a URL, the explorer models the site as a graph of page states
and walks it depth first:

1. Observe the page, fingerprint it, and turn its interactive elements into
   pending edges (disabled elements and off-domain links are left out).
2. Ask the decision engine which pending edge to take.
3. Perform it, record coverage and budget, and look at where it led:
   - a state not in the graph yet becomes a new node and a new stack frame,
   - an already known state is merged (visit count, new edges) and the
     explorer returns to where it was,
   - leaving the domain or hitting the depth limit also returns.
4. When a node has nothing left worth doing, pop it and return to the parent.

Returning to a node replays the recorded path from the start URL; there is
no reliance on browser history.

Usage:
    from uiscout import GraphExplorer, launch_browser

    browser = await launch_browser()
    explorer = create_explorer(browser)
    result = await explorer.explore("http://localhost:8888")
    print(result.summary())
    result.save("exploration.json")
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

from .actions import perform_with_selector_retry
from .browser import Browser
from .budget import BudgetConfig, BudgetStatus, BudgetTracker, format_budget_status
from .coverage import (
    ActionOutcome,
    CoverageGain,
    CoverageStats,
    CoverageTracker,
    collect_page_coverage,
    format_coverage_stats,
)
from .decision import (
    CoverageContext,
    DecisionContext,
    DecisionEngine,
    DecisionStats,
    HistoryEntry,
    NavigatorConfig,
)
from .errors import BlockingError, ErrorKind, classify_error
from .events import EventBus, EventType
from .fingerprint import StateFingerprint, StateTracker, capture_fingerprint
from .graph import (
    COUNT_INTERACTIVE_SCRIPT,
    DETECT_SEARCH_SCRIPT,
    DOM_SUMMARY_SCRIPT,
    GET_TITLE_SCRIPT,
    HAS_VISIBLE_FORMS_SCRIPT,
    EdgeAction,
    EdgeStatus,
    ExplorationGraph,
    GraphEdge,
    GraphNode,
    GraphStats,
    NodeMetadata,
    StackFrame,
    generate_edge_id,
)
from .heuristics import HeuristicAnalyzer, HeuristicConfig
from .interactions import InteractionType, detect_interaction_type, execute_smart_interaction, needs_smart_interaction
from .scoring import ActionScorer, ActionType, ScorerConfig, extract_action_candidates, is_same_domain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExplorerConfig:
    # None: one level short of the budget depth, so branches end by returning
    max_depth: Optional[int] = None
    stability_wait_ms: int = 300
    screenshot_on_action: bool = False
    base_domain: Optional[str] = None
    restrict_to_domain: bool = True
    max_edge_attempts: int = 2
    history_window: int = 10
    selector_retries: int = 2
    strict_mode: bool = False


class TerminationReason(Enum):
    MAX_STEPS_REACHED = "max_steps_reached"
    MAX_STATES_REACHED = "max_states_reached"
    STAGNATION_DETECTED = "stagnation_detected"
    MAX_DEPTH_REACHED = "max_depth_reached"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    EXPLORATION_COMPLETE = "exploration_complete"
    BLOCKED = "blocked"
    ERROR = "error"
    MANUAL_STOP = "manual_stop"


@dataclass
class ExplorationStep:
    """One executed step: the action, its outcome and its evidence."""

    index: int
    description: str
    url: str
    success: bool
    action: Optional[Dict[str, Any]] = None
    node_id: Optional[str] = None
    target_node_id: Optional[str] = None
    new_state: bool = False
    state_changed: bool = False
    decision_tier: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    before_fingerprint: Optional[StateFingerprint] = None
    after_fingerprint: Optional[StateFingerprint] = None
    coverage_gain: Optional[CoverageGain] = None
    screenshot: Optional[bytes] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def status(self) -> str:
        if self.success:
            return "success"
        if self.error_kind == ErrorKind.BLOCKING:
            return "blocked"
        if self.error_kind == ErrorKind.SKIPPABLE:
            return "skipped"
        return "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "description": self.description,
            "url": self.url,
            "status": self.status,
            "action": self.action,
            "nodeId": self.node_id,
            "targetNodeId": self.target_node_id,
            "newState": self.new_state,
            "stateChanged": self.state_changed,
            "decisionTier": self.decision_tier,
            "error": self.error,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "beforeFingerprint": self.before_fingerprint.to_dict() if self.before_fingerprint else None,
            "afterFingerprint": self.after_fingerprint.to_dict() if self.after_fingerprint else None,
            "coverageGain": self.coverage_gain.to_dict() if self.coverage_gain else None,
            "hasScreenshot": self.screenshot is not None,
            "timestamp": self.timestamp,
        }


@dataclass
class ExplorationResult:
    """Outcome of exploring from one start URL."""

    start_url: str
    termination_reason: TerminationReason
    total_steps: int = 0
    duration_ms: int = 0
    unique_urls: int = 0
    unique_states: int = 0
    steps: List[ExplorationStep] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    graph_stats: GraphStats = field(default_factory=GraphStats)
    coverage_stats: Optional[CoverageStats] = None
    decision_stats: DecisionStats = field(default_factory=DecisionStats)
    budget_status: Optional[BudgetStatus] = None
    blocking_error: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.termination_reason == TerminationReason.BLOCKED

    def summary(self) -> str:
        failed = sum(1 for s in self.steps if not s.success)
        stats = self.decision_stats
        text = f"""
EXPLORATION RESULT
==================
URL: {self.start_url}
Termination: {self.termination_reason.value}
Duration: {self.duration_ms / 1000:.1f}s
Steps: {self.total_steps} ({failed} failed)
Unique URLs: {self.unique_urls}
Unique States: {self.unique_states}
Graph: {self.graph_stats.total_nodes} nodes, {self.graph_stats.total_edges} edges, max depth {self.graph_stats.max_depth}

DECISIONS: {stats.total_decisions}
  Heuristic: {stats.heuristic_decisions}
  AI escalations: {stats.ai_escalations}
  Fallbacks: {stats.fallback_decisions}
  Failures: {stats.failures}
"""
        if self.budget_status is not None:
            text += "\nBUDGET\n" + format_budget_status(self.budget_status) + "\n"
        if self.coverage_stats is not None:
            text += "\nCOVERAGE\n" + format_coverage_stats(self.coverage_stats) + "\n"
        if self.blocking_error:
            text += f"\nBLOCKED: {self.blocking_error}\n"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startUrl": self.start_url,
            "terminationReason": self.termination_reason.value,
            "totalSteps": self.total_steps,
            "durationMs": self.duration_ms,
            "uniqueUrls": self.unique_urls,
            "uniqueStates": self.unique_states,
            "steps": [s.to_dict() for s in self.steps],
            "errors": self.errors,
            "graphStats": self.graph_stats.to_dict(),
            "coverageStats": self.coverage_stats.to_dict() if self.coverage_stats else None,
            "decisionStats": self.decision_stats.to_dict(),
            "budgetStatus": self.budget_status.to_dict() if self.budget_status else None,
            "blockingError": self.blocking_error,
        }

    def save(self, filepath: str):
        """Save as JSON (``.json``) or as the text summary."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            if filepath.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
            else:
                f.write(self.summary())


def _edge_label(edge: GraphEdge) -> str:
    element = edge.action.element
    return (element.text or element.aria_label or element.placeholder or edge.action.selector)[:30]


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


class GraphExplorer:
    """
    Explores from a start URL until the budget, the graph, or an error stops it.

    ``graph``, ``coverage``, ``budget`` and ``state`` may be shared with
    other explorers running concurrently; they are thread-safe. ``step_offset``
    is the first step index this explorer uses, so indices from concurrent
    explorers never collide. ``should_stop`` is polled between steps.

    Attempt decay only reaches decisions when ``scorer`` is the engine's own
    scorer; by default the explorer takes the engine's. With
    ``count_unit_states`` the budget sees only the states this explorer
    reached, not every node in a shared graph.
    """

    def __init__(
        self,
        browser: Browser,
        graph: Optional[ExplorationGraph] = None,
        coverage: Optional[CoverageTracker] = None,
        budget: Optional[BudgetTracker] = None,
        engine: Optional[DecisionEngine] = None,
        config: Optional[ExplorerConfig] = None,
        events: Optional[EventBus] = None,
        state: Optional[StateTracker] = None,
        scorer: Optional[ActionScorer] = None,
        step_offset: int = 0,
        should_stop: Optional[Callable[[], bool]] = None,
        count_unit_states: bool = False,
    ):
        if step_offset < 0:
            raise ValueError(f"step_offset must be >= 0, got {step_offset}")
        self.browser = browser
        self.graph = graph or ExplorationGraph()
        self.coverage = coverage or CoverageTracker()
        self.budget = budget or BudgetTracker()
        self.scorer = scorer or (engine.analyzer.scorer if engine is not None else ActionScorer())
        self.engine = engine or DecisionEngine(analyzer=HeuristicAnalyzer(scorer=self.scorer))
        self.config = config or ExplorerConfig()
        self.events = events or EventBus()
        self.state = state or StateTracker()
        self.step_offset = step_offset
        self.count_unit_states = count_unit_states
        self._should_stop = should_stop

        self.start_url = ""
        self.base_domain: Optional[str] = self.config.base_domain
        self._stopped = False
        self._next_index = step_offset
        self._steps_taken = 0
        self._search_count = 0
        self._stack: List[StackFrame] = []
        self._history: List[HistoryEntry] = []
        self._steps: List[ExplorationStep] = []
        self._errors: List[Dict[str, Any]] = []
        self._unit_states: Set[str] = set()

    def stop(self):
        self._stopped = True

    def _stop_requested(self) -> bool:
        return self._stopped or (self._should_stop is not None and self._should_stop())

    @property
    def depth_limit(self) -> int:
        """Deepest frame that may still push children."""
        budget_limit = self.budget.config.max_depth - 1
        if self.config.max_depth is None:
            return budget_limit
        return min(self.config.max_depth, budget_limit)

    def _claim_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def _in_domain(self, url: str, current_url: str = "") -> bool:
        if not self.config.restrict_to_domain:
            return True
        return is_same_domain(url, self.base_domain, current_url)

    def _record_error(self, step_index: int, message: str, kind: ErrorKind) -> None:
        self._errors.append({"stepIndex": step_index, "error": message, "kind": kind.value})
        self.events.emit(EventType.ERROR, step_index=step_index, error=message, kind=kind.value)

    def _raise_if_blocking(self, error: Exception, step_index: int) -> ErrorKind:
        """Classify ``error``; a blocking one is recorded and raised as BlockingError."""
        if isinstance(error, BlockingError):
            raise error
        kind = classify_error(str(error), self.config.strict_mode)
        if kind == ErrorKind.BLOCKING:
            self._record_error(step_index, str(error), kind)
            raise BlockingError(str(error), step_index) from error
        return kind

    async def _eval(self, script: str, default: Any) -> Any:
        try:
            result = await self.browser.eval(script)
        except Exception as e:
            self._raise_if_blocking(e, self._next_index)
            logger.debug("Node script failed: %s", e)
            return default
        return default if result is None else result

    async def capture_node(
        self,
        url: str,
        depth: int = 0,
        fingerprint: Optional[StateFingerprint] = None,
        is_main_entry: bool = False,
    ) -> GraphNode:
        """Describe the current page as a graph node with one edge per usable candidate."""
        if fingerprint is None:
            fingerprint = await capture_fingerprint(self.browser, url)

        dom_summary, title, has_search, has_forms, interactive = await asyncio.gather(
            self._eval(DOM_SUMMARY_SCRIPT, ""),
            self._eval(GET_TITLE_SCRIPT, ""),
            self._eval(DETECT_SEARCH_SCRIPT, False),
            self._eval(HAS_VISIBLE_FORMS_SCRIPT, False),
            self._eval(COUNT_INTERACTIVE_SCRIPT, 0),
        )
        candidates = await extract_action_candidates(self.browser)

        try:
            interactive_count = int(interactive)
        except (TypeError, ValueError):
            interactive_count = 0

        node = GraphNode(
            id=fingerprint.combined_hash,
            url=url,
            title=str(title),
            fingerprint=fingerprint,
            dom_summary=str(dom_summary),
            depth=depth,
            metadata=NodeMetadata(
                has_search_box=_truthy(has_search),
                has_forms=_truthy(has_forms),
                is_main_entry_point=is_main_entry,
                interactive_element_count=interactive_count,
            ),
        )

        seen = set()
        for candidate in candidates:
            element = candidate.element
            if element.is_disabled:
                continue
            if element.href and not self._in_domain(element.href, url):
                continue
            edge_id = generate_edge_id(node.id, candidate.selector, candidate.action_type)
            if edge_id in seen:
                continue
            seen.add(edge_id)
            node.actions.append(
                GraphEdge(
                    id=edge_id,
                    source_node_id=node.id,
                    action=EdgeAction(type=candidate.action_type, selector=candidate.selector, element=element),
                )
            )
        return node

    def _make_return_action(self, path: List[Tuple[ActionType, str, Optional[str]]]):
        start_url = self.start_url

        async def return_action():
            await self.browser.open(start_url)
            for action_type, selector, value in path:
                if action_type == ActionType.PRESS:
                    await self.browser.press(value or "Enter")
                else:
                    await perform_with_selector_retry(
                        self.browser, action_type, selector, value, max_retries=self.config.selector_retries
                    )
                await self.browser.wait_for_stability(self.config.stability_wait_ms)

        return return_action

    async def _return_to(self, frame: StackFrame) -> None:
        logger.debug("Returning to node %s (depth %d)", frame.node_id[:8], frame.depth)
        try:
            await frame.return_action()
        except Exception as e:
            self._raise_if_blocking(e, self._next_index)
            raise

    async def _perform(self, edge: GraphEdge, node: GraphNode) -> Tuple[bool, List[Tuple[ActionType, str, Optional[str]]]]:
        """Run the edge's action. Returns (state changed, replayable actions)."""
        action = edge.action
        if needs_smart_interaction(edge):
            if detect_interaction_type(edge) == InteractionType.SEARCH:
                self._search_count += 1
            result = await execute_smart_interaction(
                self.browser,
                edge,
                node.dom_summary,
                node.url,
                engine=self.engine,
                stability_window_ms=self.config.stability_wait_ms,
                selector_retries=self.config.selector_retries,
            )
            if not result.success:
                raise RuntimeError(result.error or "Smart interaction failed")
            replay = [(ActionType.FILL, action.selector, result.value)]
            if result.pressed_enter:
                replay.append((ActionType.PRESS, "", "Enter"))
            return result.state_changed, replay

        value = edge.interaction_hint or action.value
        before = await self.browser.take_page_snapshot()
        used = await perform_with_selector_retry(
            self.browser, action.type, action.selector, value, max_retries=self.config.selector_retries
        )
        await self.browser.wait_for_stability(self.config.stability_wait_ms)
        after = await self.browser.take_page_snapshot()
        changed = before.dom_hash != after.dom_hash or before.url != after.url
        return changed, [(action.type, used, value)]

    async def _screenshot(self, step: ExplorationStep, label: str) -> None:
        try:
            step.screenshot = await self.browser.screenshot()
        except Exception as e:
            self._raise_if_blocking(e, step.index)
            logger.warning("Screenshot failed at step %d: %s", step.index, e)
            return
        self.events.emit(EventType.SCREENSHOT, step_index=step.index, label=label, url=step.url)

    def _coverage_context(self, depth: int) -> CoverageContext:
        stats = self.coverage.get_stats()
        return CoverageContext(
            url_count=stats.total_urls,
            form_count=stats.total_forms,
            search_count=self._search_count,
            total_steps=self._steps_taken,
            current_depth=depth,
        )

    def _push_frame(self, node: GraphNode, depth: int, path) -> None:
        self._stack.append(
            StackFrame(node_id=node.id, depth=depth, return_action=self._make_return_action(path), path=path)
        )
        self.graph.record_depth(depth)

    async def _start(self, start_url: str) -> None:
        index = self._claim_index()
        self.events.emit(EventType.STEP_START, step_index=index, description=f"Open {start_url}", depth=0)
        try:
            await self.browser.open(start_url)
        except Exception as e:
            kind = self._raise_if_blocking(e, index)
            self._record_error(index, str(e), kind)
            self._steps.append(
                ExplorationStep(index, f"Open {start_url}", start_url, False, error=str(e), error_kind=kind)
            )
            self.events.emit(EventType.STEP_COMPLETE, step_index=index, status="failed", error=str(e))
            raise

        url = await self.browser.get_current_url()
        await collect_page_coverage(self.browser, self.coverage, url)
        fingerprint = await capture_fingerprint(self.browser, url)
        root = await self.capture_node(url, 0, fingerprint, is_main_entry=True)
        stored, _ = self.graph.merge_node(root)
        self._unit_states.add(stored.id)
        self.state.record_state(fingerprint)

        step = ExplorationStep(
            index, f"Open {start_url}", url, True, node_id=stored.id, new_state=True, after_fingerprint=fingerprint
        )
        await self._screenshot(step, f"Page: {url}")
        self._steps.append(step)
        self.events.emit(EventType.STEP_COMPLETE, step_index=index, status="success", url=url)
        self.events.log(f"Starting exploration at {url} ({len(stored.actions)} actions)")
        self._push_frame(stored, 0, [])

    async def _step(self, frame: StackFrame, node: GraphNode, edge: GraphEdge, tier: str) -> None:
        cfg = self.config
        index = self._claim_index()
        description = f'{edge.action.type.value} "{_edge_label(edge)}"'
        self.events.emit(
            EventType.STEP_START, step_index=index, description=description, depth=frame.depth, node_id=node.id
        )
        before_coverage = self.coverage.take_snapshot(index)
        step = ExplorationStep(
            index,
            description,
            node.url,
            False,
            action=edge.action.to_dict(),
            node_id=node.id,
            decision_tier=tier,
            before_fingerprint=node.fingerprint,
        )
        self._steps.append(step)
        self._steps_taken += 1
        self.scorer.record_attempt(edge.action.selector, edge.action.type)

        try:
            changed, replay = await self._perform(edge, node)
        except Exception as e:
            step.error = str(e)
            step.error_kind = classify_error(str(e), cfg.strict_mode)
            kind = self._raise_if_blocking(e, index)
            attempts = edge.attempt_count + 1
            status = EdgeStatus.PENDING if attempts < cfg.max_edge_attempts else EdgeStatus.FAILED
            self.graph.update_edge(node.id, edge.id, status=status, attempt_count=attempts, last_error=str(e))
            self.budget.record_step(False)
            self._record_error(index, str(e), kind)
            level = "warn" if kind == ErrorKind.SKIPPABLE else "error"
            self.events.log(f"Step {index} {step.status}: {e}", level)
            self.events.emit(EventType.STEP_COMPLETE, step_index=index, status=step.status, error=str(e))
            self._history.append(HistoryEntry(description, node.url, False, node.id))
            current = await capture_fingerprint(self.browser)
            if current.combined_hash != node.id:
                await self._return_to(frame)
            return

        self.graph.update_edge(node.id, edge.id, status=EdgeStatus.EXPLORED, attempt_count=edge.attempt_count + 1)
        self.coverage.record_element_interaction(edge.action.selector)
        url = await self.browser.get_current_url()
        await collect_page_coverage(self.browser, self.coverage, url)
        gain = self.coverage.calculate_gain(before_coverage)
        self.coverage.record_action_outcome(
            ActionOutcome(edge.action.type.value, gain, index, edge.action.selector, replay[0][2])
        )
        self.budget.record_step(gain.has_gain)

        after = await capture_fingerprint(self.browser, url)
        if node.fingerprint is not None:
            self.state.record_transition(node.fingerprint, after, edge.action.to_dict())
        else:
            self.state.record_state(after)

        step.success = True
        step.url = url
        step.state_changed = changed
        step.after_fingerprint = after
        step.coverage_gain = gain
        if cfg.screenshot_on_action:
            await self._screenshot(step, f"After {description}")

        if after.combined_hash == node.id:
            pass
        elif not self._in_domain(url):
            self.events.log(f"Navigated off domain to {url}, returning", "warn")
            await self._return_to(frame)
        elif frame.depth >= self.depth_limit:
            self.events.log(f"Max depth reached ({self.depth_limit}), returning")
            await self._return_to(frame)
        else:
            child = await self.capture_node(url, frame.depth + 1, after)
            stored, created = self.graph.merge_node(child)
            self._unit_states.add(stored.id)
            self.graph.update_edge(node.id, edge.id, target_node_id=stored.id)
            step.target_node_id = stored.id
            step.new_state = created
            if created:
                self.events.log(f"Discovered new state: {url} ({len(stored.actions)} actions)")
                self._push_frame(stored, frame.depth + 1, frame.path + replay)
            else:
                logger.debug("Revisited state %s (visit %d)", stored.id[:8], stored.visit_count)
                await self._return_to(frame)

        self._history.append(HistoryEntry(description, url, step.new_state, step.target_node_id))
        self.events.emit(
            EventType.STEP_COMPLETE,
            step_index=index,
            status="success",
            url=url,
            new_state=step.new_state,
            coverage_gain=gain.total_gain,
        )

    async def _loop(self) -> TerminationReason:
        cfg = self.config
        while True:
            if self._stop_requested():
                return TerminationReason.MANUAL_STOP
            if not self.budget.can_continue():
                reason = self.budget.get_status().exhaustion_reason
                return TerminationReason(reason.value)
            if not self._stack:
                return TerminationReason.EXPLORATION_COMPLETE

            frame = self._stack[-1]
            node = self.graph.get_node(frame.node_id)
            if node is None:
                logger.warning("Node %s not found, backtracking", frame.node_id[:8])
                self._stack.pop()
                continue

            if self.count_unit_states:
                self.budget.set_unique_states(len(self._unit_states))
            else:
                self.budget.set_unique_states(self.graph.get_stats().total_nodes)
            self.budget.set_depth(frame.depth)
            if not self.budget.can_continue():
                continue

            metrics = self.coverage.get_metrics()
            decision = await self.engine.select_action(
                DecisionContext(
                    node=node,
                    pending_edges=self.graph.get_pending_edges(node.id, cfg.max_edge_attempts),
                    coverage=self._coverage_context(frame.depth),
                    recent_history=self._history[-cfg.history_window :],
                    visited_urls=metrics.unique_urls,
                    submitted_forms=metrics.unique_forms,
                    base_domain=self.base_domain,
                )
            )

            if decision.branch_exhausted or decision.top_action is None:
                self.events.log(
                    f"Branch exhausted at depth {frame.depth}: {decision.exhausted_reason or 'no actions'}"
                )
                self.graph.mark_exhausted(node.id)
                self._stack.pop()
                if self._stack:
                    parent = self._stack[-1]
                    parent_node = self.graph.get_node(parent.node_id)
                    self.events.emit(
                        EventType.BACKTRACK,
                        node_id=parent.node_id,
                        url=parent_node.url if parent_node else None,
                        depth=parent.depth,
                    )
                    await self._return_to(parent)
                continue

            edge = decision.top_action
            top = next((d for d in decision.decisions if d.action_id == edge.id), None)
            updates = {}
            if decision.interaction_hint:
                updates["interaction_hint"] = decision.interaction_hint
            if top is not None and decision.tier == "ai":
                updates["llm_priority"] = top.priority
                updates["llm_rationale"] = top.rationale
            if updates:
                self.graph.update_edge(node.id, edge.id, **updates)

            await self._step(frame, node, edge, decision.tier)

    async def explore(self, start_url: str) -> ExplorationResult:
        """Explore from ``start_url``; never raises for browser failures."""
        started = time.monotonic()
        self.start_url = start_url
        if self.base_domain is None:
            self.base_domain = urlparse(start_url).hostname
        blocking_error = None

        try:
            await self._start(start_url)
            reason = await self._loop()
        except BlockingError as e:
            blocking_error = str(e)
            reason = TerminationReason.BLOCKED
            self.events.log(f"Exploration blocked: {e}", "error")
        except Exception as e:
            kind = classify_error(str(e), self.config.strict_mode)
            if kind == ErrorKind.BLOCKING:
                blocking_error = str(e)
                reason = TerminationReason.BLOCKED
            else:
                reason = TerminationReason.ERROR
            self.events.log(f"Exploration error: {e}", "error")
            if not any(err["error"] == str(e) for err in self._errors):
                self._record_error(self._next_index, str(e), kind)

        result = ExplorationResult(
            start_url=start_url,
            termination_reason=reason,
            total_steps=self._steps_taken,
            duration_ms=int((time.monotonic() - started) * 1000),
            unique_urls=self.coverage.get_stats().total_urls,
            unique_states=self.graph.get_stats().total_nodes,
            steps=sorted(self._steps, key=lambda s: s.index),
            errors=list(self._errors),
            graph_stats=self.graph.get_stats(),
            coverage_stats=self.coverage.get_stats(),
            decision_stats=self.engine.get_stats(),
            budget_status=self.budget.get_status(),
            blocking_error=blocking_error,
        )
        self.events.log(f"Exploration finished: {reason.value}")
        self.events.emit(
            EventType.EXPLORATION_COMPLETE,
            start_url=start_url,
            termination_reason=reason.value,
            total_steps=result.total_steps,
            unique_states=result.unique_states,
            unique_urls=result.unique_urls,
        )
        return result


def create_explorer(
    browser: Browser,
    decider=None,  # Optional[Decider]
    budget_config: Optional[BudgetConfig] = None,
    navigator_config: Optional[NavigatorConfig] = None,
    config: Optional[ExplorerConfig] = None,
    events: Optional[EventBus] = None,
    heuristic_config: Optional[HeuristicConfig] = None,
    scorer_config: Optional[ScorerConfig] = None,
) -> GraphExplorer:
    """Explorer with fresh trackers and a decision engine around ``decider``.

    The explorer and the heuristic analyzer share one scorer, so attempts the
    explorer records decay the scores the analyzer ranks by.
    """
    scorer = ActionScorer(scorer_config)
    return GraphExplorer(
        browser,
        budget=BudgetTracker(budget_config),
        engine=DecisionEngine(decider, navigator_config, HeuristicAnalyzer(heuristic_config, scorer)),
        config=config,
        events=events,
        scorer=scorer,
    )
