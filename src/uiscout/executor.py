"""
Concurrent execution of exploration units.

A run explores one unit per start URL. At most ``parallel_browsers`` units
run at once, each on a browser checked out of a ``BrowserPool``; as soon as a
unit finishes its browser goes to the next queued unit. Within a unit the
explore loop is strictly sequential.

Two modes:

- ``graph``: all units share one budget, so the run as a whole is bounded.
- ``pages``: every unit gets its own budget of ``steps_per_page`` steps.

In both modes the exploration graph, coverage and state trackers are shared,
so a state found by one unit is not rediscovered as new by another.

A blocking error in any unit blocks the run: queued units are not started
and running ones stop at their next step. Browsers are always returned to
the pool and the pool is closed when the run ends, whatever happened.

Usage:
    runner = ParallelExplorer(config, browser_factory=lambda: launch_browser())
    result = await runner.run(["https://example.com/", "https://example.com/docs"])
    print(result.summary())
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .browser import Browser
from .budget import BudgetStatus, BudgetTracker
from .config import RunConfig
from .coverage import CoverageStats, CoverageTracker
from .decision import DecisionEngine, DecisionStats
from .errors import ErrorKind, classify_error
from .events import EventBus, EventType
from .explorer import ExplorationResult, ExplorationStep, GraphExplorer, TerminationReason
from .fingerprint import StateTracker
from .graph import ExplorationGraph
from .heuristics import HeuristicAnalyzer
from .scoring import ActionScorer

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

PHASE_EXPLORATION = "exploration"


class BrowserPool:
    """
    Fixed-size pool of browser sessions.

    Browsers are created lazily by ``factory`` on first demand and reused.
    ``acquire`` waits when all ``size`` browsers are checked out.
    """

    def __init__(self, factory: Callable[[], Awaitable[Browser]], size: int):
        if size < 1:
            raise ValueError(f"pool size must be >= 1, got {size}")
        self.size = size
        self._factory = factory
        self._semaphore = asyncio.Semaphore(size)
        self._idle: List[Browser] = []
        self._all: List[Browser] = []
        self._in_use = 0

    @property
    def active_count(self) -> int:
        return self._in_use

    @property
    def created_count(self) -> int:
        return len(self._all)

    async def acquire(self) -> Browser:
        await self._semaphore.acquire()
        try:
            if self._idle:
                browser = self._idle.pop()
            else:
                browser = await self._factory()
                self._all.append(browser)
        except BaseException:
            self._semaphore.release()
            raise
        self._in_use += 1
        return browser

    def release(self, browser: Browser) -> None:
        self._in_use -= 1
        self._idle.append(browser)
        self._semaphore.release()

    @asynccontextmanager
    async def session(self):
        browser = await self.acquire()
        try:
            yield browser
        finally:
            self.release(browser)

    async def close_all(self) -> None:
        for browser in self._all:
            try:
                await browser.close()
            except Exception as e:
                logger.warning("Failed to close browser: %s", e)
        self._all.clear()
        self._idle.clear()


async def run_with_concurrency(
    items: Sequence[T],
    limit: int,
    fn: Callable[[int, T], Awaitable[R]],
) -> List[R]:
    """
    Run ``fn(index, item)`` for every item, at most ``limit`` at a time.

    A worker picks up the next item as soon as it finishes one. Results are
    returned in item order.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    results: List[Any] = [None] * len(items)
    queue: asyncio.Queue = asyncio.Queue()
    for pair in enumerate(items):
        queue.put_nowait(pair)

    async def worker():
        while True:
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[index] = await fn(index, item)

    await asyncio.gather(*(worker() for _ in range(min(limit, len(items)))))
    return results


@dataclass
class UnitResult:
    """Outcome of one unit (one start URL)."""

    url: str
    index: int
    status: str  # tested | skipped | failed
    exploration: Optional[ExplorationResult] = None
    error: Optional[str] = None
    blocked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "index": self.index,
            "status": self.status,
            "error": self.error,
            "blocked": self.blocked,
            "exploration": self.exploration.to_dict() if self.exploration else None,
        }


def _unit_status(result: ExplorationResult) -> str:
    if result.termination_reason == TerminationReason.BLOCKED:
        return "failed"
    if result.termination_reason == TerminationReason.ERROR:
        kinds = {err.get("kind") for err in result.errors}
        return "skipped" if ErrorKind.SKIPPABLE.value in kinds else "failed"
    return "tested"


def merge_unit_results(units: List[UnitResult]) -> Tuple[List[ExplorationStep], List[Dict[str, Any]]]:
    """All steps and errors of ``units``, ordered by step index."""
    steps: List[ExplorationStep] = []
    errors: List[Dict[str, Any]] = []
    for unit in units:
        if unit.exploration is not None:
            steps.extend(unit.exploration.steps)
            errors.extend(unit.exploration.errors)
        elif unit.error and unit.status == "failed":
            errors.append({"stepIndex": None, "error": unit.error, "kind": ErrorKind.FAILED.value, "url": unit.url})
    steps.sort(key=lambda s: s.index)
    errors.sort(key=lambda e: (e.get("stepIndex") is None, e.get("stepIndex") or 0))
    return steps, errors


@dataclass
class RunResult:
    """Outcome of a whole run across every unit."""

    status: str  # completed | blocked
    mode: str
    units: List[UnitResult] = field(default_factory=list)
    steps: List[ExplorationStep] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    graph: Optional[ExplorationGraph] = None
    coverage_stats: Optional[CoverageStats] = None
    decision_stats: DecisionStats = field(default_factory=DecisionStats)
    budget_status: Optional[BudgetStatus] = None
    duration_ms: int = 0
    last_phase: str = PHASE_EXPLORATION
    blocking_error: Optional[str] = None

    @property
    def page_progress(self) -> Dict[str, int]:
        return {
            "total": len(self.units),
            "tested": sum(1 for u in self.units if u.status == "tested"),
            "skipped": sum(1 for u in self.units if u.status == "skipped"),
            "failed": sum(1 for u in self.units if u.status == "failed"),
        }

    def summary(self) -> str:
        progress = self.page_progress
        graph_stats = self.graph.get_stats() if self.graph is not None else None
        lines = [
            "",
            "RUN RESULT",
            "==========",
            f"Status: {self.status}",
            f"Mode: {self.mode}",
            f"Duration: {self.duration_ms / 1000:.1f}s",
            f"Pages: {progress['total']} (tested {progress['tested']}, "
            f"skipped {progress['skipped']}, failed {progress['failed']})",
            f"Steps: {len(self.steps)}",
            f"Errors: {len(self.errors)}",
        ]
        if graph_stats is not None:
            lines.append(
                f"Graph: {graph_stats.total_nodes} states, {graph_stats.total_edges} actions "
                f"({graph_stats.explored_edges} explored), max depth {graph_stats.max_depth}"
            )
        if self.coverage_stats is not None:
            lines.append(
                f"Coverage: {self.coverage_stats.total_urls} URLs, {self.coverage_stats.total_forms} forms, "
                f"{self.coverage_stats.total_dialogs} dialogs (score {self.coverage_stats.coverage_score:.0f})"
            )
        stats = self.decision_stats
        lines.append(
            f"Decisions: {stats.total_decisions} (heuristic {stats.heuristic_decisions}, "
            f"AI {stats.ai_escalations}, fallback {stats.fallback_decisions}, failures {stats.failures})"
        )
        if self.blocking_error:
            lines.append(f"BLOCKED during {self.last_phase}: {self.blocking_error}")
        lines.append("")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "mode": self.mode,
            "durationMs": self.duration_ms,
            "lastPhase": self.last_phase,
            "blockingError": self.blocking_error,
            "pageProgress": self.page_progress,
            "units": [
                {"url": u.url, "index": u.index, "status": u.status, "error": u.error, "blocked": u.blocked}
                for u in self.units
            ],
            "steps": [s.to_dict() for s in self.steps],
            "errors": self.errors,
            "graph": self.graph.to_dict() if self.graph is not None else None,
            "coverageStats": self.coverage_stats.to_dict() if self.coverage_stats else None,
            "decisionStats": self.decision_stats.to_dict(),
            "budgetStatus": self.budget_status.to_dict() if self.budget_status else None,
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


class ParallelExplorer:
    """
    Runs one exploration unit per start URL over a pool of browsers.

    Pass either ``pool`` (owned by the caller, not closed) or
    ``browser_factory`` (a pool is created for the run and closed after it).
    """

    def __init__(
        self,
        config: Optional[RunConfig] = None,
        browser_factory: Optional[Callable[[], Awaitable[Browser]]] = None,
        pool: Optional[BrowserPool] = None,
        decider=None,  # Optional[Decider]
        events: Optional[EventBus] = None,
    ):
        if pool is None and browser_factory is None:
            raise ValueError("Either pool or browser_factory is required")
        self.config = config or RunConfig()
        self.browser_factory = browser_factory
        self.pool = pool
        self.decider = decider if self.config.use_ai else None
        self.events = events or EventBus()

        self.graph = ExplorationGraph()
        self.coverage = CoverageTracker()
        self.state = StateTracker()
        self.scorer = ActionScorer(self.config.scorer)
        self.engine = DecisionEngine(
            self.decider,
            self.config.navigator,
            HeuristicAnalyzer(self.config.heuristic, self.scorer),
        )
        self._blocking_error: Optional[str] = None

    @property
    def steps_per_unit(self) -> int:
        if self.config.mode == "pages":
            return self.config.steps_per_page
        return self.config.budget.max_total_steps

    def _unit_budget(self, shared: Optional[BudgetTracker]) -> BudgetTracker:
        if shared is not None:
            return shared
        return BudgetTracker(self.config.budget.with_overrides(max_total_steps=self.config.steps_per_page))

    async def _run_unit(self, pool: BrowserPool, index: int, url: str, total: int, shared_budget) -> UnitResult:
        if self._blocking_error is not None:
            logger.info("Skipping %s: run is blocked", url)
            return UnitResult(url, index, "skipped", error="Run blocked before this page started")

        self.events.emit(EventType.PAGE_START, url=url, page_index=index, total_pages=total)
        try:
            async with pool.session() as browser:
                explorer = GraphExplorer(
                    browser,
                    graph=self.graph,
                    coverage=self.coverage,
                    budget=self._unit_budget(shared_budget),
                    engine=self.engine,
                    config=self.config.explorer_config,
                    events=self.events,
                    state=self.state,
                    scorer=self.scorer,
                    step_offset=index * (self.steps_per_unit + 3),
                    should_stop=lambda: self._blocking_error is not None,
                    count_unit_states=shared_budget is None,
                )
                result = await explorer.explore(url)
        except Exception as e:
            kind = classify_error(str(e), self.config.strict_mode)
            logger.error("Page %d (%s) could not be explored: %s", index, url, e)
            if kind == ErrorKind.BLOCKING and self._blocking_error is None:
                self._blocking_error = str(e)
            unit = UnitResult(url, index, "failed", error=str(e), blocked=kind == ErrorKind.BLOCKING)
            self.events.emit(EventType.PAGE_COMPLETE, url=url, page_index=index, status=unit.status, error=str(e))
            return unit

        unit = UnitResult(url, index, _unit_status(result), exploration=result, blocked=result.blocked)
        if result.blocked:
            unit.error = result.blocking_error
            if self._blocking_error is None:
                self._blocking_error = result.blocking_error
        elif result.termination_reason == TerminationReason.ERROR and result.errors:
            unit.error = result.errors[-1]["error"]

        self.events.emit(
            EventType.PAGE_COMPLETE,
            url=url,
            page_index=index,
            status=unit.status,
            termination_reason=result.termination_reason.value,
            steps=result.total_steps,
        )
        return unit

    async def run(self, urls: Sequence[str]) -> RunResult:
        """Explore every URL; always returns a result, even for a blocked run."""
        if not urls:
            raise ValueError("At least one URL is required")
        cfg = self.config
        started = time.monotonic()
        shared_budget = BudgetTracker(cfg.budget) if cfg.mode == "graph" else None
        pool = self.pool or BrowserPool(self.browser_factory, cfg.parallel_browsers)
        limit = min(cfg.parallel_browsers, pool.size)

        self.events.emit(
            EventType.PHASE_START,
            phase=PHASE_EXPLORATION,
            total_pages=len(urls),
            mode=cfg.mode,
            parallel_browsers=limit,
        )
        try:
            units = await run_with_concurrency(
                list(urls),
                limit,
                lambda i, url: self._run_unit(pool, i, url, len(urls), shared_budget),
            )
        finally:
            if self.pool is None:
                await pool.close_all()

        steps, errors = merge_unit_results(units)
        result = RunResult(
            status="blocked" if self._blocking_error else "completed",
            mode=cfg.mode,
            units=units,
            steps=steps,
            errors=errors,
            graph=self.graph,
            coverage_stats=self.coverage.get_stats(),
            decision_stats=self.engine.get_stats(),
            budget_status=shared_budget.get_status() if shared_budget is not None else None,
            duration_ms=int((time.monotonic() - started) * 1000),
            last_phase=PHASE_EXPLORATION,
            blocking_error=self._blocking_error,
        )

        if result.status == "blocked":
            self.events.emit(EventType.ERROR, phase=result.last_phase, error=result.blocking_error)
        else:
            self.events.emit(EventType.PHASE_COMPLETE, phase=PHASE_EXPLORATION, page_progress=result.page_progress)
        self.events.emit(EventType.COMPLETE, status=result.status, page_progress=result.page_progress)
        return result
