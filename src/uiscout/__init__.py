"""
uiScout - Autonomous Web UI Exploration

Explores a web application on its own and records what it found:

1. Every distinct page state is fingerprinted (URL, DOM structure, form and
   dialog state) and becomes a node in an exploration graph
2. Interactive elements become edges, scored for novelty, business value
   and risk
3. Cheap heuristics pick the next action; an AI model is asked only when
   they are unsure
4. The graph is walked depth first within a step, state, depth and time
   budget, across several browsers at once

Every run leaves an evidence bundle: a timeline of progress events, a
record (and screenshot) per step, errors by step, the graph and coverage.

Supported AI Backends:
- Google Gemini (default: gemini-2.0-flash)
- OpenAI (gpt-4o-mini)
- Extensible for custom providers

Quick Start:
    ```python
    import asyncio
    from uiscout import create_explorer, launch_browser, BudgetConfig

    async def main():
        browser = await launch_browser()
        explorer = create_explorer(browser, budget_config=BudgetConfig(max_total_steps=50))
        result = await explorer.explore("http://localhost:8888")
        print(result.summary())
        await browser.close()

    asyncio.run(main())
    ```

Parallel Runs:
    ```python
    from uiscout import ParallelExplorer, load_config, launch_browser, create_decider

    config = load_config(mode="pages", parallel_browsers=3, steps_per_page=8)
    runner = ParallelExplorer(
        config,
        browser_factory=launch_browser,
        decider=create_decider(config.backend, api_key=config.api_key),
    )
    result = await runner.run(["https://example.com/", "https://example.com/pricing"])
    ```

Custom Backends:
    ```python
    from uiscout.backends import Decider, parse_json_response

    class MyDecider(Decider):
        def decide(self, system_prompt, user_prompt, timeout_s):
            return parse_json_response(my_client.complete(system_prompt, user_prompt))
    ```
"""

from .audit import AuditTrail
from .backends import (
    ActionDecision,
    Decider,
    DeciderError,
    NavigatorResponse,
    create_decider,
)
from .browser import (
    Browser,
    PlaywrightBrowser,
    launch_browser,
)
from .budget import (
    BudgetConfig,
    BudgetStatus,
    BudgetTracker,
    ExhaustionReason,
)
from .config import RunConfig, load_config
from .coverage import (
    CoverageGain,
    CoverageStats,
    CoverageTracker,
)
from .decision import (
    DecisionEngine,
    DecisionResult,
    NavigatorConfig,
)
from .errors import (
    BlockingError,
    ErrorKind,
    classify_error,
)
from .events import EventBus, EventType, ProgressEvent
from .executor import (
    BrowserPool,
    ParallelExplorer,
    RunResult,
    UnitResult,
)
from .explorer import (
    ExplorationResult,
    ExplorationStep,
    ExplorerConfig,
    GraphExplorer,
    TerminationReason,
    create_explorer,
)
from .fingerprint import StateFingerprint, StateTracker, capture_fingerprint
from .graph import (
    EdgeStatus,
    ExplorationGraph,
    GraphEdge,
    GraphNode,
    NodeStatus,
)
from .heuristics import HeuristicAnalyzer, HeuristicConfig
from .scoring import ActionScorer, ActionType, ScorerConfig

__version__ = "0.1.0"
__author__ = "uiScout Contributors"
__license__ = "MIT"

__all__ = [
    # Exploration
    "GraphExplorer",
    "create_explorer",
    "ExplorerConfig",
    "ExplorationResult",
    "ExplorationStep",
    "TerminationReason",
    # Parallel runs
    "ParallelExplorer",
    "BrowserPool",
    "RunResult",
    "UnitResult",
    "RunConfig",
    "load_config",
    # Browser
    "Browser",
    "PlaywrightBrowser",
    "launch_browser",
    # Graph and state
    "ExplorationGraph",
    "GraphNode",
    "GraphEdge",
    "NodeStatus",
    "EdgeStatus",
    "StateFingerprint",
    "StateTracker",
    "capture_fingerprint",
    # Budget and coverage
    "BudgetConfig",
    "BudgetStatus",
    "BudgetTracker",
    "ExhaustionReason",
    "CoverageTracker",
    "CoverageStats",
    "CoverageGain",
    # Decisions
    "ActionScorer",
    "ActionType",
    "ScorerConfig",
    "HeuristicAnalyzer",
    "HeuristicConfig",
    "DecisionEngine",
    "DecisionResult",
    "NavigatorConfig",
    # Backends
    "Decider",
    "DeciderError",
    "ActionDecision",
    "NavigatorResponse",
    "create_decider",
    # Errors and events
    "BlockingError",
    "ErrorKind",
    "classify_error",
    "EventBus",
    "EventType",
    "ProgressEvent",
    "AuditTrail",
]
