"""
Run configuration.

``RunConfig`` gathers every knob of an exploration run: the component configs
(budget, scorer, heuristics, navigator, explorer) plus run-level, browser, AI
and output settings. ``load_config`` builds one from the environment (and a
``.env`` file, via python-dotenv), with explicit keyword overrides winning.

Environment variables:
    UISCOUT_BACKEND              gemini | openai
    GEMINI_API_KEY / OPENAI_API_KEY
    UISCOUT_MODEL
    UISCOUT_PARALLEL_BROWSERS    clamped to 1-10
    UISCOUT_MODE                 graph | pages
    UISCOUT_STEPS_PER_PAGE
    UISCOUT_MAX_STEPS, UISCOUT_MAX_STATES, UISCOUT_MAX_DEPTH,
    UISCOUT_MAX_TIME_MS, UISCOUT_STAGNATION
    UISCOUT_STRICT_MODE, UISCOUT_HEADLESS
    UISCOUT_OUTPUT_DIR
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .budget import BudgetConfig
from .decision import NavigatorConfig
from .explorer import ExplorerConfig
from .heuristics import HeuristicConfig
from .scoring import ScorerConfig

MODES = ("graph", "pages")
BACKENDS = ("gemini", "openai")
MAX_PARALLEL_BROWSERS = 10

# override keyword -> BudgetConfig field
BUDGET_OVERRIDES = {
    "max_steps": "max_total_steps",
    "max_states": "max_unique_states",
    "max_depth": "max_depth",
    "max_time_ms": "max_time_ms",
    "stagnation_threshold": "stagnation_threshold",
}


@dataclass
class RunConfig:
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    scorer: ScorerConfig = field(default_factory=ScorerConfig)
    heuristic: HeuristicConfig = field(default_factory=HeuristicConfig)
    navigator: NavigatorConfig = field(default_factory=NavigatorConfig)
    explorer: ExplorerConfig = field(default_factory=ExplorerConfig)

    parallel_browsers: int = 3
    mode: str = "graph"
    steps_per_page: int = 5
    strict_mode: bool = False

    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 800
    navigation_timeout_ms: int = 30000

    backend: str = "gemini"
    api_key: Optional[str] = None
    model: Optional[str] = None
    use_ai: bool = True

    output_dir: Optional[str] = None

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode: {self.mode}. Use 'graph' or 'pages'.")
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend: {self.backend}. Use 'gemini' or 'openai'.")
        if self.parallel_browsers < 1:
            raise ValueError(f"parallel_browsers must be >= 1, got {self.parallel_browsers}")
        if self.steps_per_page < 1:
            raise ValueError(f"steps_per_page must be >= 1, got {self.steps_per_page}")

    @property
    def explorer_config(self) -> ExplorerConfig:
        """Explorer config with the run-level strict mode applied."""
        return replace(self.explorer, strict_mode=self.strict_mode or self.explorer.strict_mode)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if hasattr(value, "__dataclass_fields__"):
                value = {sub.name: getattr(value, sub.name) for sub in fields(value)}
            data[f.name] = value
        if data["api_key"]:
            data["api_key"] = "***"
        return data


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file: Optional[str] = None, **overrides) -> RunConfig:
    """
    Build a RunConfig from the environment, then apply ``overrides``.

    ``overrides`` accepts any RunConfig field plus the budget shortcuts
    ``max_steps``, ``max_states``, ``max_depth``, ``max_time_ms`` and
    ``stagnation_threshold``. None values are ignored.

    Raises:
        ValueError: for a malformed integer variable or an invalid setting
    """
    load_dotenv(env_file)

    budget_env = {
        "max_total_steps": _env_int("UISCOUT_MAX_STEPS"),
        "max_unique_states": _env_int("UISCOUT_MAX_STATES"),
        "max_depth": _env_int("UISCOUT_MAX_DEPTH"),
        "max_time_ms": _env_int("UISCOUT_MAX_TIME_MS"),
        "stagnation_threshold": _env_int("UISCOUT_STAGNATION"),
    }
    budget_args = {BUDGET_OVERRIDES[k]: overrides.pop(k) for k in list(overrides) if k in BUDGET_OVERRIDES}
    base_budget = overrides.pop("budget", None) or BudgetConfig().with_overrides(**budget_env)
    budget = base_budget.with_overrides(**budget_args)

    backend = (overrides.get("backend") or os.environ.get("UISCOUT_BACKEND") or "gemini").lower()
    values: Dict[str, Any] = {
        "backend": backend,
        "api_key": os.environ.get(f"{backend.upper()}_API_KEY"),
        "model": os.environ.get("UISCOUT_MODEL"),
        "parallel_browsers": _env_int("UISCOUT_PARALLEL_BROWSERS"),
        "mode": os.environ.get("UISCOUT_MODE"),
        "steps_per_page": _env_int("UISCOUT_STEPS_PER_PAGE"),
        "strict_mode": _env_bool("UISCOUT_STRICT_MODE"),
        "headless": _env_bool("UISCOUT_HEADLESS"),
        "output_dir": os.environ.get("UISCOUT_OUTPUT_DIR"),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    values = {k: v for k, v in values.items() if v is not None}

    if "parallel_browsers" in values:
        values["parallel_browsers"] = min(MAX_PARALLEL_BROWSERS, max(1, values["parallel_browsers"]))

    return RunConfig(budget=budget, **values)
