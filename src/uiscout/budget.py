"""
Exploration budget for uiScout.

Bounds an exploration run along several dimensions at once: total steps,
unique states, steps without coverage gain (stagnation), tree depth and wall
clock time. Once any dimension is exhausted the run must stop, and the tracker
reports which one tripped first.

Example:
    ```python
    budget = BudgetTracker(BudgetConfig(max_total_steps=50))
    while budget.can_continue():
        ...
        budget.record_step(had_coverage_gain=gain.has_gain)
    print(format_budget_status(budget.get_status()))
    ```
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ExhaustionReason(Enum):
    """Why a budget stopped the run."""

    MAX_STEPS_REACHED = "max_steps_reached"
    MAX_STATES_REACHED = "max_states_reached"
    STAGNATION_DETECTED = "stagnation_detected"
    MAX_DEPTH_REACHED = "max_depth_reached"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    MANUAL_STOP = "manual_stop"


EXHAUSTION_MESSAGES = {
    ExhaustionReason.MAX_STEPS_REACHED: "Maximum steps reached",
    ExhaustionReason.MAX_STATES_REACHED: "Maximum unique states reached",
    ExhaustionReason.STAGNATION_DETECTED: "No coverage gain detected (stagnation)",
    ExhaustionReason.MAX_DEPTH_REACHED: "Maximum exploration depth reached",
    ExhaustionReason.TIME_LIMIT_EXCEEDED: "Time limit exceeded",
    ExhaustionReason.MANUAL_STOP: "Manually stopped",
}


@dataclass(frozen=True)
class BudgetConfig:
    """Limits for one exploration run."""

    max_steps_per_page_state: int = 10
    max_unique_states: int = 100
    max_total_steps: int = 500
    stagnation_threshold: int = 15
    max_depth: int = 10
    max_time_ms: int = 600000

    def with_overrides(self, **overrides) -> "BudgetConfig":
        """Copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class BudgetStatus:
    """Point-in-time view of budget consumption."""

    steps_used: int
    unique_states: int
    current_depth: int
    steps_since_last_gain: int
    elapsed_ms: int
    can_continue: bool
    remaining_percent: float
    exhaustion_reason: Optional[ExhaustionReason] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["exhaustion_reason"] = self.exhaustion_reason.value if self.exhaustion_reason else None
        return data


@dataclass
class BudgetEvent:
    """Entry in the budget's event log."""

    type: str  # step_recorded | coverage_gained | depth_changed | budget_warning | budget_exhausted
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class BudgetTracker:
    """
    Enforces a BudgetConfig.

    Thread-safe: a single tracker may be shared by every exploration unit of a
    run. ``clock`` returns seconds and exists so tests can control time.
    """

    def __init__(
        self,
        config: Optional[BudgetConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or BudgetConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._start = clock()
        self._steps_used = 0
        self._unique_states = 0
        self._current_depth = 0
        self._steps_since_gain = 0
        self._gains = 0
        self._manual_stop = False
        self._manual_reason: Optional[str] = None
        self._events: List[BudgetEvent] = []

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self._start) * 1000)

    def _add_event(self, event_type: str, **details) -> None:
        self._events.append(BudgetEvent(type=event_type, details=details))

    def _check_exhaustion(self) -> Optional[ExhaustionReason]:
        cfg = self.config
        if self._manual_stop:
            return ExhaustionReason.MANUAL_STOP
        if self._steps_used >= cfg.max_total_steps:
            return ExhaustionReason.MAX_STEPS_REACHED
        if self._unique_states >= cfg.max_unique_states:
            return ExhaustionReason.MAX_STATES_REACHED
        if self._steps_since_gain >= cfg.stagnation_threshold:
            return ExhaustionReason.STAGNATION_DETECTED
        if self._current_depth >= cfg.max_depth:
            return ExhaustionReason.MAX_DEPTH_REACHED
        if self._elapsed_ms() >= cfg.max_time_ms:
            return ExhaustionReason.TIME_LIMIT_EXCEEDED
        return None

    def _remaining_percent(self) -> float:
        cfg = self.config

        def pct(limit: int, used: float) -> float:
            if limit <= 0:
                return 0.0
            return (limit - used) / limit * 100

        lowest = min(
            pct(cfg.max_total_steps, self._steps_used),
            pct(cfg.max_unique_states, self._unique_states),
            pct(cfg.max_time_ms, self._elapsed_ms()),
            pct(cfg.stagnation_threshold, self._steps_since_gain),
        )
        return max(0.0, min(100.0, lowest))

    def record_step(self, had_coverage_gain: bool) -> None:
        """Count one executed step and log warnings/exhaustion as they occur."""
        with self._lock:
            self._steps_used += 1
            if had_coverage_gain:
                self._steps_since_gain = 0
                self._gains += 1
                self._add_event("coverage_gained", steps_used=self._steps_used, total_gains=self._gains)
            else:
                self._steps_since_gain += 1

            self._add_event(
                "step_recorded",
                steps_used=self._steps_used,
                had_coverage_gain=had_coverage_gain,
                steps_since_last_gain=self._steps_since_gain,
            )

            remaining = self._remaining_percent()
            if 10 < remaining <= 20:
                self._add_event(
                    "budget_warning",
                    message="Budget running low (20% remaining)",
                    remaining_percent=remaining,
                )
            elif 0 < remaining <= 10:
                self._add_event(
                    "budget_warning",
                    message="Budget critical (10% remaining)",
                    remaining_percent=remaining,
                )

            reason = self._check_exhaustion()
            if reason:
                logger.info("Budget exhausted: %s", format_exhaustion_reason(reason))
                self._add_event(
                    "budget_exhausted",
                    reason=reason.value,
                    steps_used=self._steps_used,
                    unique_states=self._unique_states,
                    elapsed_ms=self._elapsed_ms(),
                )

    def set_depth(self, depth: int) -> None:
        if depth < 0:
            raise ValueError(f"depth must be >= 0, got {depth}")
        with self._lock:
            previous = self._current_depth
            self._current_depth = depth
            if depth != previous:
                self._add_event("depth_changed", previous_depth=previous, new_depth=depth)

    def set_unique_states(self, count: int) -> None:
        if count < 0:
            raise ValueError(f"unique state count must be >= 0, got {count}")
        with self._lock:
            self._unique_states = count

    def can_continue(self) -> bool:
        with self._lock:
            return self._check_exhaustion() is None

    def get_status(self) -> BudgetStatus:
        with self._lock:
            reason = self._check_exhaustion()
            return BudgetStatus(
                steps_used=self._steps_used,
                unique_states=self._unique_states,
                current_depth=self._current_depth,
                steps_since_last_gain=self._steps_since_gain,
                elapsed_ms=self._elapsed_ms(),
                can_continue=reason is None,
                remaining_percent=self._remaining_percent(),
                exhaustion_reason=reason,
            )

    def get_remaining(self, metric: str) -> int:
        """Remaining allowance for ``steps``, ``states`` or ``time`` (ms)."""
        with self._lock:
            if metric == "steps":
                return max(0, self.config.max_total_steps - self._steps_used)
            if metric == "states":
                return max(0, self.config.max_unique_states - self._unique_states)
            if metric == "time":
                return max(0, self.config.max_time_ms - self._elapsed_ms())
            raise ValueError(f"Unknown budget metric: {metric}")

    def stop(self, reason: Optional[str] = None) -> None:
        """Stop the run; every later can_continue() returns False."""
        with self._lock:
            self._manual_stop = True
            self._manual_reason = reason
            self._add_event(
                "budget_exhausted",
                reason=ExhaustionReason.MANUAL_STOP.value,
                manual_stop_reason=reason,
                steps_used=self._steps_used,
                unique_states=self._unique_states,
                elapsed_ms=self._elapsed_ms(),
            )

    @property
    def manual_stop_reason(self) -> Optional[str]:
        return self._manual_reason

    def reset(self) -> None:
        with self._lock:
            self._start = self._clock()
            self._steps_used = 0
            self._unique_states = 0
            self._current_depth = 0
            self._steps_since_gain = 0
            self._gains = 0
            self._manual_stop = False
            self._manual_reason = None
            self._events.clear()

    def get_events(self) -> List[BudgetEvent]:
        with self._lock:
            return list(self._events)


def estimate_budget(page_count: int, steps_per_page: int = 5) -> Dict[str, int]:
    """Budget overrides sized for ``page_count`` pages."""
    return {
        "max_total_steps": page_count * steps_per_page * 2,
        "max_unique_states": page_count * 3,
        "max_time_ms": max(300000, page_count * 30000),
    }


def format_exhaustion_reason(reason: ExhaustionReason) -> str:
    return EXHAUSTION_MESSAGES.get(reason, reason.value)


def format_budget_status(status: BudgetStatus) -> str:
    lines = [
        f"Steps: {status.steps_used} ({status.remaining_percent:.0f}% budget remaining)",
        f"Unique States: {status.unique_states}",
        f"Depth: {status.current_depth}",
        f"Elapsed: {status.elapsed_ms / 1000:.1f}s",
    ]
    if status.steps_since_last_gain > 0:
        lines.append(f"Steps without gain: {status.steps_since_last_gain}")
    if not status.can_continue and status.exhaustion_reason:
        lines.append(f"Status: Stopped ({format_exhaustion_reason(status.exhaustion_reason)})")
    else:
        lines.append("Status: Active")
    return "\n".join(lines)
