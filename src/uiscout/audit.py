"""
Audit trail - the evidence bundle of an exploration run.

Collects the progress events of a run (the session timeline) and, once the
run is over, its steps, errors, graph and coverage, and writes them out for
later review:

    exploration_2024-11-29_153042/
    ├── summary.json              # Run status, page progress, stats
    ├── timeline.jsonl            # Every progress event, in order
    ├── errors.jsonl              # Errors keyed by step index
    ├── graph.json                # Exploration graph export
    ├── coverage.json             # Coverage metrics and stats
    └── steps/
        ├── 0000/
        │   ├── step.json         # Action, outcome, fingerprints, coverage gain
        │   └── screenshot.png    # When one was captured
        └── 0001/
            └── ...
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .coverage import CoverageTracker
from .events import EventBus, ProgressEvent
from .executor import RunResult
from .explorer import ExplorationStep

logger = logging.getLogger(__name__)


@dataclass
class TimelineEvent:
    """A single event in the session timeline."""

    timestamp: datetime
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            **self.data,
        }


class AuditTrail:
    """
    Captures the evidence of an exploration run.

    Usage:
        audit = AuditTrail()
        audit.start_session(urls)
        consumer = asyncio.create_task(audit.consume(bus))

        result = await runner.run(urls)
        bus.close()
        await consumer

        audit.record_run(result, coverage)
        audit.save("./exploration_output")
    """

    def __init__(self):
        self.session_id: str = ""
        self.start_urls: List[str] = []
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

        self.timeline: List[TimelineEvent] = []
        self.steps: List[ExplorationStep] = []
        self.errors: List[Dict[str, Any]] = []
        self.graph: Optional[Dict[str, Any]] = None
        self.coverage: Optional[Dict[str, Any]] = None
        self.run_summary: Dict[str, Any] = {}

    def start_session(self, start_urls: List[str]):
        self.start_urls = list(start_urls)
        self.start_time = datetime.now()
        self.session_id = self.start_time.strftime("%Y-%m-%d_%H%M%S")

    def end_session(self):
        self.end_time = datetime.now()

    def record_event(self, event: ProgressEvent):
        """Append a progress event to the timeline."""
        self.timeline.append(
            TimelineEvent(
                timestamp=datetime.fromtimestamp(event.timestamp),
                event_type=event.type.value,
                data=dict(event.data),
            )
        )

    async def consume(self, bus: EventBus):
        """Record every event from ``bus`` until it is closed."""
        async for event in bus.stream():
            self.record_event(event)

    def record_run(self, result: RunResult, coverage: Optional[CoverageTracker] = None):
        """Take the steps, errors, graph and coverage of a finished run."""
        self.steps = sorted(result.steps, key=lambda s: s.index)
        self.errors = list(result.errors)
        self.graph = result.graph.to_dict() if result.graph is not None else None

        self.coverage = {"stats": result.coverage_stats.to_dict() if result.coverage_stats else None}
        if coverage is not None:
            self.coverage["metrics"] = coverage.get_metrics().to_dict()

        self.run_summary = {
            "status": result.status,
            "mode": result.mode,
            "last_phase": result.last_phase,
            "blocking_error": result.blocking_error,
            "page_progress": result.page_progress,
            "decision_stats": result.decision_stats.to_dict(),
            "budget_status": result.budget_status.to_dict() if result.budget_status else None,
            "duration_ms": result.duration_ms,
        }
        if self.end_time is None:
            self.end_session()

    def save(self, output_dir: str):
        """
        Save the evidence bundle to a directory.

        Args:
            output_dir: Directory to save to (created if needed).
        """
        base_path = Path(output_dir)
        base_path.mkdir(parents=True, exist_ok=True)

        self._save_summary_json(base_path / "summary.json")
        self._save_jsonl(base_path / "timeline.jsonl", [e.to_dict() for e in self.timeline])
        self._save_jsonl(base_path / "errors.jsonl", self.errors)

        steps_dir = base_path / "steps"
        for step in self.steps:
            self._save_step(steps_dir, step)

        with open(base_path / "graph.json", "w") as f:
            json.dump(self.graph or {"nodes": [], "stats": None}, f, indent=2)
        with open(base_path / "coverage.json", "w") as f:
            json.dump(self.coverage or {}, f, indent=2)

        logger.info("Evidence saved to %s (%d steps)", base_path, len(self.steps))

    def _save_step(self, steps_dir: Path, step: ExplorationStep):
        step_dir = steps_dir / f"{step.index:04d}"
        step_dir.mkdir(parents=True, exist_ok=True)

        if step.screenshot:
            with open(step_dir / "screenshot.png", "wb") as f:
                f.write(step.screenshot)

        with open(step_dir / "step.json", "w") as f:
            json.dump(step.to_dict(), f, indent=2)

    def _save_summary_json(self, filepath: Path):
        summary = {
            "session_id": self.session_id,
            "start_urls": self.start_urls,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": (
                (self.end_time - self.start_time).total_seconds() if self.start_time and self.end_time else None
            ),
            "total_steps": len(self.steps),
            "successful_steps": sum(1 for s in self.steps if s.success),
            "failed_steps": sum(1 for s in self.steps if not s.success),
            "screenshots": sum(1 for s in self.steps if s.screenshot),
            "total_errors": len(self.errors),
            "timeline_events": len(self.timeline),
            **self.run_summary,
        }
        with open(filepath, "w") as f:
            json.dump(summary, f, indent=2)

    def _save_jsonl(self, filepath: Path, data: List[Dict[str, Any]]):
        """Save a list of dicts as JSONL."""
        with open(filepath, "w") as f:
            for item in data:
                f.write(json.dumps(item, default=str) + "\n")
