"""
Coverage tracking for uiScout.

Counts the distinct things an exploration has reached (URLs, dialogs, forms,
network requests, console errors, interacted elements) so that each step can
be scored by how much *new* surface it uncovered. Gains are always computed
against a snapshot taken before the step, which makes them independent of
how many times the same page is revisited.
"""

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


DETECT_DIALOGS_SCRIPT = """
(function() {
  const hidden = ':not([style*="display: none"]):not([style*="display:none"])';
  const dialogs = Array.from(document.querySelectorAll(
    'dialog[open], [role="dialog"], [role="alertdialog"], [aria-modal="true"], ' +
    '[class*="modal"]' + hidden + ', [class*="popup"]' + hidden
  )).filter(el => {
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden';
  });
  return JSON.stringify(dialogs.map(d => {
    const role = d.getAttribute('role') || 'dialog';
    const label = d.getAttribute('aria-label') || d.getAttribute('aria-labelledby') || '';
    const heading = d.querySelector('h1, h2, h3, h4, h5, h6');
    const title = heading ? heading.textContent.trim().slice(0, 50) : '';
    return [role, d.id || '', label, title].filter(Boolean).join('-') || 'unnamed-dialog';
  }));
})()
"""

DETECT_FORMS_SCRIPT = """
(function() {
  return JSON.stringify(Array.from(document.querySelectorAll('form')).map(f => {
    const action = f.getAttribute('action') || '';
    const method = (f.getAttribute('method') || 'get').toUpperCase();
    const inputs = f.querySelectorAll('input, select, textarea').length;
    let actionPath = '';
    try { actionPath = action ? new URL(action, window.location.href).pathname : ''; } catch (e) {}
    return [method, actionPath, f.id || '', f.getAttribute('name') || '', 'inputs:' + inputs]
      .filter(Boolean).join('-') || 'unnamed-form';
  }));
})()
"""

_LINE_COL = re.compile(r":\d+:\d+")
MAX_CONSOLE_ERROR_LENGTH = 200


def normalize_url(url: str) -> str:
    """Origin + path without trailing slash, lowercased. Query and fragment are dropped."""
    try:
        parsed = urlparse(url)
    except ValueError:
        parsed = None
    if parsed is None or not parsed.scheme or not parsed.netloc:
        lowered = url.lower()
        return lowered[:-1] if lowered.endswith("/") else lowered
    path = parsed.path[:-1] if parsed.path.endswith("/") else parsed.path
    return f"{parsed.scheme}://{parsed.netloc}{path}".lower()


def normalize_console_error(error: str) -> str:
    return _LINE_COL.sub("", error)[:MAX_CONSOLE_ERROR_LENGTH]


@dataclass
class CoverageMetrics:
    """Sets of everything reached so far."""

    unique_urls: Set[str] = field(default_factory=set)
    unique_dialogs: Set[str] = field(default_factory=set)
    unique_forms: Set[str] = field(default_factory=set)
    unique_network_requests: Set[str] = field(default_factory=set)
    unique_console_errors: Set[str] = field(default_factory=set)
    interacted_elements: Set[str] = field(default_factory=set)
    urls_with_forms: Set[str] = field(default_factory=set)
    urls_with_errors: Set[str] = field(default_factory=set)

    def copy(self) -> "CoverageMetrics":
        return CoverageMetrics(
            unique_urls=set(self.unique_urls),
            unique_dialogs=set(self.unique_dialogs),
            unique_forms=set(self.unique_forms),
            unique_network_requests=set(self.unique_network_requests),
            unique_console_errors=set(self.unique_console_errors),
            interacted_elements=set(self.interacted_elements),
            urls_with_forms=set(self.urls_with_forms),
            urls_with_errors=set(self.urls_with_errors),
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "uniqueUrls": sorted(self.unique_urls),
            "uniqueDialogs": sorted(self.unique_dialogs),
            "uniqueForms": sorted(self.unique_forms),
            "uniqueNetworkRequests": sorted(self.unique_network_requests),
            "uniqueConsoleErrors": sorted(self.unique_console_errors),
            "interactedElements": sorted(self.interacted_elements),
            "urlsWithForms": sorted(self.urls_with_forms),
            "urlsWithErrors": sorted(self.urls_with_errors),
        }


@dataclass
class CoverageSnapshot:
    """Frozen copy of the metrics at a given step."""

    metrics: CoverageMetrics
    step_index: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class CoverageGain:
    """What became reachable between a snapshot and now."""

    new_urls: List[str] = field(default_factory=list)
    new_dialogs: List[str] = field(default_factory=list)
    new_forms: List[str] = field(default_factory=list)
    new_network_requests: List[str] = field(default_factory=list)
    new_console_errors: List[str] = field(default_factory=list)
    new_elements: List[str] = field(default_factory=list)

    @property
    def total_gain(self) -> int:
        return (
            len(self.new_urls)
            + len(self.new_dialogs)
            + len(self.new_forms)
            + len(self.new_network_requests)
            + len(self.new_console_errors)
            + len(self.new_elements)
        )

    @property
    def has_gain(self) -> bool:
        return self.total_gain > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "newUrls": self.new_urls,
            "newDialogs": self.new_dialogs,
            "newForms": self.new_forms,
            "newNetworkRequests": self.new_network_requests,
            "newConsoleErrors": self.new_console_errors,
            "newElements": self.new_elements,
            "totalGain": self.total_gain,
            "hasGain": self.has_gain,
        }


@dataclass
class ActionOutcome:
    """Coverage gain attributed to one executed action."""

    action_type: str
    coverage_gain: CoverageGain
    step_index: int
    selector: Optional[str] = None
    value: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class CoverageStats:
    total_urls: int
    total_dialogs: int
    total_forms: int
    total_network_requests: int
    total_console_errors: int
    total_interactions: int
    urls_with_forms: int
    urls_with_errors: int
    coverage_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalUrls": self.total_urls,
            "totalDialogs": self.total_dialogs,
            "totalForms": self.total_forms,
            "totalNetworkRequests": self.total_network_requests,
            "totalConsoleErrors": self.total_console_errors,
            "totalInteractions": self.total_interactions,
            "urlsWithForms": self.urls_with_forms,
            "urlsWithErrors": self.urls_with_errors,
            "coverageScore": self.coverage_score,
        }


@dataclass
class CoverageRecommendation:
    type: str  # explore_forms | find_dialogs | increase_breadth | focus_action_type
    priority: int
    message: str


def _add(target: Set[str], key: str) -> bool:
    is_new = key not in target
    target.add(key)
    return is_new


class CoverageTracker:
    """
    Accumulates coverage for a run.

    Every ``record_*`` method returns True when the item was new. The tracker
    is safe to share between concurrent exploration units.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._metrics = CoverageMetrics()
        self._outcomes: List[ActionOutcome] = []

    def record_url(self, url: str) -> bool:
        with self._lock:
            return _add(self._metrics.unique_urls, normalize_url(url))

    def record_dialog(self, dialog_id: str) -> bool:
        with self._lock:
            return _add(self._metrics.unique_dialogs, dialog_id)

    def record_form(self, form_id: str) -> bool:
        with self._lock:
            return _add(self._metrics.unique_forms, form_id)

    def record_network_request(self, method: str, url: str) -> bool:
        with self._lock:
            return _add(self._metrics.unique_network_requests, f"{method.upper()} {normalize_url(url)}")

    def record_console_error(self, error: str) -> bool:
        with self._lock:
            return _add(self._metrics.unique_console_errors, normalize_console_error(error))

    def record_element_interaction(self, selector: str) -> bool:
        with self._lock:
            return _add(self._metrics.interacted_elements, selector.lower().strip())

    def record_url_with_form(self, url: str) -> bool:
        with self._lock:
            return _add(self._metrics.urls_with_forms, normalize_url(url))

    def record_url_with_error(self, url: str) -> bool:
        with self._lock:
            return _add(self._metrics.urls_with_errors, normalize_url(url))

    def take_snapshot(self, step_index: int) -> CoverageSnapshot:
        with self._lock:
            return CoverageSnapshot(metrics=self._metrics.copy(), step_index=step_index)

    def calculate_gain(self, previous: CoverageSnapshot) -> CoverageGain:
        """Set difference between the current metrics and ``previous``."""
        with self._lock:
            now, then = self._metrics, previous.metrics
            return CoverageGain(
                new_urls=sorted(now.unique_urls - then.unique_urls),
                new_dialogs=sorted(now.unique_dialogs - then.unique_dialogs),
                new_forms=sorted(now.unique_forms - then.unique_forms),
                new_network_requests=sorted(now.unique_network_requests - then.unique_network_requests),
                new_console_errors=sorted(now.unique_console_errors - then.unique_console_errors),
                new_elements=sorted(now.interacted_elements - then.interacted_elements),
            )

    def record_action_outcome(self, outcome: ActionOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def get_action_outcomes(self) -> List[ActionOutcome]:
        with self._lock:
            return list(self._outcomes)

    def get_metrics(self) -> CoverageMetrics:
        with self._lock:
            return self._metrics.copy()

    def get_stats(self) -> CoverageStats:
        with self._lock:
            m = self._metrics
            url_score = min(len(m.unique_urls) * 5, 40)
            dialog_score = min(len(m.unique_dialogs) * 5, 15)
            form_score = min(len(m.unique_forms) * 5, 20)
            interaction_score = min(len(m.interacted_elements) * 0.5, 25)
            return CoverageStats(
                total_urls=len(m.unique_urls),
                total_dialogs=len(m.unique_dialogs),
                total_forms=len(m.unique_forms),
                total_network_requests=len(m.unique_network_requests),
                total_console_errors=len(m.unique_console_errors),
                total_interactions=len(m.interacted_elements),
                urls_with_forms=len(m.urls_with_forms),
                urls_with_errors=len(m.urls_with_errors),
                coverage_score=min(100, url_score + dialog_score + form_score + interaction_score),
            )

    def get_most_effective_action_types(self) -> List[Dict[str, Any]]:
        """Action types ranked by average coverage gain, best first."""
        with self._lock:
            totals: Dict[str, Tuple[int, int]] = {}
            for outcome in self._outcomes:
                gain, count = totals.get(outcome.action_type, (0, 0))
                totals[outcome.action_type] = (gain + outcome.coverage_gain.total_gain, count + 1)

        ranked = [
            {"type": action_type, "avg_gain": gain / count if count else 0.0, "count": count}
            for action_type, (gain, count) in totals.items()
        ]
        ranked.sort(key=lambda item: item["avg_gain"], reverse=True)
        return ranked

    def reset(self) -> None:
        with self._lock:
            self._metrics = CoverageMetrics()
            self._outcomes.clear()


async def _eval_json_list(browser, script: str) -> List[str]:
    raw = await browser.eval(script)
    data = json.loads(raw) if isinstance(raw, str) else raw
    return [str(item) for item in data or []]


async def collect_page_coverage(browser, tracker: CoverageTracker, current_url: str) -> None:
    """
    Record everything observable on the current page.

    Dialog/form detection failures are logged and ignored; the URL is always
    recorded.
    """
    tracker.record_url(current_url)

    try:
        for dialog in await _eval_json_list(browser, DETECT_DIALOGS_SCRIPT):
            tracker.record_dialog(dialog)
        forms = await _eval_json_list(browser, DETECT_FORMS_SCRIPT)
        for form in forms:
            tracker.record_form(form)
        if forms:
            tracker.record_url_with_form(current_url)
    except Exception as e:
        logger.debug("Coverage detection failed on %s: %s", current_url, e)

    errors = browser.drain_console_errors()
    for error in errors:
        tracker.record_console_error(error)
    if errors:
        tracker.record_url_with_error(current_url)

    for method, url in browser.drain_network_requests():
        tracker.record_network_request(method, url)


def get_coverage_recommendations(tracker: CoverageTracker) -> List[CoverageRecommendation]:
    stats = tracker.get_stats()
    recommendations = []

    if stats.total_forms > stats.urls_with_forms:
        recommendations.append(
            CoverageRecommendation(
                "explore_forms",
                8,
                f"{stats.total_forms - stats.urls_with_forms} forms not yet interacted with",
            )
        )
    if stats.total_dialogs == 0:
        recommendations.append(
            CoverageRecommendation("find_dialogs", 6, "No dialogs/modals discovered yet - look for modal triggers")
        )
    if stats.coverage_score < 50:
        recommendations.append(
            CoverageRecommendation("increase_breadth", 7, "Coverage is low - explore more pages and interactions")
        )

    effective = tracker.get_most_effective_action_types()
    if effective and effective[0]["avg_gain"] > 2:
        recommendations.append(
            CoverageRecommendation(
                "focus_action_type",
                5,
                f'"{effective[0]["type"]}" actions are most effective - prioritize them',
            )
        )

    recommendations.sort(key=lambda r: r.priority, reverse=True)
    return recommendations


def format_coverage_stats(stats: CoverageStats) -> str:
    return "\n".join(
        [
            f"URLs: {stats.total_urls}",
            f"Forms: {stats.total_forms} ({stats.urls_with_forms} pages with forms)",
            f"Dialogs: {stats.total_dialogs}",
            f"Interactions: {stats.total_interactions}",
            f"Network Requests: {stats.total_network_requests}",
            f"Console Errors: {stats.total_console_errors}",
            f"Coverage Score: {stats.coverage_score:.0f}/100",
        ]
    )
