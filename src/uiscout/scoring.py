"""
Action scoring for uiScout.

Every interactive element on a page becomes an ``ActionCandidate`` that is
scored on four 0-10 factors:

- novelty: does it lead somewhere we have not been (new URL, unsubmitted form,
  collapsed section)?
- business criticality: is it a call-to-action, a submit, a navigation link?
- risk: how likely is it to reveal a bug (forms > buttons > links)?
- branch factor: how many new states is it likely to open up?

The weighted sum is decayed for elements that were already tried and for
action types that have been overused, then scaled by 10. Disabled elements
stay in the ranking (so a blocked submit button can still explain why its
input matters) but score near zero and are never selected.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse

from .coverage import CoverageTracker, normalize_url

logger = logging.getLogger(__name__)


class ActionType(Enum):
    """Closed set of actions the explorer can perform on an element."""

    CLICK = "click"
    FILL = "fill"
    HOVER = "hover"
    PRESS = "press"
    SELECT = "select"


CTA_KEYWORDS = [
    "sign up", "signup", "register", "create account",
    "get started", "try free", "start free",
    "buy now", "purchase", "checkout", "add to cart",
    "subscribe", "upgrade", "pro", "premium",
    "download", "install", "get app",
    "contact", "book", "schedule", "demo",
    "submit", "send", "confirm", "save",
    "next", "continue", "proceed",
]

NAV_KEYWORDS = [
    "home", "about", "contact", "pricing", "features",
    "products", "services", "blog", "news",
    "support", "help", "faq", "docs", "documentation",
    "login", "logout", "sign in", "sign out",
    "account", "profile", "settings", "dashboard",
]

EXPANDABLE_KEYWORDS = [
    "show more", "see more", "read more", "view more",
    "expand", "collapse", "toggle", "details",
    "dropdown", "menu", "accordion",
]

def contains_keyword(text: str, keywords: List[str]) -> bool:
    lowered = (text or "").lower()
    return any(kw in lowered for kw in keywords)


@dataclass
class ElementInfo:
    """What the page told us about an interactive element."""

    tag_name: str
    text: str = ""
    role: Optional[str] = None
    href: Optional[str] = None
    type: Optional[str] = None
    form_id: Optional[str] = None
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None
    is_disabled: bool = False
    has_empty_required_input: bool = False
    enables_submit_button: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementInfo":
        return cls(
            tag_name=(data.get("tagName") or "").lower(),
            text=data.get("text") or "",
            role=data.get("role") or None,
            href=data.get("href") or None,
            type=data.get("type") or None,
            form_id=data.get("formId") or None,
            placeholder=data.get("placeholder") or None,
            aria_label=data.get("ariaLabel") or None,
            is_disabled=bool(data.get("isDisabled")),
            has_empty_required_input=bool(data.get("hasEmptyRequiredInput")),
            enables_submit_button=bool(data.get("enablesSubmitButton")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tagName": self.tag_name,
            "text": self.text,
            "role": self.role,
            "href": self.href,
            "type": self.type,
            "formId": self.form_id,
            "placeholder": self.placeholder,
            "ariaLabel": self.aria_label,
            "isDisabled": self.is_disabled,
            "hasEmptyRequiredInput": self.has_empty_required_input,
            "enablesSubmitButton": self.enables_submit_button,
        }


@dataclass
class ScoreBreakdown:
    novelty: float = 0
    business_criticality: float = 0
    risk: float = 0
    branch_factor: float = 0


@dataclass
class ActionCandidate:
    """An element/action pair with its (possibly not yet computed) score."""

    selector: str
    action_type: ActionType
    element: ElementInfo
    priority_score: float = 0.0
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    was_attempted: bool = False
    decay_factor: float = 1.0


@dataclass(frozen=True)
class ScorerConfig:
    novelty_weight: float = 0.35
    business_criticality_weight: float = 0.25
    risk_weight: float = 0.25
    branch_factor_weight: float = 0.15
    decay_rate: float = 0.7
    max_retries: int = 2
    type_overuse_threshold: int = 10
    type_overuse_decay: float = 0.9


@dataclass
class ScoringContext:
    """What has already been covered, used to judge novelty."""

    current_url: str
    visited_urls: Set[str] = field(default_factory=set)
    submitted_forms: Set[str] = field(default_factory=set)
    opened_dialogs: Set[str] = field(default_factory=set)
    interacted_elements: Set[str] = field(default_factory=set)
    action_type_counts: Dict[str, int] = field(default_factory=dict)
    base_domain: Optional[str] = None


def _bare_host(host: str) -> str:
    host = (host or "").lower()
    return host[4:] if host.startswith("www.") else host


def is_same_domain(url: str, base_domain: Optional[str], current_url: str = "") -> bool:
    """
    Check whether ``url`` (resolved against ``current_url``) is on ``base_domain``.

    Hosts must match exactly, ignoring a leading ``www.``; subdomains count as
    external. No base domain means no restriction.
    """
    if not base_domain:
        return True
    try:
        target = urlparse(urljoin(current_url, url))
    except ValueError:
        return False
    if target.scheme not in ("http", "https"):
        return False
    return _bare_host(target.hostname or "") == _bare_host(base_domain)


def _clamp(score: float) -> float:
    return max(0, min(10, score))


def novelty_score(candidate: ActionCandidate, context: ScoringContext) -> float:
    element = candidate.element
    score = 0

    if element.href:
        try:
            target = urljoin(context.current_url, element.href)
        except ValueError:
            score += 3
        else:
            if not is_same_domain(element.href, context.base_domain, context.current_url):
                return 0
            score += 1 if normalize_url(target) in context.visited_urls else 8

    if element.tag_name == "form" or element.type == "submit":
        form_id = element.form_id or candidate.selector
        if form_id not in context.submitted_forms:
            score += 7

    if contains_keyword(element.text, EXPANDABLE_KEYWORDS):
        score += 5

    if candidate.selector.lower().strip() in context.interacted_elements:
        score -= 4

    return _clamp(score)


def business_criticality_score(candidate: ActionCandidate) -> float:
    element = candidate.element
    if contains_keyword(element.text, CTA_KEYWORDS):
        return 10
    if element.tag_name == "form" or element.type == "submit":
        return 8
    if element.tag_name == "button" or element.role == "button":
        return 6
    if contains_keyword(element.text, NAV_KEYWORDS):
        return 5
    if element.tag_name == "a":
        return 4
    return 3


def risk_score(candidate: ActionCandidate) -> float:
    element = candidate.element
    if element.tag_name == "form" or element.type == "submit" or candidate.action_type == ActionType.FILL:
        return 8
    if element.tag_name == "button" or element.role == "button":
        return 6
    if contains_keyword(element.text, EXPANDABLE_KEYWORDS):
        return 5
    if element.tag_name == "a":
        return 4
    if element.tag_name in ("input", "select", "textarea"):
        return 5
    return 3


def branch_factor_score(candidate: ActionCandidate) -> float:
    element = candidate.element
    if element.tag_name == "form" or candidate.action_type == ActionType.FILL:
        return 5
    if contains_keyword(element.text, EXPANDABLE_KEYWORDS):
        return 4
    if element.href and not element.href.startswith("#"):
        return 3
    if element.tag_name == "button" or element.role == "button":
        return 3
    return 2


class ActionScorer:
    """
    Scores and ranks action candidates.

    Keeps per-(type, selector) attempt counts so repeated actions decay
    geometrically and are dropped from selection after ``max_retries``.
    """

    def __init__(self, config: Optional[ScorerConfig] = None):
        self.config = config or ScorerConfig()
        self._attempts: Dict[str, int] = {}

    @staticmethod
    def _attempt_key(selector: str, action_type: ActionType) -> str:
        return f"{action_type.value}:{selector}"

    def attempts_for(self, selector: str, action_type: ActionType) -> int:
        return self._attempts.get(self._attempt_key(selector, action_type), 0)

    def score_action(self, candidate: ActionCandidate, context: ScoringContext) -> ActionCandidate:
        """Return a scored copy of ``candidate``."""
        cfg = self.config
        breakdown = ScoreBreakdown(
            novelty=novelty_score(candidate, context),
            business_criticality=business_criticality_score(candidate),
            risk=risk_score(candidate),
            branch_factor=branch_factor_score(candidate),
        )

        base = (
            breakdown.novelty * cfg.novelty_weight
            + breakdown.business_criticality * cfg.business_criticality_weight
            + breakdown.risk * cfg.risk_weight
            + breakdown.branch_factor * cfg.branch_factor_weight
        )
        if candidate.element.is_disabled:
            base = 0.01
        if candidate.element.enables_submit_button:
            base += 5

        attempts = self.attempts_for(candidate.selector, candidate.action_type)
        decay = cfg.decay_rate ** attempts
        type_count = context.action_type_counts.get(candidate.action_type.value, 0)
        type_decay = cfg.type_overuse_decay if type_count > cfg.type_overuse_threshold else 1.0

        score = base * decay * type_decay * 10
        if candidate.element.is_disabled:
            score = min(score, 0.1)

        return replace(
            candidate,
            priority_score=score,
            breakdown=breakdown,
            was_attempted=attempts > 0,
            decay_factor=decay,
        )

    def rank_actions(self, candidates: List[ActionCandidate], context: ScoringContext) -> List[ActionCandidate]:
        scored = [self.score_action(c, context) for c in candidates]
        scored.sort(key=lambda c: c.priority_score, reverse=True)
        return scored

    def select_top_actions(
        self, candidates: List[ActionCandidate], context: ScoringContext, n: int
    ) -> List[ActionCandidate]:
        """Top ``n`` enabled candidates that have not hit the retry ceiling."""
        ranked = self.rank_actions(candidates, context)
        eligible = [
            c
            for c in ranked
            if not c.element.is_disabled
            and self.attempts_for(c.selector, c.action_type) < self.config.max_retries
        ]
        return eligible[:n]

    def record_attempt(self, selector: str, action_type: ActionType) -> None:
        key = self._attempt_key(selector, action_type)
        self._attempts[key] = self._attempts.get(key, 0) + 1


EXTRACT_CANDIDATES_SCRIPT = r"""
(function() {
  const interactive = [
    'a[href]', 'button', 'input[type="submit"]', 'input[type="button"]',
    '[role="button"]', '[role="link"]', '[role="tab"]', '[role="menuitem"]',
    '[onclick]', 'select', 'input:not([type="hidden"])', 'textarea',
    '[class*="btn"]', '[class*="button"]'
  ];
  const fillable = 'input:not([type="hidden"]):not([type="submit"]):not([type="button"]), textarea';

  function isVisible(el) {
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  }
  function isDisabled(el) {
    return el.disabled || el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true';
  }
  function selectorFor(el) {
    if (el.id) return '#' + CSS.escape(el.id);
    if (el.name) return el.tagName.toLowerCase() + '[name="' + el.name.replace(/"/g, '\\"') + '"]';
    const parts = [];
    let current = el;
    for (let i = 0; current && i < 3; i++) {
      if (current.id) { parts.unshift('#' + CSS.escape(current.id)); break; }
      let part = current.tagName.toLowerCase();
      const classes = Array.from(current.classList || [])
        .filter(c => c && !c.includes('active') && !c.includes('hover') && !c.includes('focus'))
        .slice(0, 2);
      if (classes.length) part += '.' + classes.map(c => CSS.escape(c)).join('.');
      parts.unshift(part);
      current = current.parentElement;
    }
    return parts.join(' > ');
  }
  function actionTypeFor(el) {
    const tag = el.tagName.toLowerCase();
    if (tag === 'input' || tag === 'textarea') {
      return (el.type === 'submit' || el.type === 'button') ? 'click' : 'fill';
    }
    return tag === 'select' ? 'select' : 'click';
  }
  function scope(el) {
    return el.closest('form') || el.closest('div, section, nav, header');
  }
  function emptyInputs(el) {
    const container = scope(el);
    if (!container) return false;
    return Array.from(container.querySelectorAll(fillable))
      .filter(isVisible)
      .some(input => !input.value || input.value.trim() === '');
  }
  function disabledSubmit(el) {
    const form = el.closest('form');
    const buttons = form
      ? form.querySelectorAll('button[type="submit"], button:not([type]), input[type="submit"]')
      : (scope(el) ? scope(el).querySelectorAll('button, [role="button"]') : []);
    return Array.from(buttons).some(btn => isDisabled(btn) && isVisible(btn));
  }

  const seen = new Set();
  const out = [];
  for (const el of document.querySelectorAll(interactive.join(', '))) {
    if (!isVisible(el)) continue;
    const selector = selectorFor(el);
    if (seen.has(selector)) continue;
    seen.add(selector);

    const tag = el.tagName.toLowerCase();
    const actionType = actionTypeFor(el);
    const disabled = isDisabled(el);
    const ariaLabel = el.getAttribute('aria-label') || '';
    const placeholder = el.getAttribute('placeholder') || '';
    const text = (el.textContent || '').trim().slice(0, 100);
    const empty = !el.value || String(el.value).trim() === '';

    out.push({
      selector: selector,
      actionType: actionType,
      element: {
        tagName: tag,
        text: text || ariaLabel || placeholder,
        role: el.getAttribute('role') || '',
        href: el.href || '',
        type: el.type || '',
        formId: el.form ? (el.form.id || el.form.getAttribute('name') || 'form') : '',
        placeholder: placeholder,
        ariaLabel: ariaLabel,
        isDisabled: disabled,
        hasEmptyRequiredInput: disabled && (tag === 'button' || el.type === 'submit') && emptyInputs(el),
        enablesSubmitButton: actionType === 'fill' && empty && disabledSubmit(el)
      }
    });
    if (out.length >= 100) break;
  }
  return JSON.stringify(out);
})()
"""


def candidate_from_dict(data: Dict[str, Any]) -> ActionCandidate:
    return ActionCandidate(
        selector=data["selector"],
        action_type=ActionType(data.get("actionType", "click")),
        element=ElementInfo.from_dict(data.get("element") or {}),
    )


async def extract_action_candidates(browser) -> List[ActionCandidate]:
    """Read up to 100 visible interactive elements from the current page."""
    try:
        raw = await browser.eval(EXTRACT_CANDIDATES_SCRIPT)
        items = json.loads(raw) if isinstance(raw, str) else raw
    except Exception as e:
        logger.warning("Failed to extract action candidates: %s", e)
        return []

    candidates = []
    for item in items or []:
        try:
            candidates.append(candidate_from_dict(item))
        except (KeyError, ValueError) as e:
            logger.debug("Skipping malformed candidate %r: %s", item, e)
    return candidates


def build_scoring_context(
    coverage: CoverageTracker, current_url: str, base_domain: Optional[str] = None
) -> ScoringContext:
    metrics = coverage.get_metrics()
    type_counts: Dict[str, int] = {}
    for outcome in coverage.get_action_outcomes():
        type_counts[outcome.action_type] = type_counts.get(outcome.action_type, 0) + 1

    return ScoringContext(
        current_url=current_url,
        visited_urls=metrics.unique_urls,
        submitted_forms=metrics.unique_forms,
        opened_dialogs=metrics.unique_dialogs,
        interacted_elements=metrics.interacted_elements,
        action_type_counts=type_counts,
        base_domain=base_domain,
    )


def format_candidate(candidate: ActionCandidate) -> str:
    b = candidate.breakdown
    return "\n".join(
        [
            f'[{candidate.action_type.value}] {candidate.element.tag_name} "{candidate.element.text[:30]}"',
            f"  Score: {candidate.priority_score:.1f} "
            f"(N:{b.novelty} B:{b.business_criticality} R:{b.risk} F:{b.branch_factor})",
            f"  Selector: {candidate.selector}",
        ]
    )
