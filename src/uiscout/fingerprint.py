"""
State fingerprinting for uiScout.

A fingerprint identifies a *page state*, not just a URL: the same URL with a
modal open, or with a form half-filled, is a different state. Each state is
reduced to a handful of facet hashes:

1. URL (path + query, origin ignored)
2. DOM structure (tag/role/type hierarchy with transient elements removed)
3. Visible text (informational only)
4. Form state (which inputs are filled or checked, never the values)
5. Dialog state (which dialogs are open)
6. Auth markers (informational only)

The combined hash covers URL, DOM structure, form state and dialog state.
Toasts, spinners, timestamps, avatars, ads and animations are filtered out of
the DOM structure so they never create a "new" state.

Usage:
    ```python
    fingerprint = await capture_fingerprint(browser)
    tracker = StateTracker()
    if tracker.record_state(fingerprint):
        print("new state", fingerprint.combined_hash)
    ```
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


# Element class fragments that mark transient UI (loading, toasts, timestamps, ...)
TRANSIENT_CLASS_FRAGMENTS = (
    "loading",
    "spinner",
    "skeleton",
    "toast",
    "notification",
    "snackbar",
    "timestamp",
    "time-ago",
    "avatar",
    "profile-image",
    "ad-",
    "animate",
    "transition",
)

MAX_STRUCTURE_DEPTH = 15
MAX_VISIBLE_TEXT = 10000


# Serializes the body as a compact tree; transient filtering happens in Python.
DOM_TREE_SCRIPT = """
(function() {
  function walk(el, depth) {
    if (!el || !el.tagName || depth > %d) return null;
    const node = {
      t: el.tagName.toLowerCase(),
      r: el.getAttribute('role') || '',
      y: el.getAttribute('type') || '',
      c: (typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '')),
      i: el.id || '',
      s: el.getAttribute('src') || '',
      b: el.getAttribute('aria-busy') || '',
      k: []
    };
    for (const child of Array.from(el.children || [])) {
      const c = walk(child, depth + 1);
      if (c) node.k.push(c);
    }
    return node;
  }
  return JSON.stringify(walk(document.body, 0));
})()
""" % MAX_STRUCTURE_DEPTH

VISIBLE_TEXT_SCRIPT = """
(function() {
  const fragments = %s;
  function isTransient(el) {
    const cls = (typeof el.className === 'string' ? el.className : '') || '';
    if (fragments.some(f => cls.includes(f))) return true;
    if (el.getAttribute('aria-busy') === 'true') return true;
    if (el.getAttribute('role') === 'alert') return true;
    if (el.tagName === 'TIME') return true;
    return false;
  }
  function isVisible(el) {
    if (!el || !el.getBoundingClientRect) return false;
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  }
  function text(el) {
    if (!el || isTransient(el)) return '';
    let out = '';
    for (const node of el.childNodes) {
      if (node.nodeType === Node.TEXT_NODE) out += node.textContent;
    }
    for (const child of el.children || []) {
      if (isVisible(child)) out += ' ' + text(child);
    }
    return out;
  }
  return text(document.body);
})()
""" % json.dumps(list(TRANSIENT_CLASS_FRAGMENTS))

FORM_STATE_SCRIPT = """
(function() {
  const forms = Array.from(document.querySelectorAll('form'))
    .map(f => f.id || f.getAttribute('name') || f.getAttribute('action') || 'form');
  const inputs = Array.from(document.querySelectorAll('input, select, textarea')).map(input => {
    const type = input.type || 'text';
    const name = input.name || input.id || '';
    if (type === 'password' || name.toLowerCase().includes('password')) {
      return name + ':password:' + (input.value ? 'filled' : 'empty');
    }
    if (type === 'checkbox' || type === 'radio') {
      return name + ':' + type + ':' + input.checked;
    }
    if (input.tagName === 'SELECT') {
      return name + ':select:' + input.value;
    }
    return name + ':' + type + ':' + (input.value ? 'filled' : 'empty');
  });
  return JSON.stringify({forms: forms, inputs: inputs});
})()
"""

DIALOG_STATE_SCRIPT = """
(function() {
  const hidden = ':not([style*="display: none"]):not([style*="display:none"])';
  const dialogs = Array.from(document.querySelectorAll(
    'dialog[open], [role="dialog"], [role="alertdialog"], [aria-modal="true"], ' +
    '[class*="modal"]' + hidden + ', [class*="popup"]' + hidden + ', [class*="overlay"]' + hidden
  )).filter(el => {
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden';
  });
  return JSON.stringify(dialogs.map(d => {
    const role = d.getAttribute('role') || 'dialog';
    const label = d.getAttribute('aria-label') || d.getAttribute('aria-labelledby') || '';
    return role + ':' + (label || d.id || 'unnamed');
  }));
})()
"""

AUTH_STATE_SCRIPT = """
(function() {
  const markers = [];
  const userUi = document.querySelectorAll(
    '[class*="user-menu"], [class*="profile"], [class*="avatar"], ' +
    '[class*="account"], [aria-label*="account"], [aria-label*="profile"]'
  );
  if (userUi.length > 0) markers.push('user-ui-present');
  const buttons = Array.from(document.querySelectorAll('button'));
  const hasButton = (labels) => buttons.some(b => labels.some(l => (b.textContent || '').includes(l)));
  if (document.querySelector('a[href*="login"]') || hasButton(['Log in', 'Sign in'])) markers.push('login-btn');
  if (document.querySelector('a[href*="logout"]') || hasButton(['Log out', 'Sign out'])) markers.push('logout-btn');
  const cookies = document.cookie || '';
  if (cookies.includes('session') || cookies.includes('token') || cookies.includes('auth')) {
    markers.push('auth-cookie');
  }
  return markers.join(',');
})()
"""


def quick_hash(value: str) -> str:
    """Short stable hash: first 16 hex chars of SHA-256."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def hash_url(url: str) -> str:
    """Hash the path and query of a URL, ignoring scheme and host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return quick_hash(url)
    if not parsed.scheme:
        return quick_hash(url)
    search = f"?{parsed.query}" if parsed.query else ""
    return quick_hash((parsed.path or "/") + search)


def is_transient_node(node: Dict[str, Any]) -> bool:
    """Check whether a serialized DOM node is transient UI."""
    classes = node.get("c") or ""
    if any(fragment in classes for fragment in TRANSIENT_CLASS_FRAGMENTS):
        return True
    if node.get("b") == "true" or node.get("r") == "alert":
        return True
    tag = node.get("t", "")
    if tag == "time":
        return True
    if "google_ads" in (node.get("i") or ""):
        return True
    if tag == "iframe" and "ads" in (node.get("s") or ""):
        return True
    return False


def dom_structure_signature(node: Optional[Dict[str, Any]], depth: int = 0) -> str:
    """
    Build the structural signature of a serialized DOM tree.

    Each element contributes ``tag[role=..][type=..]`` (type only for inputs and
    buttons); children are nested in braces. Transient subtrees are dropped.
    """
    if not node or not node.get("t") or depth > MAX_STRUCTURE_DEPTH:
        return ""
    if is_transient_node(node):
        return ""

    tag = node["t"]
    signature = tag
    if node.get("r"):
        signature += f"[role={node['r']}]"
    if node.get("y") and tag in ("input", "button"):
        signature += f"[type={node['y']}]"

    children = [dom_structure_signature(child, depth + 1) for child in node.get("k") or []]
    children = [c for c in children if c]
    if children:
        return signature + "{" + ",".join(children) + "}"
    return signature


def normalize_visible_text(text: str) -> str:
    return " ".join((text or "").split())[:MAX_VISIBLE_TEXT]


@dataclass
class PageObservation:
    """Raw facets read from a page, before hashing."""

    url: str
    dom_tree: Optional[Dict[str, Any]] = None
    visible_text: str = ""
    form_state: str = "{}"
    dialog_state: str = "[]"
    auth_state: str = ""


@dataclass(frozen=True)
class StateFingerprint:
    """Fingerprint of one page state. Equality is combined-hash equality."""

    combined_hash: str
    url_hash: str = field(compare=False)
    dom_structure_hash: str = field(compare=False)
    visible_text_hash: str = field(compare=False)
    form_state_hash: str = field(compare=False)
    dialog_state_hash: str = field(compare=False)
    auth_state_id: Optional[str] = field(default=None, compare=False)
    url: str = field(default="", compare=False)
    timestamp: float = field(default_factory=time.time, compare=False)

    def similarity(self, other: "StateFingerprint") -> float:
        return fingerprint_similarity(self, other)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "combinedHash": self.combined_hash,
            "urlHash": self.url_hash,
            "domStructureHash": self.dom_structure_hash,
            "visibleTextHash": self.visible_text_hash,
            "formStateHash": self.form_state_hash,
            "dialogStateHash": self.dialog_state_hash,
            "authStateId": self.auth_state_id,
            "url": self.url,
            "timestamp": self.timestamp,
        }


def fingerprint_from_observation(observation: PageObservation) -> StateFingerprint:
    """Hash the facets of an observation into a fingerprint."""
    url_hash = hash_url(observation.url)
    dom_hash = quick_hash(dom_structure_signature(observation.dom_tree))
    text_hash = quick_hash(normalize_visible_text(observation.visible_text))
    form_hash = quick_hash(observation.form_state)
    dialog_hash = quick_hash(observation.dialog_state)

    return StateFingerprint(
        combined_hash=quick_hash("|".join([url_hash, dom_hash, form_hash, dialog_hash])),
        url_hash=url_hash,
        dom_structure_hash=dom_hash,
        visible_text_hash=text_hash,
        form_state_hash=form_hash,
        dialog_state_hash=dialog_hash,
        auth_state_id=observation.auth_state or None,
        url=observation.url,
    )


async def _eval_or_default(browser, script: str, default: str, facet: str) -> str:
    try:
        result = await browser.eval(script)
    except Exception as e:
        logger.debug("Fingerprint facet %s failed: %s", facet, e)
        return default
    if result is None:
        return default
    return result if isinstance(result, str) else json.dumps(result)


async def observe_page(browser, url: Optional[str] = None) -> PageObservation:
    """
    Read every fingerprint facet from the current page.

    A failing facet extraction degrades to its empty value; it never aborts
    the observation.
    """
    if url is None:
        url = await browser.get_current_url()

    dom_raw, text, forms, dialogs, auth = await asyncio.gather(
        _eval_or_default(browser, DOM_TREE_SCRIPT, "", "dom"),
        _eval_or_default(browser, VISIBLE_TEXT_SCRIPT, "", "text"),
        _eval_or_default(browser, FORM_STATE_SCRIPT, "{}", "forms"),
        _eval_or_default(browser, DIALOG_STATE_SCRIPT, "[]", "dialogs"),
        _eval_or_default(browser, AUTH_STATE_SCRIPT, "", "auth"),
    )

    dom_tree = None
    if dom_raw:
        try:
            dom_tree = json.loads(dom_raw)
        except json.JSONDecodeError:
            logger.debug("DOM tree was not valid JSON")

    return PageObservation(
        url=url,
        dom_tree=dom_tree,
        visible_text=text,
        form_state=forms,
        dialog_state=dialogs,
        auth_state=auth,
    )


async def capture_fingerprint(browser, url: Optional[str] = None) -> StateFingerprint:
    """Observe the current page and return its fingerprint."""
    return fingerprint_from_observation(await observe_page(browser, url))


def fingerprints_equal(a: StateFingerprint, b: StateFingerprint) -> bool:
    return a.combined_hash == b.combined_hash


def fingerprint_similarity(a: StateFingerprint, b: StateFingerprint) -> float:
    """Fraction of the four identity facets that match (0.0 - 1.0)."""
    matches = sum(
        [
            a.url_hash == b.url_hash,
            a.dom_structure_hash == b.dom_structure_hash,
            a.form_state_hash == b.form_state_hash,
            a.dialog_state_hash == b.dialog_state_hash,
        ]
    )
    return matches / 4


@dataclass
class StateTransition:
    """Recorded move between two states."""

    from_state: StateFingerprint
    to_state: StateFingerprint
    action: Dict[str, Any]
    is_new_state: bool
    timestamp: float = field(default_factory=time.time)


class StateTracker:
    """Tracks visited states, their visit counts and the transitions between them."""

    def __init__(self):
        self._lock = threading.RLock()
        self._states: Dict[str, StateFingerprint] = {}
        self._visit_counts: Dict[str, int] = {}
        self._transitions: List[StateTransition] = []

    def record_state(self, fingerprint: StateFingerprint) -> bool:
        """Record a visit. Returns True if the state was never seen before."""
        with self._lock:
            key = fingerprint.combined_hash
            is_new = key not in self._states
            if is_new:
                self._states[key] = fingerprint
            self._visit_counts[key] = self._visit_counts.get(key, 0) + 1
            return is_new

    def record_transition(
        self,
        from_state: StateFingerprint,
        to_state: StateFingerprint,
        action: Dict[str, Any],
    ) -> StateTransition:
        with self._lock:
            is_new = to_state.combined_hash not in self._states
            self.record_state(to_state)
            transition = StateTransition(from_state, to_state, dict(action), is_new)
            self._transitions.append(transition)
            return transition

    def is_visited(self, fingerprint: StateFingerprint) -> bool:
        with self._lock:
            return fingerprint.combined_hash in self._states

    def get_visit_count(self, fingerprint: StateFingerprint) -> int:
        with self._lock:
            return self._visit_counts.get(fingerprint.combined_hash, 0)

    def get_unique_states(self) -> List[StateFingerprint]:
        with self._lock:
            return list(self._states.values())

    def get_unique_state_count(self) -> int:
        with self._lock:
            return len(self._states)

    def get_history(self) -> Dict[str, Any]:
        """Copies of states, transitions and visit counts."""
        with self._lock:
            return {
                "states": dict(self._states),
                "transitions": list(self._transitions),
                "visit_counts": dict(self._visit_counts),
            }

    def reset(self) -> None:
        with self._lock:
            self._states.clear()
            self._visit_counts.clear()
            self._transitions.clear()
