"""
Exploration graph for uiScout.

Nodes are unique page states (keyed by fingerprint combined hash); edges are
the actions available from a state. Each edge carries its own status so the
explorer always knows what remains to be tried at a node:

    pending -> explored      (action ran)
    pending -> failed        (action failed past the retry ceiling)
    pending -> skipped       (deliberately not taken)

A node's exploration status is derived from its edges and is never set
directly: no edges or no pending edges means *exhausted*, pending edges with
nothing attempted yet means *unexplored*, anything else is *partial*.

The graph is safe to share between concurrent exploration units; ``merge_node``
performs the check-then-insert for a revisited state under one lock.
"""

import hashlib
import json
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .scoring import ActionType, ElementInfo


class NodeStatus(Enum):
    UNEXPLORED = "unexplored"
    PARTIAL = "partial"
    EXHAUSTED = "exhausted"


class EdgeStatus(Enum):
    PENDING = "pending"
    EXPLORED = "explored"
    FAILED = "failed"
    SKIPPED = "skipped"


def generate_edge_id(source_node_id: str, selector: str, action_type: ActionType) -> str:
    """Deterministic edge id for (source, type, selector)."""
    combined = f"{source_node_id}:{action_type.value}:{selector}"
    return "e_" + hashlib.sha256(combined.encode("utf-8")).hexdigest()[:12]


@dataclass
class EdgeAction:
    """The action an edge performs."""

    type: ActionType
    selector: str
    element: ElementInfo
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "selector": self.selector,
            "value": self.value,
            "element": self.element.to_dict(),
        }


@dataclass
class GraphEdge:
    id: str
    source_node_id: str
    action: EdgeAction
    status: EdgeStatus = EdgeStatus.PENDING
    target_node_id: Optional[str] = None
    attempt_count: int = 0
    last_error: Optional[str] = None
    llm_priority: Optional[int] = None
    llm_rationale: Optional[str] = None
    interaction_hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceNodeId": self.source_node_id,
            "targetNodeId": self.target_node_id,
            "action": self.action.to_dict(),
            "status": self.status.value,
            "attemptCount": self.attempt_count,
            "lastError": self.last_error,
            "llmPriority": self.llm_priority,
            "llmRationale": self.llm_rationale,
            "interactionHint": self.interaction_hint,
        }


@dataclass
class NodeMetadata:
    has_search_box: bool = False
    has_forms: bool = False
    is_main_entry_point: bool = False
    interactive_element_count: int = 0


@dataclass
class GraphNode:
    id: str
    url: str
    title: str = ""
    fingerprint: Any = None  # StateFingerprint
    dom_summary: str = ""
    actions: List[GraphEdge] = field(default_factory=list)
    status: NodeStatus = NodeStatus.EXHAUSTED
    depth: int = 0
    visit_count: int = 1
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    first_visited_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint is not None else None,
            "domSummary": self.dom_summary,
            "actions": [edge.to_dict() for edge in self.actions],
            "status": self.status.value,
            "depth": self.depth,
            "visitCount": self.visit_count,
            "metadata": asdict(self.metadata),
            "firstVisitedAt": self.first_visited_at,
        }


@dataclass
class GraphStats:
    total_nodes: int = 0
    explored_nodes: int = 0
    partial_nodes: int = 0
    unexplored_nodes: int = 0
    total_edges: int = 0
    explored_edges: int = 0
    pending_edges: int = 0
    failed_edges: int = 0
    max_depth: int = 0
    avg_edges_per_node: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StackFrame:
    """One level of the DFS: a node and the way back to it."""

    node_id: str
    depth: int
    return_action: Any  # Callable[[], Awaitable[None]]
    path: List[Tuple[ActionType, str, Optional[str]]] = field(default_factory=list)


def calculate_exploration_status(edges: List[GraphEdge]) -> NodeStatus:
    if not edges:
        return NodeStatus.EXHAUSTED
    pending = sum(1 for e in edges if e.status == EdgeStatus.PENDING)
    attempted = sum(1 for e in edges if e.status in (EdgeStatus.EXPLORED, EdgeStatus.FAILED))
    if pending == 0:
        return NodeStatus.EXHAUSTED
    if attempted == 0:
        return NodeStatus.UNEXPLORED
    return NodeStatus.PARTIAL


class ExplorationGraph:
    """State graph shared by all exploration units of a run."""

    def __init__(self):
        self._lock = threading.RLock()
        self._nodes: Dict[str, GraphNode] = {}
        self._max_depth = 0

    def _refresh(self, node: GraphNode) -> None:
        node.status = calculate_exploration_status(node.actions)

    def add_node(self, node: GraphNode) -> bool:
        """Insert ``node`` unless its id exists. Returns True if inserted."""
        with self._lock:
            if node.id in self._nodes:
                return False
            self._refresh(node)
            self._nodes[node.id] = node
            self._max_depth = max(self._max_depth, node.depth)
            return True

    def merge_node(self, node: GraphNode) -> Tuple[GraphNode, bool]:
        """
        Insert a newly observed node, or merge it into the existing one.

        On a revisit the stored node's visit count is incremented and any
        edges it did not know about are appended. Returns (stored node,
        created).
        """
        with self._lock:
            existing = self._nodes.get(node.id)
            if existing is None:
                self.add_node(node)
                return node, True
            existing.visit_count += 1
            known = {edge.id for edge in existing.actions}
            for edge in node.actions:
                if edge.id not in known:
                    existing.actions.append(edge)
            self._refresh(existing)
            return existing, False

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        with self._lock:
            return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._nodes

    def update_node(self, node_id: str, **updates) -> None:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return
            for key, value in updates.items():
                setattr(node, key, value)
            self._refresh(node)

    def mark_exhausted(self, node_id: str) -> None:
        """Skip every remaining pending edge so the node reads as exhausted."""
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return
            for edge in node.actions:
                if edge.status == EdgeStatus.PENDING:
                    edge.status = EdgeStatus.SKIPPED
            self._refresh(node)

    def add_edge(self, node_id: str, edge: GraphEdge) -> bool:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None or any(e.id == edge.id for e in node.actions):
                return False
            node.actions.append(edge)
            self._refresh(node)
            return True

    def get_edge(self, node_id: str, edge_id: str) -> Optional[GraphEdge]:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return None
            return next((e for e in node.actions if e.id == edge_id), None)

    def update_edge(self, node_id: str, edge_id: str, **updates) -> None:
        with self._lock:
            edge = self.get_edge(node_id, edge_id)
            if edge is None:
                return
            for key, value in updates.items():
                setattr(edge, key, value)
            self._refresh(self._nodes[node_id])

    def get_pending_edges(self, node_id: str, max_attempts: Optional[int] = None) -> List[GraphEdge]:
        """Pending edges of a node, optionally only those under the retry ceiling."""
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return []
            return [
                e
                for e in node.actions
                if e.status == EdgeStatus.PENDING and (max_attempts is None or e.attempt_count < max_attempts)
            ]

    def record_depth(self, depth: int) -> None:
        with self._lock:
            self._max_depth = max(self._max_depth, depth)

    def get_stats(self) -> GraphStats:
        with self._lock:
            nodes = list(self._nodes.values())
            edges = [e for n in nodes for e in n.actions]
            return GraphStats(
                total_nodes=len(nodes),
                explored_nodes=sum(1 for n in nodes if n.status == NodeStatus.EXHAUSTED),
                partial_nodes=sum(1 for n in nodes if n.status == NodeStatus.PARTIAL),
                unexplored_nodes=sum(1 for n in nodes if n.status == NodeStatus.UNEXPLORED),
                total_edges=len(edges),
                explored_edges=sum(1 for e in edges if e.status == EdgeStatus.EXPLORED),
                pending_edges=sum(1 for e in edges if e.status == EdgeStatus.PENDING),
                failed_edges=sum(1 for e in edges if e.status == EdgeStatus.FAILED),
                max_depth=self._max_depth,
                avg_edges_per_node=len(edges) / len(nodes) if nodes else 0.0,
            )

    def get_all_nodes(self) -> List[GraphNode]:
        with self._lock:
            return list(self._nodes.values())

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._max_depth = 0

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "nodes": [node.to_dict() for node in self._nodes.values()],
                "stats": self.get_stats().to_dict(),
            }

    def save(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


# In-page scripts used to describe a node

DOM_SUMMARY_SCRIPT = """
(function() {
  const MAX_ELEMENTS = 50;
  function summarize(el) {
    const tag = el.tagName.toLowerCase();
    const text = (el.textContent || '').trim().slice(0, 100);
    const role = el.getAttribute('role') || '';
    const href = el.getAttribute('href') || '';
    const type = el.getAttribute('type') || '';
    let out = tag;
    if (role) out += '[role=' + role + ']';
    if (type && (tag === 'input' || tag === 'button')) out += '[type=' + type + ']';
    if (href && tag === 'a') {
      let path = href;
      try { if (href.startsWith('http')) path = new URL(href).pathname; } catch (e) {}
      out += '[href=' + path.slice(0, 50) + ']';
    }
    const label = el.getAttribute('aria-label') || el.getAttribute('placeholder') || text;
    if (label) out += ': "' + label.slice(0, 50) + '"';
    return out;
  }
  const selectors = [
    'nav a', 'header a', 'footer a', 'button', 'input', 'select', 'textarea',
    '[role="button"]', '[role="link"]', '[role="tab"]', 'form', 'h1', 'h2', 'h3',
    '[class*="search"]', '[class*="login"]', '[class*="signup"]'
  ];
  const lines = [];
  const seen = new Set();
  for (const selector of selectors) {
    for (const el of document.querySelectorAll(selector)) {
      if (lines.length >= MAX_ELEMENTS) break;
      const style = window.getComputedStyle(el);
      if (style.display === 'none' || style.visibility === 'hidden') continue;
      const rect = el.getBoundingClientRect();
      if (rect.width === 0 || rect.height === 0) continue;
      const line = summarize(el);
      if (!seen.has(line)) { seen.add(line); lines.push(line); }
    }
    if (lines.length >= MAX_ELEMENTS) break;
  }
  return lines.join('\\n');
})()
"""

DETECT_SEARCH_SCRIPT = """
(function() {
  const selectors = [
    'input[type="search"]', 'input[name*="search"]', 'input[placeholder*="search" i]',
    'input[aria-label*="search" i]', '[role="searchbox"]', 'input[class*="search" i]',
    'input[id*="search" i]'
  ];
  return selectors.some(sel => {
    const el = document.querySelector(sel);
    if (!el) return false;
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden';
  });
})()
"""

HAS_VISIBLE_FORMS_SCRIPT = """
(function() {
  return Array.from(document.querySelectorAll('form')).some(form => {
    const style = window.getComputedStyle(form);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    const rect = form.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  });
})()
"""

GET_TITLE_SCRIPT = "document.title || ''"

COUNT_INTERACTIVE_SCRIPT = """
(function() {
  const seen = new Set();
  for (const el of document.querySelectorAll(
      'a[href], button, input, select, textarea, [role="button"], [role="link"], [onclick]')) {
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') continue;
    const rect = el.getBoundingClientRect();
    if (rect.width > 0 && rect.height > 0) seen.add(el);
  }
  return seen.size;
})()
"""
