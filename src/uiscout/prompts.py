"""
Prompt templates for AI-guided exploration.

Two request families: choosing which action to take next at a page state,
and generating a realistic value for an input. All prompts ask for a single
JSON object.
"""

from typing import List
from urllib.parse import urljoin, urlparse

from .graph import GraphEdge, GraphNode
from .interactions import InteractionType, SmartInteractionRequest

ACTION_SELECTION_SYSTEM_PROMPT = """You are an expert web testing agent that explores websites systematically to maximize coverage.
Your goal is to discover all pages, test all interactive elements, and identify potential issues.
You make strategic decisions about which actions to prioritize based on their potential to discover new functionality.
Always respond with valid JSON matching the specified format."""

SMART_INTERACTION_SYSTEM_PROMPT = """You are an expert web testing agent generating realistic test data for form fields and search boxes.
Generate appropriate, realistic values that would effectively test the functionality.
Always respond with valid JSON matching the specified format."""

DECISION_FORMAT = """Respond with valid JSON in this exact format:
{
  "decisions": [
    {
      "actionId": "<edge_id>",
      "priority": <1-10>,
      "rationale": "<brief reason>",
      "interactionHint": "<optional: value for search/form fields>"
    }
  ],
  "branchExhausted": <true if no valuable actions remain>,
  "exhaustedReason": "<optional: why branch is exhausted>",
  "observations": "<optional: any notable observations about the page>"
}"""


def _href_path(href: str) -> str:
    try:
        return urlparse(urljoin("http://example.com", href)).path or "/"
    except ValueError:
        return href


def format_edges(edges: List[GraphEdge], max_edges: int = 15) -> str:
    lines = []
    for i, edge in enumerate(edges[:max_edges], start=1):
        action = edge.action
        element = action.element
        label = (element.text or element.aria_label or element.placeholder or action.selector)[:60]
        href = f" -> {_href_path(element.href)}" if element.href else ""
        kind = f" ({element.type})" if element.type else ""
        lines.append(f'  {i}. [{edge.id}] {action.type.value.upper()} {element.tag_name}{kind}: "{label}"{href}')
    if len(edges) > max_edges:
        lines.append(f"  ... and {len(edges) - max_edges} more actions")
    return "\n".join(lines)


def format_history(history) -> str:  # List[HistoryEntry]
    if not history:
        return "  (No recent history)"
    return "\n".join(
        f"  {i}. {entry.action} on {entry.url} [{'NEW' if entry.new_state else 'same'}]"
        for i, entry in enumerate(history[-5:], start=1)
    )


def format_coverage(coverage) -> str:  # CoverageContext
    return "\n".join(
        [
            f"  URLs visited: {coverage.url_count}",
            f"  Forms interacted: {coverage.form_count}",
            f"  Searches performed: {coverage.search_count}",
            f"  Total steps: {coverage.total_steps}",
            f"  Current depth: {coverage.current_depth}",
        ]
    )


def _page_header(node: GraphNode) -> str:
    return "\n".join(
        [
            "CURRENT PAGE:",
            f"  URL: {node.url}",
            f"  Title: {node.title}",
            f"  Has Search Box: {node.metadata.has_search_box}",
            f"  Has Forms: {node.metadata.has_forms}",
            f"  Interactive Elements: {node.metadata.interactive_element_count}",
        ]
    )


def build_action_selection_prompt(
    node: GraphNode,
    pending_edges: List[GraphEdge],
    explored_edges: List[GraphEdge],
    coverage,  # CoverageContext
    history,  # List[HistoryEntry]
) -> str:
    explored = format_edges(explored_edges, 5) if explored_edges else "  (None yet)"
    return f"""You are exploring a website to discover all pages and test all interactive elements.

{_page_header(node)}

PAGE ELEMENTS SUMMARY:
{node.dom_summary}

AVAILABLE UNEXPLORED ACTIONS ({len(pending_edges)}):
{format_edges(pending_edges)}

ALREADY EXPLORED FROM THIS PAGE ({len(explored_edges)}):
{explored}

RECENT EXPLORATION HISTORY:
{format_history(history)}

COVERAGE STATS:
{format_coverage(coverage)}

TASK: Prioritize the available actions. Consider:
1. Actions leading to NEW pages (high priority) - especially navigation links
2. Search boxes and forms (high priority) - need smart input values
3. Main navigation menu items (medium priority)
4. Buttons that might open modals or trigger state changes (medium priority)
5. External links or already-visited URLs (low priority - can skip)
6. Disabled elements (skip)

For search boxes and form inputs, provide an "interactionHint" with a realistic test value.

{DECISION_FORMAT}

Order decisions by priority (highest first). Include at least the top 5 actions if available."""


def build_compact_action_selection_prompt(
    node: GraphNode,
    candidates: List[GraphEdge],
    heuristic_reason: str,
    coverage,  # CoverageContext
    history=None,  # Optional[List[HistoryEntry]]
) -> str:
    """Shorter prompt over the pre-ranked top candidates only."""
    return f"""A rule-based ranker could not pick a clear winner on this page ({heuristic_reason}).
Choose among its top candidates.

{_page_header(node)}

PAGE ELEMENTS SUMMARY:
{node.dom_summary[:500]}

TOP CANDIDATES ({len(candidates)}):
{format_edges(candidates)}

RECENT EXPLORATION HISTORY:
{format_history(history)}

COVERAGE STATS:
{format_coverage(coverage)}

Prefer actions that reach new pages, forms or dialogs. Give an "interactionHint" for inputs.

{DECISION_FORMAT}"""


def _interaction_header(request: SmartInteractionRequest, include_placeholder: bool = True) -> str:
    lines = [
        f"PAGE: {request.url}",
        f'ELEMENT: {request.element_type} with selector "{request.selector}"',
    ]
    if include_placeholder:
        lines.append(f"PLACEHOLDER: {request.placeholder or '(none)'}")
    lines.append(f"ARIA-LABEL: {request.aria_label or '(none)'}")
    lines.append("")
    lines.append("PAGE CONTEXT:")
    lines.append(request.dom_summary[:500])
    return "\n".join(lines)


def build_search_interaction_prompt(request: SmartInteractionRequest) -> str:
    return f"""You are testing a website's search functionality.

{_interaction_header(request)}

Generate a realistic search query that would:
1. Test the search functionality
2. Be relevant to the apparent website content
3. Potentially return meaningful results

Respond with valid JSON:
{{
  "value": "<search query>",
  "waitForMs": <time to wait for results, typically 1500-3000>,
  "expectation": "<what should happen after search>",
  "pressEnterAfter": <true/false>
}}"""


def build_form_interaction_prompt(request: SmartInteractionRequest) -> str:
    return f"""You are testing a website form.

{_interaction_header(request)}

Generate an appropriate test value for this form field. Consider:
- The field placeholder and label hints
- Common field types (email, password, name, phone, etc.)
- Use realistic but fake test data

Respond with valid JSON:
{{
  "value": "<appropriate test value>",
  "waitForMs": <time to wait after input, typically 300-500>,
  "expectation": "<what might happen after filling this field>",
  "pressEnterAfter": false
}}"""


def build_filter_interaction_prompt(request: SmartInteractionRequest) -> str:
    return f"""You are testing a website's filter or dropdown functionality.

{_interaction_header(request, include_placeholder=False)}

Suggest how to interact with this filter/dropdown to test it effectively.

Respond with valid JSON:
{{
  "value": "<value to select or action to take>",
  "waitForMs": <time to wait for results, typically 1000-2000>,
  "expectation": "<what should happen after interaction>",
  "pressEnterAfter": false
}}"""


def build_smart_interaction_prompt(request: SmartInteractionRequest) -> str:
    if request.type == InteractionType.SEARCH:
        return build_search_interaction_prompt(request)
    if request.type == InteractionType.FILTER:
        return build_filter_interaction_prompt(request)
    return build_form_interaction_prompt(request)
