"""Tool selection heuristics for operator-defined MCP tool catalogs.

Remote MCP servers name their tools freely, so the client picks a tool in
tiers: an explicit preference, then a priority list of known names, then a
sequence of name predicates. Everything here is pure and network-free.
"""

import re
from typing import Callable, Dict, Any, List, Optional, Sequence

from ..utils.constants import (
    DEFAULT_LIST_LIMIT,
    KNOWN_LIST_TOOLS,
    KNOWN_TRANSCRIPT_TOOLS,
)

Matcher = Callable[[str], bool]

_LIST_VERB = re.compile(r"search|list|query|get")


def pick_tool(
    names: Sequence[str],
    priority: Sequence[str],
    matchers: Sequence[Matcher],
    preferred: Optional[str] = None,
) -> Optional[str]:
    """Pick a tool name from ``names``.

    Args:
        names: Tool names exposed by the server.
        priority: Known-good names, tried in order.
        matchers: Predicates over the lowercased name, tried in order.
        preferred: A name requested by the user; wins if present.

    Returns:
        The chosen name, or None if nothing matches.
    """
    if preferred and preferred in names:
        return preferred

    for known in priority:
        if known in names:
            return known

    for matcher in matchers:
        for name in names:
            if matcher(name.lower()):
                return name

    return None


LIST_TOOL_MATCHERS: List[Matcher] = [
    lambda n: "list" in n and ("granola" in n or "meeting" in n),
    lambda n: bool(_LIST_VERB.search(n)) and "meeting" in n,
    lambda n: "meeting" in n and "transcript" not in n and "document" not in n,
]

TRANSCRIPT_TOOL_MATCHERS: List[Matcher] = [
    lambda n: "get" in n and ("granola" in n or ("meeting" in n and "transcript" in n)),
]


def pick_list_tool(names: Sequence[str], preferred: Optional[str] = None) -> Optional[str]:
    """Pick the tool that lists meetings."""
    return pick_tool(names, KNOWN_LIST_TOOLS, LIST_TOOL_MATCHERS, preferred)


def pick_transcript_tool(names: Sequence[str]) -> Optional[str]:
    """Pick the tool that returns a single meeting transcript."""
    return pick_tool(names, KNOWN_TRANSCRIPT_TOOLS, TRANSCRIPT_TOOL_MATCHERS)


def list_tool_candidates(names: Sequence[str]) -> List[str]:
    """All names that any list-tool tier would accept, in catalog order."""
    return [
        name
        for name in names
        if name in KNOWN_LIST_TOOLS or any(m(name.lower()) for m in LIST_TOOL_MATCHERS)
    ]


def list_tool_arguments(tool_name: str, query: Optional[str] = None) -> Dict[str, Any]:
    """Arguments for a list tool call, shaped by the tool's name."""
    if tool_name == "search_meetings":
        return {"query": query or "", "limit": DEFAULT_LIST_LIMIT}
    if tool_name in KNOWN_LIST_TOOLS:
        return {"limit": DEFAULT_LIST_LIMIT}
    return {}


def transcript_tool_arguments(tool_name: str, document_id: str) -> Dict[str, Any]:
    """Arguments for a transcript tool call: meeting tools take ``meeting_id``."""
    if "meeting" in tool_name.lower():
        return {"meeting_id": document_id}
    return {"id": document_id}
