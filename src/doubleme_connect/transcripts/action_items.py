"""Heuristic extraction of action items from meeting transcripts and summaries.

Works purely on line-level punctuation conventions (bullets, checkboxes,
numbered lists, "TODO:" prefixes). It knows nothing about meeting structure,
so expect both misses and false positives.
"""

import re
from typing import Iterable, List

from ..utils.constants import (
    ACTION_ITEM_LIMIT,
    ACTION_ITEM_MAX_LENGTH,
    ACTION_ITEM_MIN_LENGTH,
)

_BULLET = re.compile(r"^[-*•]\s*")
_CHECKBOX = re.compile(r"^\[\s*\]\s*")
_NUMBERED = re.compile(r"^\d+\.\s*")
_LABELLED = re.compile(r"^(?:action|todo|task):\s*(.+)$", re.IGNORECASE)

_HEADING = re.compile(r"^(#{1,6}\s+|\*\*)(.+?)(\*\*)?:?\s*$")
_ACTION_HEADING = re.compile(r"action items?|next steps|to-?dos?|follow[- ]ups?", re.IGNORECASE)
_LIST_ITEM = re.compile(r"^([-*•]|\d+\.)\s+")


def _strip_markers(line: str) -> str:
    line = _BULLET.sub("", line)
    line = _CHECKBOX.sub("", line)
    line = _NUMBERED.sub("", line)
    return line


def _finalize(candidates: Iterable[str]) -> List[str]:
    """Length filter, de-duplicate in insertion order, and cap."""
    items: List[str] = []
    seen = set()
    for candidate in candidates:
        if not ACTION_ITEM_MIN_LENGTH <= len(candidate) <= ACTION_ITEM_MAX_LENGTH:
            continue
        if candidate in seen:
            continue
        seen.add(candidate)
        items.append(candidate)
        if len(items) >= ACTION_ITEM_LIMIT:
            break
    return items


def _action_from_line(line: str) -> str:
    stripped = _strip_markers(line.strip()).strip()
    labelled = _LABELLED.match(stripped)
    return labelled.group(1).strip() if labelled else stripped


def parse_action_items(content: str) -> List[str]:
    """Extract action-item-like lines from markdown or plain text.

    Every non-blank line is a candidate after stripping one bullet,
    checkbox and numbered-list marker; "Action:", "TODO:" and "Task:"
    prefixes are removed.
    """
    return _finalize(
        _action_from_line(line) for line in content.splitlines() if line.strip()
    )


def parse_action_items_from_summary(markdown: str) -> List[str]:
    """Extract list items found under an action-item heading of a summary.

    Headings are markdown ``#`` headings or bold-only lines; a section ends
    at the next heading.
    """

    def candidates() -> Iterable[str]:
        in_section = False
        for raw in markdown.splitlines():
            line = raw.strip()
            if not line:
                continue
            heading = _HEADING.match(line)
            if heading and not _LIST_ITEM.match(line):
                in_section = bool(_ACTION_HEADING.search(heading.group(2)))
                continue
            if in_section and (_LIST_ITEM.match(line) or _CHECKBOX.match(line)):
                yield _action_from_line(line)

    return _finalize(candidates())
