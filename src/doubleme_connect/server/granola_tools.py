"""Granola MCP tools."""

from typing import Optional

from .main import mcp
from .. import actions
from ..core.context import get_current_user_id
from ..utils.errors import format_error


@mcp.tool()
def connect_granola(return_path: Optional[str] = None) -> str:
    """
    Start connecting the user's Granola account.

    Args:
        return_path: App path to return to after sign-in (e.g. "/projects/42").

    Returns:
        The sign-in URL to open in a browser, or an error message.
    """
    result = actions.get_granola_connect_url(get_current_user_id(), return_path)
    if not result.ok:
        return f"**Error:** {result.error}"
    return (
        "Open this URL in your browser to connect Granola:\n\n"
        f"{result.value}\n\n"
        "After approving access you will be redirected back to the app."
    )


@mcp.tool()
def granola_status() -> str:
    """Check whether the user's Granola account is connected."""
    result = actions.get_granola_connected(get_current_user_id())
    if not result.ok:
        return f"**Error:** {result.error}"
    return "Granola is connected." if result.value else "Granola is not connected."


@mcp.tool()
def reset_granola() -> str:
    """
    Reset the Granola connection.

    Clears the registered OAuth client and the user's token, so the next
    connect starts from scratch. Use when connecting keeps failing.
    """
    result = actions.reset_granola_connection(get_current_user_id())
    if not result.ok:
        return format_error("Reset", result.error)
    return "Granola connection reset. Connect again to continue."


@mcp.tool()
def list_granola_tools() -> str:
    """List the tools the Granola MCP server exposes, marking candidate list tools."""
    result = actions.list_granola_tools(get_current_user_id())
    if not result.ok:
        return format_error("List tools", result.error)

    catalog = result.value
    if not catalog.all_tools:
        return "The Granola MCP server exposes no tools."

    lines = []
    for name in catalog.all_tools:
        marker = ""
        if name == catalog.default_list_tool:
            marker = " (default list tool)"
        elif name in catalog.list_tools:
            marker = " (list tool)"
        lines.append(f"- {name}{marker}")
    return "\n".join(lines)


@mcp.tool()
def list_granola_meetings(
    query: Optional[str] = None, list_tool: Optional[str] = None
) -> str:
    """
    List meetings from Granola.

    Args:
        query: Optional search text (used by servers with a search tool).
        list_tool: Optional name of the remote tool to list with.

    Returns:
        One line per meeting with its ID, title and date.
    """
    result = actions.list_granola_documents(get_current_user_id(), list_tool, query)
    if not result.ok:
        return format_error("List meetings", result.error)
    if not result.value:
        return "No meetings found."

    output = []
    for doc in result.value:
        line = f"[{doc.id}] {doc.title or 'Untitled'}"
        if doc.created_at:
            line += f" ({doc.created_at})"
        output.append(line)
    return "\n".join(output)


@mcp.tool()
def get_granola_transcript(meeting_id: str) -> str:
    """
    Get the transcript of a Granola meeting.

    Args:
        meeting_id: The meeting ID from list_granola_meetings.
    """
    result = actions.get_granola_transcript(get_current_user_id(), meeting_id)
    if not result.ok:
        return format_error("Get transcript", result.error)
    transcript = result.value
    return f"# {transcript.title}\n\n{transcript.content}"


@mcp.tool()
def extract_action_items(
    meeting_id: Optional[str] = None, summary: Optional[str] = None
) -> str:
    """
    Extract action items from a meeting.

    Args:
        meeting_id: Meeting whose transcript to scan.
        summary: Markdown summary to scan instead; its "Action items" or
            "Next steps" section is used.
    """
    if not meeting_id and not summary:
        return "**Error:** Provide a meeting_id or a summary."

    result = actions.extract_granola_action_items(get_current_user_id(), meeting_id, summary)
    if not result.ok:
        return format_error("Extract action items", result.error)
    if not result.value:
        return "No action items found."
    return "\n".join(f"- [ ] {item}" for item in result.value)
