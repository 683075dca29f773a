"""Google Calendar MCP tools."""

from typing import List, Optional

from .main import mcp
from .. import actions
from ..core.context import get_current_user_id
from ..utils.errors import format_error


@mcp.tool()
def connect_google_calendar(return_path: Optional[str] = None) -> str:
    """
    Start connecting the user's Google Calendar.

    Args:
        return_path: App path to return to after sign-in (e.g. "/projects/42").

    Returns:
        The Google sign-in URL, or an error message.
    """
    result = actions.get_google_calendar_connect_url(get_current_user_id(), return_path)
    if not result.ok:
        return f"**Error:** {result.error}"
    return (
        "Open this URL in your browser to connect Google Calendar:\n\n"
        f"{result.value}\n\n"
        "After approving access you will be redirected back to the app."
    )


@mcp.tool()
def google_calendar_status() -> str:
    """Check whether the user's Google Calendar is connected."""
    result = actions.get_google_calendar_connected(get_current_user_id())
    if not result.ok:
        return f"**Error:** {result.error}"
    if result.value:
        return "Google Calendar is connected."
    return "Google Calendar is not connected."


@mcp.tool()
def disconnect_google_calendar() -> str:
    """Disconnect the user's Google Calendar by deleting the stored token."""
    result = actions.disconnect_google_calendar(get_current_user_id())
    if not result.ok:
        return format_error("Disconnect", result.error)
    return "Google Calendar disconnected."


@mcp.tool()
def create_calendar_meeting(
    title: str,
    start: str,
    end: str,
    description: Optional[str] = None,
    attendees: Optional[List[str]] = None,
    timezone: Optional[str] = None,
) -> str:
    """
    Create a meeting in the user's primary Google Calendar.

    Args:
        title: Event title.
        start: Start time in ISO 8601 (e.g. "2026-03-02T10:00:00+01:00").
        end: End time in ISO 8601.
        description: Optional event description.
        attendees: Optional list of attendee email addresses; they are invited.
        timezone: Optional IANA time zone (e.g. "Europe/Berlin").

    Returns:
        Confirmation with the event link, or an error message.
    """
    result = actions.create_google_calendar_meeting(
        get_current_user_id(),
        title,
        start,
        end,
        description=description,
        attendees=attendees,
        timezone=timezone,
    )
    if not result.ok:
        return format_error("Create meeting", result.error)

    event = result.value
    lines = [f"Created '{title.strip()}' (ID: {event.id})"]
    if event.html_link:
        lines.append(f"Link: {event.html_link}")
    if event.meet_link:
        lines.append(f"Meet: {event.meet_link}")
    return "\n".join(lines)
