"""
Host-facing operations for DoubleMe Connect.

Every operation takes the signed-in user's ID (None when nobody is signed in)
and returns an ActionResult instead of raising, so a UI can show
``result.error`` directly.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Union

from .auth.google_calendar_oauth import get_google_calendar_oauth_client
from .auth.granola_oauth import get_granola_oauth_client
from .auth.oauth_config import get_oauth_config
from .auth.pending_store import is_safe_return_path
from .calendar.events import CreatedEvent, create_calendar_event
from .mcp.client import GranolaDocument, McpClient, ToolCatalog, Transcript
from .transcripts.action_items import (
    parse_action_items,
    parse_action_items_from_summary,
)
from .utils.errors import ConnectError

logger = logging.getLogger(__name__)

NOT_SIGNED_IN = "Not signed in."


@dataclass
class ActionResult:
    """Tagged success/failure result of a host-facing operation."""

    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "ActionResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "ActionResult":
        return cls(ok=False, error=error)


def _sanitize_return_path(return_path: Optional[str]) -> Optional[str]:
    if return_path and not is_safe_return_path(return_path):
        logger.warning(f"Ignoring unsafe return path: {return_path!r}")
        return None
    return return_path


def _unexpected(action: str, user_id: str, error: Exception) -> ActionResult:
    logger.exception(f"{action} failed for {user_id}")
    return ActionResult.failure(
        f"{action} failed: Unexpected error ({type(error).__name__}: {error})"
    )


def granola_mcp_client_for(user_id: str) -> McpClient:
    """MCP client authorized with the user's Granola token, else GRANOLA_API_TOKEN."""
    config = get_oauth_config()
    token = get_granola_oauth_client().get_access_token(user_id) or config.granola_api_token
    return McpClient(config.granola_mcp_url, token=token, timeout=config.http_timeout)


# Granola


def get_granola_connect_url(
    user_id: Optional[str], return_path: Optional[str] = None
) -> ActionResult:
    """Start the Granola OAuth flow; the value is the authorize URL."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        url = get_granola_oauth_client().start_connect(
            user_id, _sanitize_return_path(return_path)
        )
    except ConnectError as e:
        logger.error(f"Granola connect failed for {user_id}: {e}")
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("Connect Granola", user_id, e)
    return ActionResult.success(url)


def get_granola_connected(user_id: Optional[str]) -> ActionResult:
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        connected = get_granola_oauth_client().is_connected(user_id)
    except Exception as e:
        return _unexpected("Granola status", user_id, e)
    return ActionResult.success(connected)


def reset_granola_connection(user_id: Optional[str]) -> ActionResult:
    """Forget the Granola client registration and the user's token."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        get_granola_oauth_client().reset_connection(user_id)
    except ConnectError as e:
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("Reset Granola", user_id, e)
    return ActionResult.success()


def list_granola_tools(user_id: Optional[str]) -> ActionResult:
    """Describe the Granola MCP tool catalog; the value is a ToolCatalog."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        with granola_mcp_client_for(user_id) as client:
            catalog: ToolCatalog = client.describe_tools()
    except ConnectError as e:
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("List tools", user_id, e)
    return ActionResult.success(catalog)


def list_granola_documents(
    user_id: Optional[str],
    preferred_tool: Optional[str] = None,
    query: Optional[str] = None,
) -> ActionResult:
    """List Granola meetings; the value is a list of GranolaDocument."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        with granola_mcp_client_for(user_id) as client:
            documents: List[GranolaDocument] = client.list_documents(preferred_tool, query)
    except ConnectError as e:
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("List meetings", user_id, e)
    return ActionResult.success(documents)


def get_granola_transcript(user_id: Optional[str], document_id: str) -> ActionResult:
    """Fetch one transcript; the value is a Transcript."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    if not document_id:
        return ActionResult.failure("A meeting ID is required.")
    try:
        with granola_mcp_client_for(user_id) as client:
            transcript: Transcript = client.get_transcript(document_id)
    except ConnectError as e:
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("Get transcript", user_id, e)
    return ActionResult.success(transcript)


def extract_granola_action_items(
    user_id: Optional[str],
    document_id: Optional[str] = None,
    summary: Optional[str] = None,
) -> ActionResult:
    """
    Extract action items; the value is a list of strings.

    With ``summary`` the items come from its action-item section and no
    transcript is fetched. Otherwise the transcript of ``document_id`` is
    parsed line by line.
    """
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    if summary:
        return ActionResult.success(parse_action_items_from_summary(summary))

    result = get_granola_transcript(user_id, document_id or "")
    if not result.ok:
        return result
    return ActionResult.success(parse_action_items(result.value.content))


# Google Calendar


def get_google_calendar_connect_url(
    user_id: Optional[str], return_path: Optional[str] = None
) -> ActionResult:
    """Start the Google Calendar OAuth flow; the value is the authorize URL."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        url = get_google_calendar_oauth_client().start_connect(
            user_id, _sanitize_return_path(return_path)
        )
    except ConnectError as e:
        logger.error(f"Google Calendar connect failed for {user_id}: {e}")
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("Connect Google Calendar", user_id, e)
    return ActionResult.success(url)


def get_google_calendar_connected(user_id: Optional[str]) -> ActionResult:
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        connected = get_google_calendar_oauth_client().is_connected(user_id)
    except Exception as e:
        return _unexpected("Google Calendar status", user_id, e)
    return ActionResult.success(connected)


def disconnect_google_calendar(user_id: Optional[str]) -> ActionResult:
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    try:
        get_google_calendar_oauth_client().disconnect(user_id)
    except ConnectError as e:
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("Disconnect Google Calendar", user_id, e)
    return ActionResult.success()


def _parse_time(value: Union[str, datetime], label: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid {label} time {value!r}; use ISO 8601") from e


def create_google_calendar_meeting(
    user_id: Optional[str],
    title: str,
    start: Union[str, datetime],
    end: Union[str, datetime],
    description: Optional[str] = None,
    attendees: Optional[List[str]] = None,
    timezone: Optional[str] = None,
) -> ActionResult:
    """Create an event in the user's primary calendar; the value is a CreatedEvent."""
    if not user_id:
        return ActionResult.failure(NOT_SIGNED_IN)
    if not title or not title.strip():
        return ActionResult.failure("A meeting title is required.")
    try:
        event: CreatedEvent = create_calendar_event(
            user_id,
            title,
            _parse_time(start, "start"),
            _parse_time(end, "end"),
            description=description,
            attendees=attendees,
            timezone=timezone,
        )
    except (ValueError, ConnectError) as e:
        return ActionResult.failure(str(e))
    except Exception as e:
        return _unexpected("Create meeting", user_id, e)
    return ActionResult.success(event)
