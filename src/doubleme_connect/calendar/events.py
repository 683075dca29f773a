"""Google Calendar event creation using a user's connected account."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..auth.google_calendar_oauth import (
    GoogleCalendarOAuthClient,
    get_google_calendar_oauth_client,
)
from ..utils.constants import PROVIDER_GOOGLE_CALENDAR
from ..utils.errors import ConnectError

logger = logging.getLogger(__name__)


class CalendarNotConnectedError(ConnectError):
    """Raised when the user has no usable Google Calendar token."""

    def __init__(self) -> None:
        super().__init__(
            "Google Calendar is not connected. Connect it in project settings.",
            PROVIDER_GOOGLE_CALENDAR,
        )


@dataclass
class CreatedEvent:
    id: str
    html_link: Optional[str] = None
    meet_link: Optional[str] = None


def handle_http_error(error: HttpError) -> ConnectError:
    """Convert a googleapiclient HttpError to a ConnectError.

    Args:
        error: The HttpError from googleapiclient.

    Returns:
        A ConnectError with an actionable message.
    """
    try:
        status = error.resp.status
    except AttributeError:
        return ConnectError(f"Google Calendar error: {error}", PROVIDER_GOOGLE_CALENDAR)

    if status == 401:
        message = "Google Calendar rejected the token. Reconnect Google Calendar."
    elif status == 403:
        message = "Access to Google Calendar was denied. Reconnect and grant calendar access."
    elif status == 429:
        message = "Google Calendar quota exceeded. Please wait a moment and try again."
    else:
        message = f"Google Calendar error (HTTP {status}): {error}"
    return ConnectError(message, PROVIDER_GOOGLE_CALENDAR)


def build_event_body(
    title: str,
    start: datetime,
    end: datetime,
    description: Optional[str] = None,
    attendees: Optional[List[str]] = None,
    timezone: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a Calendar v3 event resource."""
    if end <= start:
        raise ValueError("Event end must be after its start")

    def when(moment: datetime) -> Dict[str, str]:
        value = {"dateTime": moment.isoformat()}
        if timezone:
            value["timeZone"] = timezone
        return value

    body: Dict[str, Any] = {
        "summary": title.strip(),
        "start": when(start),
        "end": when(end),
    }
    if description:
        body["description"] = description
    if attendees:
        body["attendees"] = [{"email": email.strip()} for email in attendees if email.strip()]
    return body


def create_calendar_event(
    user_id: str,
    title: str,
    start: datetime,
    end: datetime,
    description: Optional[str] = None,
    attendees: Optional[List[str]] = None,
    timezone: Optional[str] = None,
    oauth_client: Optional[GoogleCalendarOAuthClient] = None,
) -> CreatedEvent:
    """
    Insert an event into the user's primary Google Calendar.

    Raises:
        CalendarNotConnectedError: If no usable access token is available.
        ConnectError: If the Calendar API rejects the request.
        ValueError: If the event times are invalid.
    """
    oauth_client = oauth_client or get_google_calendar_oauth_client()
    access_token = oauth_client.get_access_token(user_id)
    if not access_token:
        raise CalendarNotConnectedError()

    body = build_event_body(title, start, end, description, attendees, timezone)
    service = build(
        "calendar",
        "v3",
        credentials=Credentials(token=access_token),
        cache_discovery=False,
    )
    try:
        event = (
            service.events()
            .insert(calendarId="primary", body=body, sendUpdates="all")
            .execute()
        )
    except HttpError as e:
        raise handle_http_error(e) from e

    logger.info(f"Created Google Calendar event {event.get('id')} for {user_id}")
    return CreatedEvent(
        id=event.get("id", ""),
        html_link=event.get("htmlLink"),
        meet_link=event.get("hangoutLink"),
    )
