"""
OAuth Scopes for DoubleMe Connect.

This module defines the scopes requested from Google Calendar and the
fallback scopes requested from Granola.
"""

from typing import List

# Google Calendar: create and edit events in the user's calendars
CALENDAR_EVENTS_SCOPE = "https://www.googleapis.com/auth/calendar.events"

GOOGLE_CALENDAR_SCOPES = [CALENDAR_EVENTS_SCOPE]

# Granola: used for registration, and for authorization when the server
# metadata does not advertise scopes_supported
GRANOLA_DEFAULT_SCOPES = ["openid", "profile", "email", "offline_access"]


def get_google_calendar_scopes() -> List[str]:
    """
    Get the list of OAuth scopes requested from Google Calendar.

    Returns:
        List of OAuth scopes.
    """
    return list(GOOGLE_CALENDAR_SCOPES)
