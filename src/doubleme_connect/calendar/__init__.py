"""Google Calendar API operations."""
from .events import create_calendar_event, CreatedEvent

__all__ = ["create_calendar_event", "CreatedEvent"]
