"""OAuth callback routes and the local callback server."""

from .callbacks import (
    CallbackFlow,
    complete_authorization,
    create_callback_app,
    ensure_callback_server,
    cleanup_callback_server,
    granola_flow,
    google_calendar_flow,
)

__all__ = [
    "CallbackFlow",
    "complete_authorization",
    "create_callback_app",
    "ensure_callback_server",
    "cleanup_callback_server",
    "granola_flow",
    "google_calendar_flow",
]
