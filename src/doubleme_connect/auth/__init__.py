"""
OAuth 2.0 Authentication Package for DoubleMe Connect.

This package provides:
- PKCE helpers and one-shot pending-authorization records with a TTL
- Per-user, per-provider token storage
- Granola OAuth with discovery and Dynamic Client Registration
- Google Calendar OAuth with token refresh
"""

from .scopes import GOOGLE_CALENDAR_SCOPES, GRANOLA_DEFAULT_SCOPES
from .pkce import generate_state, generate_code_verifier, compute_code_challenge
from .pending_store import get_pending_store, PendingAuthorizationStore
from .token_store import get_token_store, TokenStore
from .registration_store import get_registration_store, ClientRegistrationStore
from .granola_oauth import get_granola_oauth_client, GranolaOAuthClient
from .google_calendar_oauth import (
    get_google_calendar_oauth_client,
    GoogleCalendarOAuthClient,
)

__all__ = [
    # Scopes
    "GOOGLE_CALENDAR_SCOPES",
    "GRANOLA_DEFAULT_SCOPES",
    # PKCE
    "generate_state",
    "generate_code_verifier",
    "compute_code_challenge",
    # Stores
    "get_pending_store",
    "PendingAuthorizationStore",
    "get_token_store",
    "TokenStore",
    "get_registration_store",
    "ClientRegistrationStore",
    # Clients
    "get_granola_oauth_client",
    "GranolaOAuthClient",
    "get_google_calendar_oauth_client",
    "GoogleCalendarOAuthClient",
]
