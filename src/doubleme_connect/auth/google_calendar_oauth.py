"""
Google OAuth 2.0 for the Calendar API.

The client is statically configured (GOOGLE_CALENDAR_CLIENT_ID and
GOOGLE_CALENDAR_CLIENT_SECRET), uses PKCE, and refreshes expired access
tokens with the stored refresh token.
"""

import enum
import functools
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from .oauth_config import OAuthConfig, get_oauth_config
from .pending_store import PendingAuthorizationStore, get_pending_store
from .pkce import generate_code_verifier, generate_state
from .scopes import get_google_calendar_scopes
from .token_store import ProviderToken, TokenResponse, TokenStore, get_token_store
from ..utils.constants import GOOGLE_AUTH_URI, GOOGLE_TOKEN_URI, PROVIDER_GOOGLE_CALENDAR
from ..utils.errors import ConfigurationMissingError, PersistenceError, TokenExchangeError

logger = logging.getLogger(__name__)


class TokenStatus(enum.Enum):
    """Why a token lookup did or did not produce an access token."""

    VALID = "valid"
    REFRESHED = "refreshed"
    NOT_CONFIGURED = "not_configured"
    NOT_CONNECTED = "not_connected"
    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_REJECTED = "refresh_rejected"
    REFRESH_FAILED = "refresh_failed"


@dataclass
class TokenLookup:
    """Internal tagged result of an access-token lookup."""

    status: TokenStatus
    access_token: Optional[str] = None
    detail: Optional[str] = None


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to a timezone-naive UTC datetime for google-auth compatibility."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _seconds_until(expiry: Optional[datetime]) -> Optional[float]:
    """Seconds from now until a naive-UTC expiry, as stored by google-auth."""
    if expiry is None:
        return None
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return max((expiry - now).total_seconds(), 0.0)


class GoogleCalendarOAuthClient:
    """OAuth client for Google Calendar access."""

    def __init__(
        self,
        config: Optional[OAuthConfig] = None,
        token_store: Optional[TokenStore] = None,
        pending_store: Optional[PendingAuthorizationStore] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or get_oauth_config()
        self.token_store = token_store or get_token_store()
        self.pending_store = pending_store or get_pending_store(PROVIDER_GOOGLE_CALENDAR)
        self.session = session or requests.Session()

        # Google may report granted scopes in a different form than requested
        os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

    @property
    def redirect_uri(self) -> Optional[str]:
        return self.config.google_calendar_redirect_uri

    def is_configured(self) -> bool:
        return self.config.is_google_configured()

    def _client_config(self) -> Dict[str, Any]:
        return {
            "web": {
                "client_id": self.config.google_client_id,
                "client_secret": self.config.google_client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        }

    def _create_flow(
        self, redirect_uri: str, code_verifier: str, state: Optional[str] = None
    ) -> Flow:
        """Create an OAuth flow bound to our own PKCE verifier."""
        return Flow.from_client_config(
            self._client_config(),
            scopes=get_google_calendar_scopes(),
            redirect_uri=redirect_uri,
            state=state,
            code_verifier=code_verifier,
            autogenerate_code_verifier=False,
        )

    def build_authorize_url(self, state: str, code_verifier: str) -> Optional[str]:
        """
        Build the URL to send the user to for Google sign-in.

        Returns None when the client is not configured or the application
        origin is unknown, so callers can show a "not configured" message.
        """
        if not self.is_configured():
            logger.warning("Google Calendar OAuth is not configured")
            return None
        redirect_uri = self.redirect_uri
        if not redirect_uri:
            logger.warning("Cannot build Google Calendar auth URL without DOUBLEME_APP_URL")
            return None

        flow = self._create_flow(redirect_uri, code_verifier, state=state)
        auth_url, _ = flow.authorization_url(
            access_type="offline", prompt="consent", state=state
        )
        return auth_url

    def start_connect(self, user_id: str, return_path: Optional[str] = None) -> str:
        """
        Begin a connect attempt for ``user_id``.

        Raises:
            ConfigurationMissingError: If the client or origin is not configured.
            PersistenceError: If the pending authorization cannot be stored.
        """
        if not self.is_configured() or not self.redirect_uri:
            raise ConfigurationMissingError(
                "Google Calendar is not configured. Set GOOGLE_CALENDAR_CLIENT_ID, "
                "GOOGLE_CALENDAR_CLIENT_SECRET and DOUBLEME_APP_URL.",
                PROVIDER_GOOGLE_CALENDAR,
            )
        state = generate_state()
        code_verifier = generate_code_verifier()
        url = self.build_authorize_url(state, code_verifier)
        if url is None:
            raise ConfigurationMissingError(
                "Google Calendar is not configured.", PROVIDER_GOOGLE_CALENDAR
            )
        self.pending_store.store(state, code_verifier, user_id, return_path)
        logger.info(f"Google Calendar auth flow started for {user_id}. State: {state[:8]}...")
        return url

    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenResponse:
        """Exchange an authorization code for tokens. Never retried."""
        if not self.is_configured():
            raise ConfigurationMissingError(
                "Google Calendar OAuth not configured", PROVIDER_GOOGLE_CALENDAR
            )

        flow = self._create_flow(redirect_uri, code_verifier)
        try:
            token = flow.fetch_token(code=code, timeout=self.config.http_timeout)
        except OAuth2Error as e:
            raise TokenExchangeError(
                "Google token exchange failed",
                status=e.status_code,
                body=e.description or e.error,
                provider=PROVIDER_GOOGLE_CALENDAR,
            ) from e
        except requests.RequestException as e:
            raise TokenExchangeError(
                f"Google token exchange failed ({e})", provider=PROVIDER_GOOGLE_CALENDAR
            ) from e

        try:
            tokens = TokenResponse.from_dict(dict(token))
        except ValueError as e:
            raise TokenExchangeError(
                "Google token exchange returned no access token",
                provider=PROVIDER_GOOGLE_CALENDAR,
            ) from e

        logger.info("Successfully exchanged Google authorization code for tokens")
        return tokens

    def save_tokens(self, user_id: str, tokens: TokenResponse) -> None:
        self.token_store.save(
            user_id,
            PROVIDER_GOOGLE_CALENDAR,
            tokens.access_token,
            tokens.refresh_token,
            tokens.expires_in,
        )

    def _refresh(self, user_id: str, stored: ProviderToken) -> TokenLookup:
        credentials = Credentials(
            token=stored.access_token,
            refresh_token=stored.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self.config.google_client_id,
            client_secret=self.config.google_client_secret,
            scopes=get_google_calendar_scopes(),
            expiry=_to_naive_utc(stored.expires_at),
        )

        request = functools.partial(
            Request(session=self.session), timeout=self.config.http_timeout
        )
        try:
            credentials.refresh(request)
        except RefreshError as e:
            return TokenLookup(TokenStatus.REFRESH_REJECTED, detail=str(e))
        except (TransportError, requests.RequestException) as e:
            return TokenLookup(TokenStatus.REFRESH_FAILED, detail=str(e))

        if not credentials.token:
            return TokenLookup(TokenStatus.REFRESH_FAILED, detail="empty access token")

        try:
            # The token endpoint may omit refresh_token; keep the one we used
            self.token_store.save(
                user_id,
                PROVIDER_GOOGLE_CALENDAR,
                credentials.token,
                credentials.refresh_token or stored.refresh_token,
                _seconds_until(credentials.expiry),
            )
        except PersistenceError as e:
            return TokenLookup(TokenStatus.REFRESH_FAILED, detail=str(e))

        return TokenLookup(TokenStatus.REFRESHED, access_token=credentials.token)

    def lookup_access_token(self, user_id: str) -> TokenLookup:
        """Resolve the user's access token, refreshing if expired."""
        if not self.is_configured():
            return TokenLookup(TokenStatus.NOT_CONFIGURED)

        stored = self.token_store.get(user_id, PROVIDER_GOOGLE_CALENDAR)
        if not stored:
            return TokenLookup(TokenStatus.NOT_CONNECTED)

        if not stored.is_expired():
            return TokenLookup(TokenStatus.VALID, access_token=stored.access_token)

        if not stored.refresh_token:
            return TokenLookup(TokenStatus.NO_REFRESH_TOKEN)

        logger.info(f"Google Calendar token for {user_id} expired, attempting refresh")
        return self._refresh(user_id, stored)

    def get_access_token(self, user_id: str) -> Optional[str]:
        """
        Get a usable access token for ``user_id``.

        Returns None for every failure (not configured, not connected, no
        refresh token, refresh failed); the cause is only logged.
        """
        lookup = self.lookup_access_token(user_id)
        if lookup.access_token is None:
            log = logger.warning if lookup.detail else logger.info
            log(
                "No Google Calendar access token for %s: %s%s",
                user_id,
                lookup.status.value,
                f" ({lookup.detail})" if lookup.detail else "",
            )
        elif lookup.status is TokenStatus.REFRESHED:
            logger.info(f"Refreshed Google Calendar token for {user_id}")
        return lookup.access_token

    def is_connected(self, user_id: str) -> bool:
        return self.get_access_token(user_id) is not None

    def disconnect(self, user_id: str) -> None:
        """Delete the user's stored Google Calendar token."""
        self.token_store.delete(user_id, PROVIDER_GOOGLE_CALENDAR)
        logger.info(f"Disconnected Google Calendar for {user_id}")


# Global client instance
_google_client: Optional[GoogleCalendarOAuthClient] = None


def get_google_calendar_oauth_client() -> GoogleCalendarOAuthClient:
    """Get the global Google Calendar OAuth client."""
    global _google_client
    if _google_client is None:
        _google_client = GoogleCalendarOAuthClient()
    return _google_client


def set_google_calendar_oauth_client(client: Optional[GoogleCalendarOAuthClient]) -> None:
    """Set or clear the global Google Calendar OAuth client."""
    global _google_client
    _google_client = client
