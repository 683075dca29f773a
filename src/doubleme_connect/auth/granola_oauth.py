"""
Granola OAuth 2.0 flow for "Connect your Granola account".

Endpoints are discovered from the Granola authorization-server metadata
document and the client is obtained through Dynamic Client Registration
(RFC 7591), re-registering whenever the deployment's redirect URI changes.
Authorization codes are bound to the flow with PKCE (S256).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import requests

from .oauth_config import OAuthConfig, get_oauth_config
from .pending_store import PendingAuthorizationStore, get_pending_store
from .pkce import compute_code_challenge, generate_code_verifier, generate_state
from .registration_store import (
    ClientRegistration,
    ClientRegistrationStore,
    get_registration_store,
)
from .scopes import GRANOLA_DEFAULT_SCOPES
from .token_store import TokenResponse, TokenStore, get_token_store
from ..utils.constants import CLIENT_NAME, PROVIDER_GRANOLA
from ..utils.errors import (
    ConfigurationMissingError,
    DiscoveryError,
    RegistrationError,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)


@dataclass
class OAuthMetadata:
    """The authorization-server metadata fields used by the Granola flow."""

    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    scopes_supported: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OAuthMetadata":
        if not isinstance(data, dict):
            raise ValueError("metadata is not a JSON object")
        missing = [
            key
            for key in ("authorization_endpoint", "token_endpoint", "registration_endpoint")
            if not data.get(key)
        ]
        if missing:
            raise ValueError(f"metadata missing {', '.join(missing)}")
        scopes = data.get("scopes_supported")
        return cls(
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
            registration_endpoint=data["registration_endpoint"],
            scopes_supported=list(scopes) if scopes else None,
        )

    @property
    def scope(self) -> str:
        return " ".join(self.scopes_supported or GRANOLA_DEFAULT_SCOPES)


class MetadataCache:
    """
    Caches the discovery document.

    With ``ttl_seconds`` None the first successful fetch is kept for the life
    of the cache object; otherwise it is refetched once older than the TTL.
    Failed fetches are never cached.
    """

    def __init__(
        self,
        fetch: Callable[[], OAuthMetadata],
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._clock = clock
        self._value: Optional[OAuthMetadata] = None
        self._fetched_at = 0.0

    def get(self) -> OAuthMetadata:
        if self._value is not None:
            if self._ttl is None or self._clock() - self._fetched_at < self._ttl:
                return self._value
        self._value = self._fetch()
        self._fetched_at = self._clock()
        return self._value

    def invalidate(self) -> None:
        self._value = None


def add_query_params(url: str, params: Dict[str, str]) -> str:
    """Append query parameters to a URL, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class GranolaOAuthClient:
    """OAuth client for the Granola MCP authorization server."""

    def __init__(
        self,
        config: Optional[OAuthConfig] = None,
        registration_store: Optional[ClientRegistrationStore] = None,
        token_store: Optional[TokenStore] = None,
        pending_store: Optional[PendingAuthorizationStore] = None,
        metadata_cache: Optional[MetadataCache] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or get_oauth_config()
        self.registration_store = registration_store or get_registration_store()
        self.token_store = token_store or get_token_store()
        self.pending_store = pending_store or get_pending_store(PROVIDER_GRANOLA)
        self.session = session or requests.Session()
        self.metadata_cache = metadata_cache or MetadataCache(
            self._fetch_metadata, ttl_seconds=self.config.metadata_ttl_seconds
        )

    @property
    def redirect_uri(self) -> Optional[str]:
        return self.config.granola_redirect_uri

    def _fetch_metadata(self) -> OAuthMetadata:
        url = self.config.granola_metadata_url
        try:
            response = self.session.get(url, timeout=self.config.http_timeout)
        except requests.RequestException as e:
            logger.error(f"Granola OAuth discovery request failed: {e}")
            raise DiscoveryError(
                f"Failed to fetch Granola OAuth metadata ({e})", provider=PROVIDER_GRANOLA
            ) from e

        if not response.ok:
            raise DiscoveryError(
                "Failed to fetch Granola OAuth metadata",
                status=response.status_code,
                body=response.text,
                provider=PROVIDER_GRANOLA,
            )

        try:
            metadata = OAuthMetadata.from_dict(response.json())
        except ValueError as e:
            raise DiscoveryError(
                f"Invalid Granola OAuth metadata: {e}", provider=PROVIDER_GRANOLA
            ) from e

        logger.info(f"Discovered Granola OAuth endpoints from {url}")
        return metadata

    def get_metadata(self) -> OAuthMetadata:
        """Get the authorization-server metadata, fetching it on first use."""
        return self.metadata_cache.get()

    def _register_client(self, redirect_uri: str) -> ClientRegistration:
        """Register a public PKCE client via Dynamic Client Registration."""
        metadata = self.get_metadata()
        payload = {
            "redirect_uris": [redirect_uri],
            "client_name": CLIENT_NAME,
            "scope": " ".join(GRANOLA_DEFAULT_SCOPES),
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
            "code_challenge_method": "S256",
            "application_type": "web",
        }
        try:
            response = self.session.post(
                metadata.registration_endpoint,
                json=payload,
                timeout=self.config.http_timeout,
            )
        except requests.RequestException as e:
            raise RegistrationError(
                f"Granola OAuth registration failed ({e})", provider=PROVIDER_GRANOLA
            ) from e

        if not response.ok:
            raise RegistrationError(
                "Granola OAuth registration failed",
                status=response.status_code,
                body=response.text,
                provider=PROVIDER_GRANOLA,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RegistrationError(
                "Granola OAuth registration returned invalid JSON",
                status=response.status_code,
                body=response.text,
                provider=PROVIDER_GRANOLA,
            ) from e
        if not isinstance(data, dict) or not data.get("client_id"):
            raise RegistrationError(
                "Granola OAuth registration returned no client_id",
                status=response.status_code,
                body=response.text,
                provider=PROVIDER_GRANOLA,
            )

        logger.info(f"Registered Granola OAuth client {data['client_id']}")
        return ClientRegistration(
            client_id=data["client_id"],
            client_secret=data.get("client_secret") or None,
            redirect_uri=redirect_uri,
        )

    def get_or_register_client(self, redirect_uri: str) -> ClientRegistration:
        """
        Get the stored client, registering a new one if needed.

        A stored registration is only reused when its redirect URI matches
        ``redirect_uri`` exactly; otherwise it is cleared first.
        """
        existing = self.registration_store.get()
        if existing and existing.redirect_uri == redirect_uri:
            return existing

        if existing:
            logger.info(
                "Redirect URI changed (%s -> %s), re-registering Granola client",
                existing.redirect_uri,
                redirect_uri,
            )
            self.registration_store.clear()

        registration = self._register_client(redirect_uri)
        self.registration_store.save(registration)
        return registration

    def build_authorize_url(self, redirect_uri: str, state: str, code_verifier: str) -> str:
        """Build the URL to send the user to for Granola sign-in."""
        metadata = self.get_metadata()
        client = self.get_or_register_client(redirect_uri)
        return add_query_params(
            metadata.authorization_endpoint,
            {
                "response_type": "code",
                "client_id": client.client_id,
                "redirect_uri": redirect_uri,
                "scope": metadata.scope,
                "state": state,
                "code_challenge": compute_code_challenge(code_verifier),
                "code_challenge_method": "S256",
            },
        )

    def start_connect(self, user_id: str, return_path: Optional[str] = None) -> str:
        """
        Begin a connect attempt for ``user_id``.

        Stores the pending authorization and returns the authorize URL.

        Raises:
            ConfigurationMissingError: If the application origin is not set.
            ConnectError: On discovery, registration or storage failure.
        """
        redirect_uri = self.redirect_uri
        if not redirect_uri:
            raise ConfigurationMissingError(
                "App URL not set. Set DOUBLEME_APP_URL.", PROVIDER_GRANOLA
            )
        state = generate_state()
        code_verifier = generate_code_verifier()
        url = self.build_authorize_url(redirect_uri, state, code_verifier)
        self.pending_store.store(state, code_verifier, user_id, return_path)
        logger.info(f"Granola auth flow started for {user_id}. State: {state[:8]}...")
        return url

    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenResponse:
        """Exchange an authorization code for tokens. Never retried."""
        metadata = self.get_metadata()
        client = self.registration_store.get()
        if not client:
            raise TokenExchangeError(
                "Granola OAuth client not registered", provider=PROVIDER_GRANOLA
            )

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
            "client_id": client.client_id,
        }
        if client.client_secret:
            form["client_secret"] = client.client_secret

        try:
            response = self.session.post(
                metadata.token_endpoint,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.config.http_timeout,
            )
        except requests.RequestException as e:
            raise TokenExchangeError(
                f"Granola token exchange failed ({e})", provider=PROVIDER_GRANOLA
            ) from e

        if not response.ok:
            raise TokenExchangeError(
                "Granola token exchange failed",
                status=response.status_code,
                body=response.text,
                provider=PROVIDER_GRANOLA,
            )

        try:
            tokens = TokenResponse.from_dict(response.json())
        except ValueError as e:
            raise TokenExchangeError(
                "Granola token exchange returned no access token",
                status=response.status_code,
                body=response.text,
                provider=PROVIDER_GRANOLA,
            ) from e

        logger.info("Successfully exchanged Granola authorization code for tokens")
        return tokens

    def save_tokens(self, user_id: str, tokens: TokenResponse) -> None:
        self.token_store.save(
            user_id,
            PROVIDER_GRANOLA,
            tokens.access_token,
            tokens.refresh_token,
            tokens.expires_in,
        )

    def get_access_token(self, user_id: str) -> Optional[str]:
        """
        Get the user's Granola access token for MCP calls.

        Returns None if the user is not connected or the token has expired;
        the Granola flow does not refresh tokens.
        """
        token = self.token_store.get(user_id, PROVIDER_GRANOLA)
        if not token:
            return None
        if token.is_expired():
            logger.info(f"Granola token for {user_id} expired; reconnect required")
            return None
        return token.access_token

    def is_connected(self, user_id: str) -> bool:
        return self.get_access_token(user_id) is not None

    def reset_connection(self, user_id: str) -> None:
        """
        Make the next connect run as if first time.

        Clears the shared client registration (forcing fresh DCR), the cached
        discovery document and this user's token. Other users' tokens are
        untouched.
        """
        self.registration_store.clear()
        self.metadata_cache.invalidate()
        self.token_store.delete(user_id, PROVIDER_GRANOLA)
        logger.info(f"Reset Granola connection for {user_id}")


# Global client instance
_granola_client: Optional[GranolaOAuthClient] = None


def get_granola_oauth_client() -> GranolaOAuthClient:
    """Get the global Granola OAuth client (one metadata cache per process)."""
    global _granola_client
    if _granola_client is None:
        _granola_client = GranolaOAuthClient()
    return _granola_client


def set_granola_oauth_client(client: Optional[GranolaOAuthClient]) -> None:
    """Set or clear the global Granola OAuth client."""
    global _granola_client
    _granola_client = client
