"""
OAuth Configuration Management for DoubleMe Connect.

This module centralizes the deployment configuration consumed by the Granola
and Google Calendar OAuth flows and the Granola MCP client.
"""

import os
from typing import Optional, Dict, Any

from dotenv import load_dotenv

from ..utils.constants import (
    DEFAULT_GRANOLA_MCP_URL,
    DEFAULT_GRANOLA_METADATA_URL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_PENDING_TTL_SECONDS,
    DEFAULT_RETURN_PATH,
    GRANOLA_CALLBACK_PATH,
    GOOGLE_CALENDAR_CALLBACK_PATH,
)

load_dotenv()


def _env(name: str) -> Optional[str]:
    """Read an environment variable, treating blank values as unset."""
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


class OAuthConfig:
    """
    Centralized OAuth configuration management.

    Provides a single source of truth for all OAuth-related configuration values.
    """

    def __init__(self) -> None:
        # Application origin used to build exact redirect URIs
        app_url = _env("DOUBLEME_APP_URL")
        self.app_origin = app_url.rstrip("/") if app_url else None

        # Local storage for the JSON-file stores
        self.data_dir = os.path.expanduser(_env("DOUBLEME_DATA_DIR") or "~/.doubleme")

        # Google Calendar client (statically configured, no DCR)
        self.google_client_id = _env("GOOGLE_CALENDAR_CLIENT_ID")
        self.google_client_secret = _env("GOOGLE_CALENDAR_CLIENT_SECRET") or ""

        # Granola MCP endpoint and OAuth discovery
        self.granola_mcp_url = _env("GRANOLA_MCP_URL") or DEFAULT_GRANOLA_MCP_URL
        self.granola_api_token = _env("GRANOLA_API_TOKEN")
        self.granola_metadata_url = (
            _env("GRANOLA_OAUTH_METADATA_URL") or DEFAULT_GRANOLA_METADATA_URL
        )

        # Timeouts and lifetimes
        self.http_timeout = float(_env("DOUBLEME_HTTP_TIMEOUT") or DEFAULT_HTTP_TIMEOUT)
        self.pending_ttl_seconds = int(
            _env("DOUBLEME_PENDING_TTL_SECONDS") or DEFAULT_PENDING_TTL_SECONDS
        )
        metadata_ttl = _env("DOUBLEME_METADATA_TTL_SECONDS")
        self.metadata_ttl_seconds = float(metadata_ttl) if metadata_ttl else None

        # Default identity for the local MCP tool surface
        self.default_user_id = _env("DOUBLEME_USER_ID")

    def get_redirect_uri(self, callback_path: str) -> Optional[str]:
        """Get the exact redirect URI for a callback route, or None without an origin."""
        if not self.app_origin:
            return None
        return f"{self.app_origin}{callback_path}"

    @property
    def granola_redirect_uri(self) -> Optional[str]:
        return self.get_redirect_uri(GRANOLA_CALLBACK_PATH)

    @property
    def google_calendar_redirect_uri(self) -> Optional[str]:
        return self.get_redirect_uri(GOOGLE_CALENDAR_CALLBACK_PATH)

    def get_default_return_url(self) -> str:
        """Page the browser lands on after a callback when no return path is set."""
        if self.app_origin:
            return f"{self.app_origin}{DEFAULT_RETURN_PATH}"
        return DEFAULT_RETURN_PATH

    def is_google_configured(self) -> bool:
        """Check if the Google Calendar client is configured."""
        return bool(self.google_client_id)

    def get_environment_summary(self) -> Dict[str, Any]:
        """Get a summary of the current configuration (excluding secrets)."""
        return {
            "app_origin": self.app_origin,
            "granola_redirect_uri": self.granola_redirect_uri,
            "google_calendar_redirect_uri": self.google_calendar_redirect_uri,
            "data_dir": self.data_dir,
            "google_calendar_configured": self.is_google_configured(),
            "granola_mcp_url": self.granola_mcp_url,
            "granola_api_token_set": bool(self.granola_api_token),
            "http_timeout": self.http_timeout,
            "pending_ttl_seconds": self.pending_ttl_seconds,
        }


# Global configuration instance
_oauth_config: Optional[OAuthConfig] = None


def get_oauth_config() -> OAuthConfig:
    """Get the global OAuth configuration instance."""
    global _oauth_config
    if _oauth_config is None:
        _oauth_config = OAuthConfig()
    return _oauth_config


def reload_oauth_config() -> OAuthConfig:
    """Reload the OAuth configuration from environment variables."""
    global _oauth_config
    _oauth_config = OAuthConfig()
    return _oauth_config


def get_data_dir() -> str:
    """Get the data directory path, creating it if necessary."""
    config = get_oauth_config()
    if not os.path.exists(config.data_dir):
        os.makedirs(config.data_dir, exist_ok=True)
    return config.data_dir
