"""
Token Store for DoubleMe Connect.

This module provides a standardized interface for storing provider tokens,
one record per user per provider, using local JSON files for persistence.
"""

import os
import json
import logging
import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, List

from .oauth_config import get_data_dir
from ..utils.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class ProviderToken:
    """Stored tokens for one user and one provider."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A token without an expiry never expires."""
        if self.expires_at is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        return self.expires_at <= now


@dataclass
class TokenResponse:
    """The fields this package uses from an OAuth token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> "TokenResponse":
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ValueError("Token response has no access_token")
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=float(expires_in) if expires_in is not None else None,
        )


def expires_at_from(expires_in: Optional[float], now: Optional[datetime] = None) -> Optional[datetime]:
    """Absolute expiry for a relative ``expires_in``; None when not provided."""
    if expires_in is None:
        return None
    if now is None:
        now = datetime.now(timezone.utc)
    return now + timedelta(seconds=float(expires_in))


class TokenStore(ABC):
    """Abstract base class for provider token storage."""

    @abstractmethod
    def save(
        self,
        user_id: str,
        provider: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[float] = None,
    ) -> None:
        """Upsert the token record for (user_id, provider)."""
        pass

    @abstractmethod
    def get(self, user_id: str, provider: str) -> Optional[ProviderToken]:
        """Get the token record for (user_id, provider), or None."""
        pass

    @abstractmethod
    def delete(self, user_id: str, provider: str) -> None:
        """Delete the token record for (user_id, provider)."""
        pass

    @abstractmethod
    def list_users(self, provider: str) -> List[str]:
        """List all users with a stored token for a provider."""
        pass


class LocalDirectoryTokenStore(TokenStore):
    """Token store that keeps one JSON file per provider and user."""

    def __init__(self, base_dir: Optional[str] = None) -> None:
        """
        Initialize the local token store.

        Args:
            base_dir: Base directory for token files. If None, uses
                     <data dir>/tokens
        """
        if base_dir is None:
            base_dir = os.path.join(get_data_dir(), "tokens")

        self.base_dir = base_dir
        logger.info(f"LocalDirectoryTokenStore initialized: {base_dir}")

    def _user_to_filename(self, user_id: str) -> str:
        """
        Convert a user id to a safe filename using URL-safe base64 encoding.

        The transformation is reversible so list_users can recover the ids.
        """
        encoded = base64.urlsafe_b64encode(user_id.encode("utf-8")).decode("ascii")
        return encoded.rstrip("=")

    def _filename_to_user(self, filename: str) -> str:
        """Reverse _user_to_filename."""
        padding = 4 - (len(filename) % 4)
        if padding != 4:
            filename += "=" * padding
        return base64.urlsafe_b64decode(filename.encode("ascii")).decode("utf-8")

    def _provider_dir(self, provider: str) -> str:
        return os.path.join(self.base_dir, provider)

    def _get_token_path(self, user_id: str, provider: str) -> str:
        return os.path.join(self._provider_dir(provider), f"{self._user_to_filename(user_id)}.json")

    def save(
        self,
        user_id: str,
        provider: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[float] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        expires_at = expires_at_from(expires_in, now)
        token_data = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "updated_at": now.isoformat(),
        }

        token_path = self._get_token_path(user_id, provider)
        try:
            os.makedirs(os.path.dirname(token_path), exist_ok=True)
            with open(token_path, "w") as f:
                json.dump(token_data, f, indent=2)
        except IOError as e:
            logger.error(f"Error storing {provider} token for {user_id}: {e}")
            raise PersistenceError(f"Could not save {provider} token: {e}", provider) from e

        logger.info(f"Stored {provider} token for {user_id}")

    def get(self, user_id: str, provider: str) -> Optional[ProviderToken]:
        token_path = self._get_token_path(user_id, provider)

        if not os.path.exists(token_path):
            logger.debug(f"No {provider} token file found for {user_id}")
            return None

        try:
            with open(token_path, "r") as f:
                token_data = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            logger.error(f"Error loading {provider} token for {user_id}: {e}")
            return None

        if not token_data.get("access_token"):
            return None

        expires_at = None
        if token_data.get("expires_at"):
            try:
                expires_at = datetime.fromisoformat(token_data["expires_at"])
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=timezone.utc)
            except (ValueError, TypeError) as e:
                logger.warning(f"Could not parse expiry for {user_id}: {e}")

        updated_at = None
        if token_data.get("updated_at"):
            try:
                updated_at = datetime.fromisoformat(token_data["updated_at"])
            except (ValueError, TypeError):
                pass

        return ProviderToken(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_at,
            updated_at=updated_at,
        )

    def delete(self, user_id: str, provider: str) -> None:
        token_path = self._get_token_path(user_id, provider)
        try:
            if os.path.exists(token_path):
                os.remove(token_path)
                logger.info(f"Deleted {provider} token for {user_id}")
        except IOError as e:
            logger.error(f"Error deleting {provider} token for {user_id}: {e}")
            raise PersistenceError(f"Could not delete {provider} token: {e}", provider) from e

    def list_users(self, provider: str) -> List[str]:
        provider_dir = self._provider_dir(provider)
        if not os.path.exists(provider_dir):
            return []

        users = []
        try:
            for filename in os.listdir(provider_dir):
                if filename.endswith(".json"):
                    try:
                        users.append(self._filename_to_user(filename[:-5]))
                    except (ValueError, UnicodeDecodeError) as e:
                        logger.warning(f"Could not decode token file {filename}: {e}")
        except OSError as e:
            logger.error(f"Error listing token files: {e}")

        return sorted(users)


# Global token store instance
_token_store: Optional[TokenStore] = None


def get_token_store() -> TokenStore:
    """Get the global token store instance."""
    global _token_store

    if _token_store is None:
        _token_store = LocalDirectoryTokenStore()
        logger.info(f"Initialized token store: {type(_token_store).__name__}")

    return _token_store


def set_token_store(store: TokenStore) -> None:
    """Set the global token store instance."""
    global _token_store
    _token_store = store
    logger.info(f"Set token store: {type(store).__name__}")
