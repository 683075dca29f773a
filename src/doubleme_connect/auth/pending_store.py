"""
Pending-Authorization Store for DoubleMe Connect.

This module persists the short-lived mapping from an OAuth ``state`` token to
the PKCE code verifier and the user who started the flow, so the callback can
finish the exchange. Each record is consumed exactly once.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Callable, Dict, Optional, Any

from .oauth_config import get_oauth_config, get_data_dir
from ..utils.errors import PersistenceError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_safe_return_path(path: Optional[str]) -> bool:
    """True for same-origin absolute paths like ``/projects/42``."""
    if not path or not path.startswith("/"):
        return False
    return not path.startswith("//") and "\\" not in path


@dataclass
class PendingAuthorization:
    """A connect attempt waiting for its OAuth callback."""

    state: str
    code_verifier: str
    user_id: str
    return_path: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code_verifier": self.code_verifier,
            "user_id": self.user_id,
            "return_path": self.return_path,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, state: str, data: Dict[str, Any]) -> "PendingAuthorization":
        created_at = data.get("created_at")
        expires_at = data.get("expires_at")
        return cls(
            state=state,
            code_verifier=data["code_verifier"],
            user_id=data["user_id"],
            return_path=data.get("return_path"),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


class PendingAuthorizationStore(ABC):
    """Abstract base class for pending-authorization storage."""

    @abstractmethod
    def store(
        self,
        state: str,
        code_verifier: str,
        user_id: str,
        return_path: Optional[str] = None,
    ) -> None:
        """Insert a new pending record. Raises PersistenceError on failure."""
        pass

    @abstractmethod
    def consume(self, state: str) -> Optional[PendingAuthorization]:
        """Atomically read and delete the record for ``state``; None if absent."""
        pass


class LocalPendingAuthorizationStore(PendingAuthorizationStore):
    """
    Pending store kept in memory and mirrored to a JSON file.

    Records expire after ``ttl_seconds``; expired records are purged lazily on
    every store/consume so an abandoned flow cannot be completed late.
    """

    def __init__(
        self,
        file_path: str,
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")
        self._file_path = file_path
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._records: Dict[str, PendingAuthorization] = {}
        self._lock = RLock()

        self._load_from_disk()

    def _cleanup_expired_locked(self) -> bool:
        """Remove expired records. Caller must hold lock. Returns True if any removed."""
        now = self._clock()
        expired = [
            state
            for state, record in self._records.items()
            if record.expires_at and record.expires_at <= now
        ]
        for state in expired:
            del self._records[state]
            logger.debug("Removed expired pending authorization: %s...", state[:8])
        return bool(expired)

    def _load_from_disk(self) -> None:
        """Load persisted records from disk on initialization."""
        if not os.path.exists(self._file_path):
            logger.debug("No pending authorization file found at %s", self._file_path)
            return

        try:
            with open(self._file_path, "r") as f:
                persisted = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            logger.warning("Failed to read pending authorization file: %s", e)
            return

        if not isinstance(persisted, dict):
            logger.warning("Invalid pending authorization file format, ignoring")
            return

        for state, data in persisted.items():
            try:
                self._records[state] = PendingAuthorization.from_dict(state, data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Failed to parse pending authorization: %s", e)

        self._cleanup_expired_locked()
        logger.info("Loaded %d pending authorizations from disk", len(self._records))

    def _save_to_disk_locked(self) -> None:
        """Persist records to disk atomically. Caller must hold lock."""
        serializable = {state: record.to_dict() for state, record in self._records.items()}
        target_dir = os.path.dirname(self._file_path) or "."
        try:
            os.makedirs(target_dir, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=target_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(serializable, f, indent=2)
                os.replace(temp_path, self._file_path)
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            logger.error("Failed to persist pending authorizations: %s", e)
            raise PersistenceError(f"Could not save pending authorization: {e}") from e

        logger.debug("Persisted %d pending authorizations", len(serializable))

    def store(
        self,
        state: str,
        code_verifier: str,
        user_id: str,
        return_path: Optional[str] = None,
    ) -> None:
        if not state:
            raise ValueError("OAuth state must be provided")

        with self._lock:
            self._cleanup_expired_locked()
            now = self._clock()
            self._records[state] = PendingAuthorization(
                state=state,
                code_verifier=code_verifier,
                user_id=user_id,
                return_path=return_path,
                created_at=now,
                expires_at=now + self._ttl,
            )
            try:
                self._save_to_disk_locked()
            except PersistenceError:
                del self._records[state]
                raise

            logger.debug("Stored pending authorization %s... for user %s", state[:8], user_id)

    def consume(self, state: str) -> Optional[PendingAuthorization]:
        if not state:
            return None

        with self._lock:
            purged = self._cleanup_expired_locked()
            record = self._records.pop(state, None)

            if record is None:
                if purged:
                    self._save_to_disk_locked()
                logger.warning("OAuth callback received unknown or expired state")
                return None

            try:
                self._save_to_disk_locked()
            except PersistenceError:
                self._records[state] = record
                raise
            logger.debug("Consumed pending authorization %s...", state[:8])
            return record

    def count(self) -> int:
        """Number of unexpired pending records."""
        with self._lock:
            self._cleanup_expired_locked()
            return len(self._records)


# Global store instances, one per provider
_pending_stores: Dict[str, PendingAuthorizationStore] = {}


def get_pending_store(provider: str) -> PendingAuthorizationStore:
    """Get the global pending-authorization store for a provider."""
    store = _pending_stores.get(provider)
    if store is None:
        config = get_oauth_config()
        file_path = os.path.join(get_data_dir(), f"pending_{provider}.json")
        store = LocalPendingAuthorizationStore(file_path, ttl_seconds=config.pending_ttl_seconds)
        _pending_stores[provider] = store
        logger.info("Initialized pending store for %s: %s", provider, type(store).__name__)
    return store


def set_pending_store(provider: str, store: PendingAuthorizationStore) -> None:
    """Set the global pending-authorization store for a provider."""
    _pending_stores[provider] = store
    logger.info("Set pending store for %s: %s", provider, type(store).__name__)
