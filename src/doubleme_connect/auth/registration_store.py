"""
Client Registration Store for DoubleMe Connect.

Holds the single Granola OAuth client obtained through Dynamic Client
Registration. The record is shared by every user of the deployment and is
only valid for the redirect URI it was registered with.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from threading import RLock
from typing import Optional

from .oauth_config import get_data_dir
from ..utils.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class ClientRegistration:
    client_id: str
    redirect_uri: str
    client_secret: Optional[str] = None
    registered_at: Optional[str] = None


class ClientRegistrationStore(ABC):
    """Abstract base class for the registered-client record."""

    @abstractmethod
    def get(self) -> Optional[ClientRegistration]:
        pass

    @abstractmethod
    def save(self, registration: ClientRegistration) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class LocalClientRegistrationStore(ClientRegistrationStore):
    """Registration kept in a single JSON file."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        if file_path is None:
            file_path = os.path.join(get_data_dir(), "granola_client.json")
        self.file_path = file_path
        self._lock = RLock()

    def get(self) -> Optional[ClientRegistration]:
        with self._lock:
            if not os.path.exists(self.file_path):
                return None
            try:
                with open(self.file_path, "r") as f:
                    data = json.load(f)
            except (IOError, json.JSONDecodeError) as e:
                logger.error(f"Error loading client registration: {e}")
                return None

            if not isinstance(data, dict) or not data.get("client_id"):
                return None
            return ClientRegistration(
                client_id=data["client_id"],
                redirect_uri=data.get("redirect_uri") or "",
                client_secret=data.get("client_secret"),
                registered_at=data.get("registered_at"),
            )

    def save(self, registration: ClientRegistration) -> None:
        if registration.registered_at is None:
            registration.registered_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                os.makedirs(os.path.dirname(self.file_path) or ".", exist_ok=True)
                with open(self.file_path, "w") as f:
                    json.dump(asdict(registration), f, indent=2)
            except IOError as e:
                raise PersistenceError(f"Could not save client registration: {e}") from e
        logger.info(f"Stored client registration {registration.client_id}")

    def clear(self) -> None:
        with self._lock:
            try:
                if os.path.exists(self.file_path):
                    os.remove(self.file_path)
                    logger.info("Cleared client registration")
            except IOError as e:
                raise PersistenceError(f"Could not clear client registration: {e}") from e


_registration_store: Optional[ClientRegistrationStore] = None


def get_registration_store() -> ClientRegistrationStore:
    """Get the global client registration store."""
    global _registration_store
    if _registration_store is None:
        _registration_store = LocalClientRegistrationStore()
    return _registration_store


def set_registration_store(store: ClientRegistrationStore) -> None:
    """Set the global client registration store."""
    global _registration_store
    _registration_store = store
