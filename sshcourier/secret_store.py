"""
Secret storage for sshcourier
Stores connection secrets in the system keyring, keyed by connection id and kind
"""

import logging
import threading
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .models import SecretKind

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "sshcourier"


class SecretStoreError(RuntimeError):
    """Raised when a secret could not be written to the keyring."""


def secret_key(kind: SecretKind, connection_id: str) -> str:
    """Return the keyring username used for *kind* under *connection_id*."""
    return f"{kind.value}:{connection_id}"


class SecretStore:
    """Thread-safe facade over the active keyring backend."""

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        self.service_name = service_name
        self._lock = threading.RLock()
        self._backend_name: Optional[str] = None

    def backend_name(self) -> str:
        """Return a descriptive name for the active keyring backend."""
        if self._backend_name:
            return self._backend_name
        try:
            backend = keyring.get_keyring()
            self._backend_name = backend.__class__.__name__
        except Exception:
            self._backend_name = 'unavailable'
        return self._backend_name

    def put(self, connection_id: str, kind: SecretKind, secret: str) -> None:
        """Store *secret*; raises :class:`SecretStoreError` when the backend fails."""
        username = secret_key(kind, connection_id)
        with self._lock:
            try:
                keyring.set_password(self.service_name, username, secret)
            except Exception as e:
                logger.error(
                    "Failed to store %s for %s (keyring:%s): %s",
                    kind.value,
                    connection_id,
                    self.backend_name(),
                    e,
                )
                raise SecretStoreError(f"Could not store {kind.value} for {connection_id}") from e
        logger.debug(
            "Stored %s for %s via keyring backend %s",
            kind.value,
            connection_id,
            self.backend_name(),
        )

    def get(self, connection_id: str, kind: SecretKind) -> Optional[str]:
        """Return the stored secret, or ``None`` when absent or unreadable."""
        username = secret_key(kind, connection_id)
        with self._lock:
            try:
                value = keyring.get_password(self.service_name, username)
            except KeyringError as e:
                logger.error(
                    "Error retrieving %s (keyring:%s) for %s: %s",
                    kind.value,
                    self.backend_name(),
                    connection_id,
                    e,
                )
                return None
        if value is not None:
            logger.debug("Retrieved %s for %s", kind.value, connection_id)
        return value

    def delete(self, connection_id: str, kind: SecretKind) -> bool:
        """Delete a stored secret; returns True if something was removed."""
        username = secret_key(kind, connection_id)
        with self._lock:
            try:
                keyring.delete_password(self.service_name, username)
            except PasswordDeleteError:
                return False
            except KeyringError as e:
                logger.debug(
                    "Keyring backend %s failed to delete %s for %s: %s",
                    self.backend_name(),
                    kind.value,
                    connection_id,
                    e,
                )
                return False
        logger.debug("Deleted stored %s for %s", kind.value, connection_id)
        return True

    def purge(self, connection_id: str) -> int:
        """Delete every secret kind stored under *connection_id*."""
        return sum(1 for kind in SecretKind if self.delete(connection_id, kind))
