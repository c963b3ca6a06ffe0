"""
Connection repository for sshcourier
Persists connection profiles and keeps their secrets in the SecretStore
"""

import json
import logging
import os
import stat
import tempfile
import threading
from typing import Dict, List, Optional

from .command_builder import build_ssh_command
from .models import ConnectionProfile, SecretKind
from .secret_store import SecretStore, SecretStoreError

logger = logging.getLogger(__name__)

# Stored in place of a secret in the at-rest form
SECRET_MARKER = "encrypted:true"

STORE_VERSION = 1


class DuplicateIdError(ValueError):
    """Raised when adding a profile whose id is already stored."""


def _ensure_plaintext(profile: ConnectionProfile) -> None:
    if profile.sealed:
        raise ValueError(f"Profile {profile.id} is in at-rest form; pass the plaintext form")


class ConnectionRepository:
    """Ordered collection of connection profiles.

    Profiles are held in at-rest form only. Plaintext secrets exist in
    copies handed out by :meth:`get_plaintext` and never flow back into the
    stored collection.
    """

    def __init__(self, secret_store: SecretStore, storage_path: Optional[str] = None):
        self.secret_store = secret_store
        self.storage_path = storage_path
        self._lock = threading.Lock()
        self._connections: List[ConnectionProfile] = []
        if storage_path:
            self._connections = self._load()

    # ------------------------------------------------------------------ reads
    def list(self) -> List[ConnectionProfile]:
        """Return a snapshot of all profiles in at-rest form."""
        with self._lock:
            return [profile.with_changes() for profile in self._connections]

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def get(self, connection_id: str) -> Optional[ConnectionProfile]:
        with self._lock:
            stored = self._find(connection_id)
            return stored.with_changes() if stored else None

    def find_by_alias(self, alias: str) -> List[ConnectionProfile]:
        with self._lock:
            return [p.with_changes() for p in self._connections if p.alias == alias]

    def get_plaintext(self, connection_id: str) -> Optional[ConnectionProfile]:
        """Return a decrypted copy of the profile; the stored copy is untouched."""
        stored = self.get(connection_id)
        if stored is None:
            return None
        return self._unseal(stored)

    def duplicate(self, connection_id: str) -> Optional[ConnectionProfile]:
        """Return a plaintext duplicate under a fresh id, or ``None``."""
        plaintext = self.get_plaintext(connection_id)
        if plaintext is None:
            return None
        return plaintext.duplicate()

    def generate_connect_command(self, connection_id: str) -> Optional[str]:
        """Return the ssh command for the profile, or ``None`` if it is unknown."""
        profile = self.get_plaintext(connection_id)
        if profile is None:
            return None
        return build_ssh_command(profile)

    # ---------------------------------------------------------------- writes
    def add(self, profile: ConnectionProfile) -> ConnectionProfile:
        """Store a plaintext profile; returns the sealed copy that was stored.

        Nothing is kept when the keyring or the connections file cannot be
        written: secrets already put for the id are purged again.
        """
        _ensure_plaintext(profile)
        with self._lock:
            if self._find(profile.id) is not None:
                raise DuplicateIdError(f"Connection id {profile.id} already exists")
            try:
                sealed = self._seal(profile)
                self._save(self._connections + [sealed])
            except Exception:
                self.secret_store.purge(profile.id)
                raise
            self._connections.append(sealed)
        logger.info("Added connection %s", sealed.alias or sealed.id)
        return sealed.with_changes()

    def update(self, profile: ConnectionProfile) -> bool:
        """Replace the stored profile with the same id.

        An unknown id is a no-op that returns False. Callers that must not
        lose edits should check the return value. If the new form cannot be
        persisted, the previous secrets are written back and the error is
        raised.
        """
        _ensure_plaintext(profile)
        with self._lock:
            index = self._index_of(profile.id)
            if index is None:
                logger.debug("Update ignored; no connection with id %s", profile.id)
                return False
            previous = self._unseal(self._connections[index])
            try:
                sealed = self._seal(profile)
                updated = list(self._connections)
                updated[index] = sealed
                self._save(updated)
            except Exception:
                self._restore_secrets(previous)
                raise
            self._connections[index] = sealed
        logger.info("Updated connection %s", profile.alias or profile.id)
        return True

    def remove(self, connection_id: str) -> bool:
        """Drop the profile, then purge its secrets. Idempotent."""
        with self._lock:
            index = self._index_of(connection_id)
            if index is None:
                return False
            remaining = self._connections[:index] + self._connections[index + 1:]
            self._save(remaining)
            removed = self._connections[index]
            self._connections = remaining
            self.secret_store.purge(connection_id)
        logger.info("Removed connection %s", removed.alias or connection_id)
        return True

    # --------------------------------------------------------------- helpers
    def _find(self, connection_id: str) -> Optional[ConnectionProfile]:
        for profile in self._connections:
            if profile.id == connection_id:
                return profile
        return None

    def _index_of(self, connection_id: str) -> Optional[int]:
        for index, profile in enumerate(self._connections):
            if profile.id == connection_id:
                return index
        return None

    def _seal(self, profile: ConnectionProfile) -> ConnectionProfile:
        """Move secrets into the SecretStore and return the at-rest copy."""
        markers: Dict[str, Optional[str]] = {}
        for kind in SecretKind:
            value = profile.secret_value(kind)
            if value:
                self.secret_store.put(profile.id, kind, value)
                markers[kind.field_name] = SECRET_MARKER
            else:
                self.secret_store.delete(profile.id, kind)
                markers[kind.field_name] = None
        return profile.with_changes(sealed=True, **markers)

    def _restore_secrets(self, previous: ConnectionProfile) -> None:
        try:
            self._seal(previous)
        except SecretStoreError as e:
            logger.error(f"Could not restore secrets for {previous.id}: {e}")

    def _unseal(self, profile: ConnectionProfile) -> ConnectionProfile:
        secrets: Dict[str, Optional[str]] = {}
        for kind in SecretKind:
            if profile.secret_value(kind) == SECRET_MARKER:
                secrets[kind.field_name] = self.secret_store.get(profile.id, kind)
            else:
                secrets[kind.field_name] = None
        return profile.with_changes(sealed=False, **secrets)

    def _load(self) -> List[ConnectionProfile]:
        if not os.path.exists(self.storage_path):
            return []
        try:
            with open(self.storage_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            records = data.get('connections', []) if isinstance(data, dict) else []
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load connections from {self.storage_path}: {e}")
            return []

        profiles: List[ConnectionProfile] = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                profile = ConnectionProfile.from_dict(record, sealed=True)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid connection record {record.get('id')!r}: {e}")
                continue
            # Anything other than the marker in a secret slot is not trusted
            for kind in SecretKind:
                if profile.secret_value(kind) not in (None, SECRET_MARKER):
                    setattr(profile, kind.field_name, None)
            profiles.append(profile)
        logger.debug("Loaded %d connections from %s", len(profiles), self.storage_path)
        return profiles

    def _save(self, connections: List[ConnectionProfile]) -> None:
        if not self.storage_path:
            return
        payload = {
            'version': STORE_VERSION,
            'connections': [profile.to_dict() for profile in connections if profile.sealed],
        }
        directory = os.path.dirname(self.storage_path) or '.'
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='.connections-', suffix='.json', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.storage_path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._ensure_secure_permissions(self.storage_path, stat.S_IRUSR | stat.S_IWUSR)

    def _ensure_secure_permissions(self, path: str, mode: int):
        try:
            os.chmod(path, mode)
        except OSError as e:
            logger.debug(f"Could not set permissions on {path}: {e}")
