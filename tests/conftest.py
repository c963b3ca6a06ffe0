import os
import sys

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError, PasswordSetError

# Ensure project root is on sys.path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps secrets in a dict for the test session."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.store = {}
        self.fail_on_set = False

    def set_password(self, service, username, password):
        if self.fail_on_set:
            raise PasswordSetError("backend refused the secret")
        self.store[(service, username)] = password

    def get_password(self, service, username):
        return self.store.get((service, username))

    def delete_password(self, service, username):
        try:
            del self.store[(service, username)]
        except KeyError:
            raise PasswordDeleteError("not found")


@pytest.fixture(autouse=True)
def memory_keyring(tmp_path, monkeypatch):
    backend = MemoryKeyring()
    previous = keyring.get_keyring()
    keyring.set_keyring(backend)

    monkeypatch.setenv('SSHCOURIER_CONFIG_DIR', str(tmp_path / 'config'))
    monkeypatch.setenv('SSHCOURIER_DATA_DIR', str(tmp_path / 'data'))

    yield backend

    keyring.set_keyring(previous)
