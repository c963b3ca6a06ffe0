"""Connection profile model shared by the repository, builder and automation."""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class AuthMode(str, Enum):
    PASSWORD = "password"
    PUBLIC_KEY = "public_key"


class OsFamily(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"


class SudoPolicy(str, Enum):
    NONE = "none"
    OWN_PASSWORD = "own_password"
    USER_PASSWORD_REUSED = "user_password_reused"


class SecretKind(str, Enum):
    """Dimension secrets are keyed by alongside the connection id."""

    PASSWORD = "password"
    SUDO_PASSWORD = "sudo_password"
    KEY_PASSPHRASE = "key_password"

    @property
    def field_name(self) -> str:
        return _SECRET_FIELDS[self]


_SECRET_FIELDS = {
    SecretKind.PASSWORD: "password",
    SecretKind.SUDO_PASSWORD: "sudo_password",
    SecretKind.KEY_PASSPHRASE: "key_passphrase",
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _coerce_enum(enum_cls, value, default):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except (TypeError, ValueError):
        return default


@dataclass
class ConnectionProfile:
    """A stored SSH connection configuration.

    ``sealed`` tells which form the secret fields are in: ``False`` means
    they hold real values (plaintext form), ``True`` means they hold opaque
    markers or ``None`` (at-rest form). Only sealed profiles are persisted.
    """

    alias: str = ""
    host: str = ""
    port: int = 22
    username: str = ""
    auth_mode: AuthMode = AuthMode.PASSWORD
    key_path: str = ""
    key_passphrase: Optional[str] = None
    password: Optional[str] = None
    os_family: OsFamily = OsFamily.LINUX
    post_connect_commands: List[str] = field(default_factory=list)
    sudo_policy: SudoPolicy = SudoPolicy.NONE
    sudo_password: Optional[str] = None
    maximize_on_connect: bool = False
    id: str = field(default_factory=_new_id)
    sealed: bool = False

    def __post_init__(self):
        if not 1 <= int(self.port) <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {self.port}")
        self.port = int(self.port)
        self.auth_mode = _coerce_enum(AuthMode, self.auth_mode, AuthMode.PASSWORD)
        self.os_family = _coerce_enum(OsFamily, self.os_family, OsFamily.LINUX)
        self.sudo_policy = _coerce_enum(SudoPolicy, self.sudo_policy, SudoPolicy.NONE)
        self.post_connect_commands = list(self.post_connect_commands or [])

    def __str__(self):
        return f"{self.alias} ({self.target})"

    @property
    def target(self) -> str:
        if self.username:
            return f"{self.username}@{self.host}"
        return self.host

    @property
    def uses_key(self) -> bool:
        return self.auth_mode is AuthMode.PUBLIC_KEY

    # ------------------------------------------------------------------ copies
    def with_changes(self, **changes: Any) -> "ConnectionProfile":
        """Return a copy with *changes* applied; the identity is preserved."""
        if "id" in changes and changes["id"] != self.id:
            raise ValueError("with_changes() cannot change the profile id; use duplicate()")
        changes.setdefault("post_connect_commands", list(self.post_connect_commands))
        return dataclasses.replace(self, **changes)

    def duplicate(self) -> "ConnectionProfile":
        """Return a copy under a fresh id, suitable for adding as a new profile."""
        copy = dataclasses.replace(self, post_connect_commands=list(self.post_connect_commands))
        copy.id = _new_id()
        copy.alias = f"{self.alias} (copy)" if self.alias else "(copy)"
        return copy

    # ----------------------------------------------------------------- secrets
    def secret_value(self, kind: SecretKind) -> Optional[str]:
        return getattr(self, kind.field_name)

    def sudo_password_source(self) -> Optional[str]:
        """Return the password to type at a sudo prompt, if one is configured."""
        if self.sudo_password:
            return self.sudo_password
        if self.sudo_policy is SudoPolicy.USER_PASSWORD_REUSED and self.password:
            return self.password
        return None

    def command_lines(self) -> Iterator[str]:
        """Yield post-connect commands, skipping blank lines and ``#`` comments."""
        for line in self.post_connect_commands:
            if not line or not line.strip():
                continue
            if line.lstrip().startswith("#"):
                continue
            yield line

    def needs_automation(self) -> bool:
        if self.uses_key and self.key_passphrase:
            return True
        if self.sudo_policy is not SudoPolicy.NONE and self.os_family is OsFamily.LINUX:
            return True
        return any(True for _ in self.command_lines())

    # ----------------------------------------------------------- serialization
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alias": self.alias,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "auth_mode": self.auth_mode.value,
            "key_path": self.key_path,
            "key_passphrase": self.key_passphrase,
            "password": self.password,
            "os_family": self.os_family.value,
            "post_connect_commands": list(self.post_connect_commands),
            "sudo_policy": self.sudo_policy.value,
            "sudo_password": self.sudo_password,
            "maximize_on_connect": self.maximize_on_connect,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, sealed: bool = False) -> "ConnectionProfile":
        known = {f.name for f in dataclasses.fields(cls)} - {"sealed"}
        kwargs = {key: value for key, value in data.items() if key in known}
        if not kwargs.get("id"):
            kwargs.pop("id", None)
        commands = kwargs.get("post_connect_commands")
        if isinstance(commands, str):
            kwargs["post_connect_commands"] = commands.splitlines()
        return cls(sealed=sealed, **kwargs)

    def describe(self) -> Dict[str, Any]:
        """Connection details safe for logs: secrets are reduced to presence flags."""
        details = {
            "id": self.id,
            "alias": self.alias,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "os_family": self.os_family.value,
            "auth_mode": self.auth_mode.value,
            "sudo_policy": self.sudo_policy.value,
            "commands": sum(1 for _ in self.command_lines()),
        }
        if self.uses_key:
            details["key_path"] = self.key_path
            details["key_passphrase_provided"] = bool(self.key_passphrase)
        else:
            details["password_provided"] = bool(self.password)
        details["sudo_password_provided"] = bool(self.sudo_password)
        return details
