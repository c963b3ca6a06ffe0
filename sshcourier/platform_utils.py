"""Platform-related utility functions."""

import logging
import os
from pathlib import Path

APP_NAME = "sshcourier"

logger = logging.getLogger(__name__)


def _normalize_path(path: str) -> str:
    """Expand user references and return an absolute path."""
    return os.path.abspath(os.path.expanduser(path))


def is_posix() -> bool:
    """Return True when pty-backed sessions are available."""
    return os.name == "posix"


def _home_dir() -> str:
    expanded = os.path.expanduser("~")
    if expanded and expanded != "~":
        return expanded
    try:
        return str(Path.home())
    except Exception:
        logger.warning(
            "Unable to determine the user's home directory; "
            "falling back to the current working directory."
        )
        return os.getcwd()


def get_config_dir() -> str:
    """Return the per-user configuration directory for sshcourier.

    ``SSHCOURIER_CONFIG_DIR`` wins, then ``XDG_CONFIG_HOME``, then
    ``~/.config``.
    """
    override = os.environ.get("SSHCOURIER_CONFIG_DIR")
    if override:
        return _normalize_path(override)

    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(_home_dir(), ".config")
    return _normalize_path(os.path.join(base, APP_NAME))


def get_data_dir() -> str:
    """Return the per-user data directory (logs live here)."""
    override = os.environ.get("SSHCOURIER_DATA_DIR")
    if override:
        return _normalize_path(override)

    base = os.environ.get("XDG_DATA_HOME") or os.path.join(_home_dir(), ".local", "share")
    return _normalize_path(os.path.join(base, APP_NAME))
