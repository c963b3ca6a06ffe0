"""
Helpers for preparing the ``ssh`` command typed into a new session.

Secrets never appear in the command: passwords, passphrases and sudo
passwords are delivered later by typing into the live session, so the
command line is safe to log and to echo in the terminal.
"""

from __future__ import annotations

import os
import shlex
from typing import List

from .models import ConnectionProfile

HOST_KEY_OPTION = "StrictHostKeyChecking=no"


def build_ssh_argv(profile: ConnectionProfile) -> List[str]:
    """
    Return the argv list for launching SSH for *profile*.

    Args:
        profile: :class:`sshcourier.models.ConnectionProfile`, in either form;
            only non-secret fields are read.
    """

    host = (profile.host or "").strip()
    if not host:
        raise ValueError("Connection is missing a target host")

    cmd: List[str] = ["ssh"]

    port = profile.port or 22
    if port != 22:
        cmd.extend(["-p", str(port)])

    key_path = (profile.key_path or "").strip()
    if profile.uses_key and key_path:
        cmd.extend(["-i", os.path.expanduser(key_path)])

    username = (profile.username or "").strip()
    cmd.append(f"{username}@{host}" if username else host)

    cmd.extend(["-o", HOST_KEY_OPTION])
    return cmd


def build_ssh_command(profile: ConnectionProfile) -> str:
    """Return the shell command line for *profile*, quoted for a POSIX shell."""
    return shlex.join(build_ssh_argv(profile))


__all__ = ["build_ssh_argv", "build_ssh_command"]
