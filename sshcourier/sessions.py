"""Live session bookkeeping and the terminal-session collaborator contract."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class SessionClosedError(RuntimeError):
    """Raised when text is sent to a session whose process has exited."""


class TerminalSession(Protocol):
    """Protocol describing the behaviour an interactive session must implement."""

    title: str

    def send(self, text: str) -> None:
        """Type *text* into the session's input."""

    def recent_output(self) -> str:
        """Return the most recently produced output text, if the session keeps any."""

    def is_alive(self) -> bool:
        """Return True while the session's process is running."""

    def on_terminated(self, callback: Callable[[], None]) -> None:
        """Run *callback* once when the session ends."""

    def close(self) -> None:
        """Terminate the session and release its resources."""


class SessionProvider(Protocol):
    """Creates interactive sessions."""

    def create_session(self, working_dir: Optional[str], title: str) -> TerminalSession:
        """Start a new interactive shell session."""


class SessionRegistry:
    """Tracks live sessions per connection id.

    The registry does not own the sessions; it only records which handles
    belong to which connection. Every operation holds the same lock, so
    registration, lookup and removal are linearizable.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, List[TerminalSession]] = {}
        self._order: List[Tuple[str, TerminalSession]] = []

    def register(self, connection_id: str, session: TerminalSession) -> None:
        with self._lock:
            self._sessions.setdefault(connection_id, []).append(session)
            self._order.append((connection_id, session))
            count = len(self._sessions[connection_id])
        logger.debug("Registered session for %s (now %d)", connection_id, count)

    def all_for(self, connection_id: str) -> List[TerminalSession]:
        with self._lock:
            return list(self._sessions.get(connection_id, ()))

    def count_for(self, connection_id: str) -> int:
        with self._lock:
            return len(self._sessions.get(connection_id, ()))

    def total(self) -> int:
        with self._lock:
            return len(self._order)

    def latest(self) -> Optional[Tuple[str, TerminalSession]]:
        """Return the most recently registered ``(connection_id, session)`` pair."""
        with self._lock:
            return self._order[-1] if self._order else None

    def snapshot_all(self) -> Dict[str, List[TerminalSession]]:
        with self._lock:
            return {cid: list(sessions) for cid, sessions in self._sessions.items()}

    def remove_one(self, connection_id: str, session: TerminalSession) -> bool:
        with self._lock:
            sessions = self._sessions.get(connection_id)
            if not sessions or not _discard(sessions, session):
                return False
            if not sessions:
                del self._sessions[connection_id]
            self._order = [
                entry for entry in self._order
                if not (entry[0] == connection_id and entry[1] is session)
            ]
            remaining = len(sessions)
        logger.debug("Sessions remaining for connection %s: %d", connection_id, remaining)
        return True

    def remove_all(self, connection_id: str) -> int:
        with self._lock:
            sessions = self._sessions.pop(connection_id, [])
            self._order = [entry for entry in self._order if entry[0] != connection_id]
        if sessions:
            logger.debug("Removed %d sessions for connection %s", len(sessions), connection_id)
        return len(sessions)


def _discard(sessions: List[TerminalSession], session: TerminalSession) -> bool:
    # Identity, not equality: two handles may compare equal
    for index, candidate in enumerate(sessions):
        if candidate is session:
            del sessions[index]
            return True
    return False
