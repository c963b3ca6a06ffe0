"""Ending live sessions by typing the shell's termination sequence."""

import logging
from typing import Optional

from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

DISCONNECT_SEQUENCES = {
    'exit': 'exit\n',
    'eof': '\x04',
}


class DisconnectController:
    """Sends a termination sequence to registered sessions.

    Termination is asynchronous: the remote shell exits on its own after
    receiving the sequence. The registry handle is dropped immediately so
    the session no longer counts as live.
    """

    def __init__(self, registry: SessionRegistry, sequence: str = 'exit'):
        self.registry = registry
        self.sequence = DISCONNECT_SEQUENCES.get(sequence, DISCONNECT_SEQUENCES['exit'])

    def disconnect_one(self, connection_id: Optional[str] = None) -> int:
        """Disconnect a single session and return how many were signalled (0 or 1).

        With *connection_id* the first session registered for it is chosen,
        otherwise the most recently registered session overall.
        """
        if connection_id is not None:
            sessions = self.registry.all_for(connection_id)
            if not sessions:
                logger.info("No active session to disconnect for %s", connection_id)
                return 0
            session = sessions[0]
        else:
            latest = self.registry.latest()
            if latest is None:
                logger.info("No active session to disconnect")
                return 0
            connection_id, session = latest

        self._send_sequence(connection_id, session)
        self.registry.remove_one(connection_id, session)
        return 1

    def disconnect_all(self, connection_id: str) -> int:
        """Signal every session for *connection_id* and forget them all."""
        sessions = self.registry.all_for(connection_id)
        if not sessions:
            logger.info("No active sessions to disconnect for %s", connection_id)
            return 0
        for session in sessions:
            self._send_sequence(connection_id, session)
        removed = self.registry.remove_all(connection_id)
        logger.info("Disconnected %d session(s) for %s", removed, connection_id)
        return removed

    def _send_sequence(self, connection_id, session) -> None:
        try:
            session.send(self.sequence)
        except Exception as e:
            logger.warning(
                "Failed to send disconnect sequence to %s (%s): %s",
                getattr(session, 'title', '?'),
                connection_id,
                e,
            )
