"""
Connection executor for sshcourier
Opens a session for a stored profile, types the ssh command and starts the
authentication automation
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .automation import AuthAutomation, AutomationSettings, Notifier, create_automation, log_notifier
from .repository import ConnectionRepository
from .sessions import SessionClosedError, SessionProvider, SessionRegistry, TerminalSession

logger = logging.getLogger(__name__)


@dataclass
class ConnectionLaunch:
    """Result of a successful connect: the live session and its automation."""

    connection_id: str
    alias: str
    session: TerminalSession
    automation: Optional[AuthAutomation] = None
    maximize: bool = False


class ConnectionExecutor:
    """Launches connections; authentication continues in the background."""

    def __init__(
        self,
        repository: ConnectionRepository,
        registry: SessionRegistry,
        provider: SessionProvider,
        settings: Optional[AutomationSettings] = None,
        notifier: Optional[Notifier] = None,
        working_dir: Optional[str] = None,
        automation_factory: Callable[..., AuthAutomation] = create_automation,
    ):
        self.repository = repository
        self.registry = registry
        self.provider = provider
        self.settings = settings or AutomationSettings()
        self.notify = notifier or log_notifier
        self.working_dir = working_dir
        self.automation_factory = automation_factory

    def connect(self, connection_id: str) -> Optional[ConnectionLaunch]:
        """Open a new session for *connection_id*.

        Returns as soon as the ssh command has been typed; the passphrase,
        sudo password and startup commands follow on the automation thread.
        Returns None, after notifying, when the connection cannot be started.
        """
        profile = self.repository.get_plaintext(connection_id)
        if profile is None:
            logger.error("Connection not found: %s", connection_id)
            self.notify(f"Connection not found: {connection_id}", "error")
            return None

        try:
            command = self.repository.generate_connect_command(connection_id)
        except ValueError as e:
            command = None
            logger.error("Cannot build ssh command for %s: %s", profile.alias, e)
        if not command:
            self.notify(f"Failed to generate SSH command for '{profile.alias}'", "error")
            return None

        self.log_connection_details(profile.describe())

        try:
            session = self.provider.create_session(self.working_dir, profile.alias)
        except OSError as e:
            logger.error("Failed to start a session for %s: %s", profile.alias, e)
            self.notify(f"Failed to start a session for '{profile.alias}': {e}", "error")
            return None
        self.registry.register(connection_id, session)

        automation: Optional[AuthAutomation] = None
        if profile.needs_automation():
            automation = self.automation_factory(session, profile, self.settings, self.notify)

        def _on_terminated():
            self.registry.remove_one(connection_id, session)
            if automation is not None:
                automation.abandon()
            logger.debug("Session for %s terminated", profile.alias)

        session.on_terminated(_on_terminated)

        try:
            session.send(command + "\n")
        except SessionClosedError as e:
            logger.error("Session for %s closed before the ssh command was sent: %s", profile.alias, e)
            self.registry.remove_one(connection_id, session)
            self.notify(f"Session for '{profile.alias}' ended before connecting", "error")
            return None
        logger.info("Launched connection %s", profile.alias or connection_id)

        if automation is not None:
            automation.start()
        else:
            logger.debug("No automation needed for %s", profile.alias)

        return ConnectionLaunch(
            connection_id=connection_id,
            alias=profile.alias,
            session=session,
            automation=automation,
            maximize=profile.maximize_on_connect,
        )

    def terminal_count(self, connection_id: str) -> int:
        return self.registry.count_for(connection_id)

    def active_sessions(self) -> Dict[str, List[TerminalSession]]:
        return self.registry.snapshot_all()

    def log_connection_details(self, details: Dict) -> None:
        logger.debug("Connection details:")
        for key, value in details.items():
            logger.debug("  %s: %s", key, value)
