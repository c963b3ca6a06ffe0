#!/usr/bin/env python3
"""
sshcourier - SSH connection profiles with automated login
Main application entry point
"""

import argparse
import logging
import os
import select
import signal
import sys
import termios
import tty
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional, Sequence

from . import __version__
from .automation import AutomationSettings, Notifier
from .config import Config
from .disconnect import DisconnectController
from .editor import ProfileEditSession
from .executor import ConnectionExecutor, ConnectionLaunch
from .models import ConnectionProfile
from .platform_utils import get_data_dir
from .repository import ConnectionRepository
from .secret_store import SecretStore, SecretStoreError
from .sessions import SessionClosedError, SessionProvider, SessionRegistry

logger = logging.getLogger(__name__)


class ProfileNotFoundError(LookupError):
    """Raised when a command-line reference matches no profile or several."""


def setup_logging(verbose: bool = False, config: Optional[Config] = None):
    """Set up logging configuration"""
    # Create log directory if it doesn't exist
    log_dir = get_data_dir()
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Clear any existing handlers
    logging.getLogger().handlers.clear()

    # File handler with rotation
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'sshcourier.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)

    # Console handler; only warnings unless verbose, the terminal belongs to the session
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Determine verbosity via config or command line
    if not verbose and config is not None:
        try:
            verbose = bool(config.get_setting('logging.debug_enabled', False))
        except Exception:
            verbose = False

    effective_level = logging.DEBUG if verbose else logging.INFO
    file_handler.setLevel(effective_level)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.setLevel(effective_level)

    logging.getLogger('keyring').setLevel(logging.INFO if verbose else logging.WARNING)
    return effective_level


def stderr_notifier(message: str, level: str = "info") -> None:
    """Notifier used by the command line; safe to call while the terminal is raw."""
    logger.log(logging.WARNING if level in ("warning", "error") else logging.INFO, message)
    text = message.replace("\n", "\r\n")
    sys.stderr.write(f"\r\n[sshcourier] {level}: {text}\r\n")
    sys.stderr.flush()


def _write_stdout(data: bytes) -> None:
    try:
        os.write(sys.stdout.fileno(), data)
    except (OSError, ValueError):
        pass


class Application:
    """Composition root: builds the stores, registry and controllers once."""

    def __init__(
        self,
        config: Optional[Config] = None,
        provider: Optional[SessionProvider] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config or Config()
        self.notify = notifier or stderr_notifier

        session_cfg = self.config.get_session_config()
        security_cfg = self.config.get_security_config()

        self.secret_store = SecretStore(security_cfg['service_name'])
        self.repository = ConnectionRepository(
            self.secret_store,
            os.path.join(self.config.config_dir, 'connections.json'),
        )
        self.registry = SessionRegistry()

        if provider is None:
            from .pty_session import PtySessionProvider

            provider = PtySessionProvider(
                buffer_chars=session_cfg['output_buffer_chars'],
                output_listener=_write_stdout,
            )
        self.provider = provider

        self.executor = ConnectionExecutor(
            self.repository,
            self.registry,
            self.provider,
            settings=AutomationSettings.from_mapping(self.config.get_automation_config()),
            notifier=self.notify,
            working_dir=session_cfg['working_dir'],
        )
        self.disconnector = DisconnectController(self.registry, session_cfg['disconnect_sequence'])
        logger.debug("Secret backend: %s", self.secret_store.backend_name())

    def resolve(self, ref: str) -> ConnectionProfile:
        """Return the at-rest profile whose id, or unique alias, is *ref*."""
        profile = self.repository.get(ref)
        if profile is not None:
            return profile
        matches = self.repository.find_by_alias(ref)
        if len(matches) == 1:
            return matches[0]
        if matches:
            raise ProfileNotFoundError(f"Alias '{ref}' is ambiguous; use one of: {', '.join(p.id for p in matches)}")
        raise ProfileNotFoundError(f"No connection matches '{ref}'")

    def connect(self, ref: str) -> Optional[ConnectionLaunch]:
        return self.executor.connect(self.resolve(ref).id)


def attach(
    session,
    stdin_fd: Optional[int] = None,
    detach: Optional[Callable[[], object]] = None,
) -> Optional[int]:
    """
    Relay the controlling terminal's keystrokes into *session* until it ends.

    Session output is already forwarded to stdout by the provider's listener.
    When input ends while the session is still running, *detach* is called
    first so the remote side can log out; the session is closed only if it
    is still alive after that.
    """
    if stdin_fd is None:
        stdin_fd = sys.stdin.fileno()

    original_termios = None
    try:
        original_termios = termios.tcgetattr(stdin_fd)
        tty.setraw(stdin_fd)
    except Exception as e:
        logger.debug(f"Could not set raw mode on stdin: {e}")

    previous_winch = None
    if hasattr(session, 'resize'):
        def _on_winch(_signum, _frame):
            try:
                size = os.get_terminal_size(stdin_fd)
                session.resize(size.lines, size.columns)
            except OSError:
                pass

        try:
            previous_winch = signal.signal(signal.SIGWINCH, _on_winch)
        except ValueError:
            previous_winch = None

    logger.debug("Starting I/O loop")
    try:
        while session.is_alive():
            readable, _, _ = select.select([stdin_fd], [], [], 0.2)
            if stdin_fd not in readable:
                continue
            try:
                data = os.read(stdin_fd, 4096)
            except OSError as e:
                logger.debug(f"stdin read error: {e}")
                break
            if not data:
                logger.debug("stdin closed")
                break
            try:
                session.write_bytes(data)
            except SessionClosedError:
                break
    finally:
        # Restore terminal settings
        if original_termios:
            try:
                termios.tcsetattr(stdin_fd, termios.TCSADRAIN, original_termios)
            except termios.error:
                pass
        if previous_winch is not None:
            signal.signal(signal.SIGWINCH, previous_winch)

    if session.is_alive() and detach is not None:
        detach()
        session.wait(2)
    if session.is_alive():
        session.close()
    session.wait(5)
    return getattr(session, 'exit_status', None)


# ---------------------------------------------------------------------- commands
def _cmd_list(app: Application, args) -> int:
    profiles = app.repository.list()
    if not profiles:
        print("No connections configured.")
        return 0
    for profile in profiles:
        live = app.executor.terminal_count(profile.id)
        print(f"{profile.id}  {profile.alias:<20}  {profile.target}:{profile.port}  sessions={live}")
    return 0


def _cmd_show(app: Application, args) -> int:
    profile = app.repository.get_plaintext(app.resolve(args.ref).id)
    for key, value in profile.describe().items():
        print(f"{key}: {value}")
    return 0


def _cmd_add(app: Application, args) -> int:
    profile = ProfileEditSession().run()
    if profile is None:
        return 1
    stored = app.repository.add(profile)
    print(stored.id)
    return 0


def _cmd_edit(app: Application, args) -> int:
    current = app.repository.get_plaintext(app.resolve(args.ref).id)
    edited = ProfileEditSession(current).run()
    if edited is None:
        return 1
    if not app.repository.update(edited):
        app.notify(f"Connection '{current.alias}' no longer exists; edits were not saved", "error")
        return 1
    return 0


def _cmd_duplicate(app: Application, args) -> int:
    copy = app.repository.duplicate(app.resolve(args.ref).id)
    stored = app.repository.add(copy)
    print(stored.id)
    return 0


def _cmd_remove(app: Application, args) -> int:
    profile = app.resolve(args.ref)
    app.repository.remove(profile.id)
    print(f"Removed {profile.alias or profile.id}")
    return 0


def _cmd_command(app: Application, args) -> int:
    print(app.repository.generate_connect_command(app.resolve(args.ref).id))
    return 0


def _cmd_connect(app: Application, args) -> int:
    launch = app.connect(args.ref)
    if launch is None:
        return 1
    attach(launch.session, detach=lambda: app.disconnector.disconnect_all(launch.connection_id))
    if launch.automation is not None:
        launch.automation.abandon()
    return 0


def _cmd_sudo_password(app: Application, args) -> int:
    profile = app.repository.get_plaintext(app.resolve(args.ref).id)
    name = profile.alias or profile.id
    if profile.sudo_password:
        password, kind = profile.sudo_password, "Sudo password"
    else:
        password, kind = profile.password, "User password"
    if not password:
        app.notify(f"No SUDO password stored for '{name}'", "warning")
        return 1
    if sys.stdout.isatty():
        app.notify(
            "Refusing to print a password to the terminal; pipe it instead, "
            f"e.g. sshcourier sudo-password {args.ref} | xclip -selection clipboard",
            "error",
        )
        return 1
    sys.stdout.write(password)
    sys.stdout.flush()
    app.notify(f"{kind} for '{name}' written to stdout", "info")
    return 0


COMMANDS = {
    'list': _cmd_list,
    'show': _cmd_show,
    'add': _cmd_add,
    'edit': _cmd_edit,
    'duplicate': _cmd_duplicate,
    'remove': _cmd_remove,
    'command': _cmd_command,
    'connect': _cmd_connect,
    'sudo-password': _cmd_sudo_password,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sshcourier", description="SSH connection profiles with automated login")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List stored connections")
    sub.add_parser("add", help="Create a connection interactively")
    for name, help_text in (
        ("show", "Show connection details (secrets masked)"),
        ("edit", "Edit a connection interactively"),
        ("duplicate", "Copy a connection under a new id"),
        ("remove", "Delete a connection and its stored secrets"),
        ("command", "Print the ssh command for a connection"),
        ("connect", "Open a session and log in"),
        ("sudo-password", "Write the sudo password to a pipe, for pasting at a prompt"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("ref", help="Connection id or alias")
    return parser


def main(argv: Optional[Sequence[str]] = None, app_factory: Callable[..., Application] = Application) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = Config()
    setup_logging(args.verbose, config)

    try:
        app = app_factory(config=config)
        return COMMANDS[args.command](app, args)
    except ProfileNotFoundError as e:
        print(f"sshcourier: {e}", file=sys.stderr)
        return 1
    except SecretStoreError as e:
        logger.error(f"Secret storage failed: {e}")
        print(f"sshcourier: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == '__main__':
    sys.exit(main())
