"""
PTY-backed interactive sessions.

Each session runs the user's login shell on its own pseudo-terminal so that
``ssh`` can prompt on ``/dev/tty`` exactly as it would in a terminal window.
A reader thread drains the PTY master, keeps a bounded tail of the output
for prompt detection, and notifies listeners when the shell exits.
"""

from __future__ import annotations

import codecs
import fcntl
import logging
import os
import pty
import pwd
import signal
import struct
import subprocess
import termios
import threading
from typing import Callable, List, Optional

from .sessions import SessionClosedError

logger = logging.getLogger(__name__)

OutputListener = Callable[[bytes], None]


def discover_shell() -> str:
    """Discover the user's preferred shell on the host system"""
    shell = os.environ.get('SHELL')
    if shell and os.path.isfile(shell):
        logger.debug(f"Found shell from SHELL env: {shell}")
        return shell

    try:
        shell = pwd.getpwuid(os.getuid()).pw_shell
        if shell and os.path.isfile(shell):
            logger.debug(f"Found shell from pwd module: {shell}")
            return shell
    except (KeyError, OSError) as e:
        logger.debug(f"Failed to get shell from pwd: {e}")

    logger.warning("Could not determine user shell, falling back to /bin/sh")
    return '/bin/sh'


def _claim_controlling_tty():
    # Runs in the child after setsid(); stdin is already the PTY slave
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtySession:
    """A shell process attached to a pseudo-terminal."""

    def __init__(
        self,
        argv: List[str],
        *,
        title: str = "",
        cwd: Optional[str] = None,
        buffer_chars: int = 65536,
        rows: int = 24,
        cols: int = 80,
        output_listener: Optional[OutputListener] = None,
    ):
        self.title = title
        self._buffer_chars = buffer_chars
        self._lock = threading.Lock()
        self._output = ""
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._listeners: List[OutputListener] = [output_listener] if output_listener else []
        self._terminated_callbacks: List[Callable[[], None]] = []
        self._alive = True
        self.exit_status: Optional[int] = None

        master_fd, slave_fd = pty.openpty()
        self.master_fd = master_fd
        self.resize(rows, cols)

        env = os.environ.copy()
        env['TERM'] = env.get('TERM') or 'xterm-256color'

        try:
            self.process = subprocess.Popen(
                argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd or os.path.expanduser('~'),
                env=env,
                start_new_session=True,
                preexec_fn=_claim_controlling_tty,
                close_fds=True,
            )
        except Exception:
            os.close(master_fd)
            raise
        finally:
            # Parent keeps only the master side
            os.close(slave_fd)

        logger.info(f"Spawned session '{title}': {argv[0]} (PID: {self.process.pid})")

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"sshcourier-pty-{self.process.pid}",
            daemon=True,
        )
        self._reader.start()

    # ---------------------------------------------------------------- contract
    def send(self, text: str) -> None:
        self.write_bytes(text.encode('utf-8'))

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes to the shell, e.g. keystrokes relayed from a terminal."""
        if not self._alive:
            raise SessionClosedError(f"Session '{self.title}' has terminated")
        try:
            while data:
                written = os.write(self.master_fd, data)
                data = data[written:]
        except OSError as e:
            raise SessionClosedError(f"Session '{self.title}' is not writable: {e}") from e

    def recent_output(self) -> str:
        with self._lock:
            return self._output

    def is_alive(self) -> bool:
        return self._alive

    def on_terminated(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._alive:
                self._terminated_callbacks.append(callback)
                return
        callback()

    def close(self, timeout: float = 2.0) -> None:
        """Hang up the shell's process group and wait for the reader to finish."""
        if self._alive:
            self._signal_group(signal.SIGHUP)
            self._reader.join(timeout)
            if self._reader.is_alive():
                self._signal_group(signal.SIGKILL)
                self._reader.join(timeout)

    # ------------------------------------------------------------------ extras
    def add_output_listener(self, listener: OutputListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def resize(self, rows: int, cols: int) -> None:
        """Set the PTY size"""
        try:
            winsize = struct.pack('HHHH', rows, cols, 0, 0)
            fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, winsize)
        except OSError as e:
            logger.debug(f"Failed to set PTY size: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session ends; returns False on timeout."""
        self._reader.join(timeout)
        return not self._reader.is_alive()

    # ----------------------------------------------------------------- private
    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            logger.debug("Session process group already gone")
        except OSError as e:
            logger.debug(f"Failed to signal session process group: {e}")

    def _read_loop(self) -> None:
        try:
            while True:
                try:
                    data = os.read(self.master_fd, 4096)
                except OSError:
                    # EIO once the slave side has no more writers
                    break
                if not data:
                    break
                self._consume(data)
        finally:
            self._finish()

    def _consume(self, data: bytes) -> None:
        text = self._decoder.decode(data)
        with self._lock:
            self._output = (self._output + text)[-self._buffer_chars:]
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(data)
            except Exception:
                logger.debug("Output listener failed", exc_info=True)

    def _finish(self) -> None:
        try:
            self.exit_status = self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._signal_group(signal.SIGKILL)
            self.exit_status = self.process.wait()
        try:
            os.close(self.master_fd)
        except OSError:
            pass

        with self._lock:
            self._alive = False
            callbacks = list(self._terminated_callbacks)
            self._terminated_callbacks.clear()
        logger.info(f"Session '{self.title}' ended with status {self.exit_status}")

        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Session termination callback failed")


class PtySessionProvider:
    """Creates :class:`PtySession` objects running the user's login shell."""

    def __init__(
        self,
        shell: Optional[str] = None,
        buffer_chars: int = 65536,
        output_listener: Optional[OutputListener] = None,
    ):
        self.shell = shell
        self.buffer_chars = buffer_chars
        self.output_listener = output_listener

    def create_session(self, working_dir: Optional[str], title: str) -> PtySession:
        shell = self.shell or discover_shell()
        rows, cols = _current_terminal_size()
        return PtySession(
            [shell, '-l'],
            title=title,
            cwd=working_dir,
            buffer_chars=self.buffer_chars,
            rows=rows,
            cols=cols,
            output_listener=self.output_listener,
        )


def _current_terminal_size():
    try:
        size = os.get_terminal_size()
        return size.lines, size.columns
    except OSError:
        return 24, 80
