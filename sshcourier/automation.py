"""
Authentication automation for freshly launched SSH sessions.

There is no acknowledgement channel back from a remote interactive shell,
so delivery is best effort. :class:`TimedAuthAutomation` types each secret
or command after a fixed delay. :class:`PromptDetectingAutomation` polls the
session's recent output and waits for a matching prompt instead. Both run on
their own daemon thread and never raise into the caller: failures end the
run and are logged, leaving the session open as it was.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .config import (
    DEFAULT_LOGIN_BANNERS,
    DEFAULT_PASSPHRASE_PROMPTS,
    DEFAULT_SHELL_PROMPT_SUFFIXES,
    DEFAULT_SUDO_PROMPTS,
)
from .models import ConnectionProfile, OsFamily, SudoPolicy
from .sessions import TerminalSession

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]

SUDO_SHELL_COMMAND = "sudo -s"

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")


def log_notifier(message: str, level: str = "info") -> None:
    """Default notifier: user-facing messages end up in the log."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.log(log_level, message)


@dataclass
class AutomationSettings:
    """Timings (seconds) and prompt vocabularies used by the automation."""

    strategy: str = "timed"
    initial_delay: float = 3.0
    establish_delay: float = 3.0
    sudo_prompt_delay: float = 1.5
    command_delay: float = 1.0
    poll_interval: float = 0.25
    detection_timeout: float = 15.0
    passphrase_prompts: List[str] = field(default_factory=lambda: list(DEFAULT_PASSPHRASE_PROMPTS))
    sudo_prompts: List[str] = field(default_factory=lambda: list(DEFAULT_SUDO_PROMPTS))
    shell_prompt_suffixes: List[str] = field(default_factory=lambda: list(DEFAULT_SHELL_PROMPT_SUFFIXES))
    login_banners: List[str] = field(default_factory=lambda: list(DEFAULT_LOGIN_BANNERS))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AutomationSettings":
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in values.items() if key in known})


class AutomationAbandoned(Exception):
    """The session ended or the run was abandoned; stop quietly."""


class DetectionTimeout(Exception):
    """A prompt did not appear before the overall detection deadline."""


class AuthAutomation:
    """Ordered delivery of passphrase, sudo password and startup commands.

    Subclasses decide how to wait for each milestone by implementing the
    ``_before_*`` hooks; the step order lives here.
    """

    def __init__(
        self,
        session: TerminalSession,
        profile: ConnectionProfile,
        settings: Optional[AutomationSettings] = None,
        notifier: Optional[Notifier] = None,
    ):
        if profile.sealed:
            raise ValueError("Automation needs the plaintext form of the profile")
        self.session = session
        self.profile = profile
        self.settings = settings or AutomationSettings()
        self.notify = notifier or log_notifier
        self.step = "idle"
        self.escalated = False
        self.completed = False
        self._abandoned = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------- lifecycle
    def start(self) -> threading.Thread:
        """Run the automation on a dedicated daemon thread and return at once."""
        if self._thread is not None:
            raise RuntimeError("Automation already started")
        self._thread = threading.Thread(
            target=self.run,
            name=f"sshcourier-automation-{self.profile.alias or self.profile.id}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Started automation for %s", self.profile.alias)
        return self._thread

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def abandon(self) -> None:
        """Stop delivering; any pending wait returns immediately."""
        self._abandoned.set()

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def run(self) -> None:
        """Execute all steps; never raises."""
        alias = self.profile.alias or self.profile.id
        try:
            self._run_steps()
            self.completed = True
            logger.info("Automation completed for %s", alias)
        except AutomationAbandoned:
            logger.info("Automation for %s abandoned during step '%s'", alias, self.step)
        except DetectionTimeout as e:
            logger.warning("Automation for %s timed out during step '%s': %s", alias, self.step, e)
        except Exception:
            logger.exception("Error in automation for %s during step '%s'", alias, self.step)

    # ----------------------------------------------------------------- steps
    def _run_steps(self) -> None:
        profile = self.profile

        if profile.uses_key and profile.key_passphrase:
            self.step = "key passphrase"
            self._before_passphrase()
            self._send(profile.key_passphrase)

        self.step = "establish"
        self._after_login()

        linux = profile.os_family is OsFamily.LINUX
        if profile.sudo_policy is not SudoPolicy.NONE and linux:
            self.step = "sudo shell"
            password = profile.sudo_password_source()
            if not password:
                self._warn_missing_sudo_password("privilege escalation")
                return
            self._before_command()
            self._send(SUDO_SHELL_COMMAND)
            self._before_sudo_password()
            self._send(password)
            self.escalated = True
            self._after_sudo_password()

        commands = list(profile.command_lines())
        if not commands:
            return

        self.notify("Sending user-defined startup commands...", "info")
        for index, command in enumerate(commands, start=1):
            self.step = f"command {index}/{len(commands)}"
            self._before_command()
            self._send(command)

            if linux and _is_sudo_command(command) and not self.escalated:
                password = profile.sudo_password_source()
                if not password:
                    self._warn_missing_sudo_password("startup command")
                    return
                self._before_sudo_password()
                self._send(password)
                self._after_sudo_password()
            else:
                self._after_command()

    # ------------------------------------------------------------------ hooks
    def _before_passphrase(self) -> None:
        raise NotImplementedError

    def _after_login(self) -> None:
        raise NotImplementedError

    def _before_command(self) -> None:
        raise NotImplementedError

    def _before_sudo_password(self) -> None:
        raise NotImplementedError

    def _after_sudo_password(self) -> None:
        pass

    def _after_command(self) -> None:
        pass

    # ---------------------------------------------------------------- helpers
    def _send(self, line: str) -> None:
        if self.abandoned or not self.session.is_alive():
            raise AutomationAbandoned()
        self.session.send(line + "\n")

    def _sleep(self, seconds: float) -> None:
        if seconds > 0 and self._abandoned.wait(seconds):
            raise AutomationAbandoned()
        if self.abandoned:
            raise AutomationAbandoned()

    def _warn_missing_sudo_password(self, context: str) -> None:
        alias = self.profile.alias or self.profile.id
        logger.warning("No sudo password configured for %s (%s); stopping automation", alias, context)
        self.notify(
            f"No SUDO password provided for '{alias}', but a SUDO command was required.\n"
            "Cancelling the rest...",
            "warning",
        )


class TimedAuthAutomation(AuthAutomation):
    """Fixed-delay scripting: each step waits a configured number of seconds."""

    def _before_passphrase(self) -> None:
        self._sleep(self.settings.initial_delay)

    def _after_login(self) -> None:
        self._sleep(self.settings.establish_delay)

    def _before_command(self) -> None:
        pass

    def _before_sudo_password(self) -> None:
        self._sleep(self.settings.sudo_prompt_delay)

    def _after_sudo_password(self) -> None:
        self._sleep(self.settings.sudo_prompt_delay)

    def _after_command(self) -> None:
        self._sleep(self.settings.command_delay)


class PromptDetectingAutomation(AuthAutomation):
    """Waits for prompts in the session output instead of sleeping blindly.

    The prompt vocabularies are plain, case-insensitive substrings and are
    locale dependent; they can be extended in the configuration.

    The local shell's own prompt is printed after the ssh command is typed,
    so a shell prompt only counts once ssh has visibly reached the remote
    side: an answered passphrase prompt, or a passphrase/password prompt or
    login banner earlier in the output.
    """

    def __init__(self, *args, clock: Callable[[], float] = time.monotonic, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock
        self._deadline: Optional[float] = None
        self._mark = ""
        self._logged_in = False

    def _run_steps(self) -> None:
        self._deadline = self._clock() + self.settings.detection_timeout
        self._mark = self.session.recent_output()
        super()._run_steps()

    def _send(self, line: str) -> None:
        super()._send(line)
        self._mark = self.session.recent_output()

    def _before_passphrase(self) -> None:
        self._wait_for(lambda text: _contains_any(text, self.settings.passphrase_prompts), "passphrase prompt")
        self._logged_in = True

    def _after_login(self) -> None:
        pass

    def _before_command(self) -> None:
        if not self._logged_in:
            self._wait_for(self._remote_prompt_after_login, "remote shell prompt")
            self._logged_in = True
            return
        self._wait_for(lambda text: _ends_with_prompt(text, self.settings.shell_prompt_suffixes), "shell prompt")

    def _remote_prompt_after_login(self, text: str) -> bool:
        plain = strip_ansi(text)
        milestones = list(self.settings.passphrase_prompts) + list(self.settings.login_banners)
        end = _end_of_last(plain, milestones)
        if end is None:
            return False
        return _ends_with_prompt(plain[end:], self.settings.shell_prompt_suffixes)

    def _before_sudo_password(self) -> None:
        self._wait_for(lambda text: _contains_any(text, self.settings.sudo_prompts), "sudo password prompt")

    def _wait_for(self, matches: Callable[[str], bool], what: str) -> None:
        while True:
            if self.abandoned or not self.session.is_alive():
                raise AutomationAbandoned()
            fresh = _new_output(self._mark, self.session.recent_output())
            if matches(fresh):
                logger.debug("Detected %s for %s", what, self.profile.alias)
                return
            if self._clock() >= self._deadline:
                raise DetectionTimeout(f"no {what} within {self.settings.detection_timeout:g}s")
            self._sleep(self.settings.poll_interval)


def create_automation(
    session: TerminalSession,
    profile: ConnectionProfile,
    settings: Optional[AutomationSettings] = None,
    notifier: Optional[Notifier] = None,
) -> AuthAutomation:
    """Return the automation implementation selected by ``settings.strategy``."""
    settings = settings or AutomationSettings()
    if settings.strategy == "detect":
        return PromptDetectingAutomation(session, profile, settings, notifier)
    return TimedAuthAutomation(session, profile, settings, notifier)


def _is_sudo_command(command: str) -> bool:
    words = command.split()
    return bool(words) and words[0] == "sudo"


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE_RE.sub("", text)


def _contains_any(text: str, needles: Sequence[str]) -> bool:
    lowered = strip_ansi(text).lower()
    return any(needle.lower() in lowered for needle in needles)


def _end_of_last(text: str, needles: Sequence[str]) -> Optional[int]:
    """Index just past the last case-insensitive occurrence of any needle."""
    lowered = text.lower()
    ends = [lowered.rfind(n.lower()) + len(n) for n in needles if n and n.lower() in lowered]
    return max(ends) if ends else None


def _ends_with_prompt(text: str, suffixes: Sequence[str]) -> bool:
    lines = [line for line in strip_ansi(text).replace("\r", "\n").split("\n") if line.strip()]
    if not lines:
        return False
    last = lines[-1].rstrip()
    return any(last.endswith(suffix.rstrip()) for suffix in suffixes if suffix.strip())


def _new_output(mark: str, current: str) -> str:
    """Return the part of *current* produced after *mark* was captured.

    The output buffer is a bounded tail, so *mark* may have been trimmed
    from the front; in that case its last chunk is searched for instead.
    """
    if not mark:
        return current
    if current.startswith(mark):
        return current[len(mark):]
    anchor = mark[-256:]
    position = current.rfind(anchor)
    if position != -1:
        return current[position + len(anchor):]
    return current
