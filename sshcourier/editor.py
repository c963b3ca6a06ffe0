from __future__ import annotations

import getpass
from typing import Any, Callable, Dict, List, Optional

from .models import AuthMode, ConnectionProfile, OsFamily, SudoPolicy

PromptFunc = Callable[[str], str]
PrintFunc = Callable[[str], None]


class ProfileEditSession:
    """
    Text-mode editor for creating or modifying a connection profile.

    The session interacts through ``input_func``/``secret_func``/``print_func`` so it
    can run both interactively and under tests. Secrets are read with ``secret_func``
    (``getpass`` by default) and never echoed back; an existing secret is shown only
    as ``[stored]``.
    """

    def __init__(
        self,
        profile: Optional[ConnectionProfile] = None,
        *,
        input_func: PromptFunc = input,
        secret_func: PromptFunc = getpass.getpass,
        print_func: PrintFunc = print,
    ):
        if profile is not None and profile.sealed:
            raise ValueError("The editor needs the plaintext form of the profile")
        self.profile = profile or ConnectionProfile()
        self.input = input_func
        self.secret = secret_func
        self.print = print_func

    def run(self) -> Optional[ConnectionProfile]:
        """
        Prompt the user for edits. Returns the edited plaintext profile or ``None`` on cancel.
        """

        try:
            return self._run()
        except (KeyboardInterrupt, EOFError):
            self.print("\nEdit cancelled.")
            return None

    def _run(self) -> Optional[ConnectionProfile]:
        prof = self.profile
        self.print("\n--- Connection editor ---")
        self.print("Press Enter to keep current values, '-' to clear a field, Ctrl+C to abort.\n")

        alias = self._ask_text("Alias", prof.alias, required=True)
        host = self._ask_text("Host", prof.host, required=True)
        port = self._ask_port(prof.port)
        username = self._ask_text("Username", prof.username, allow_clear=True)
        os_family = self._ask_choice(
            "Remote OS [l=linux, w=windows]",
            choices={"l": OsFamily.LINUX, "w": OsFamily.WINDOWS},
            current=prof.os_family,
        )
        auth_mode = self._ask_choice(
            "Authentication [p=password, k=public key]",
            choices={"p": AuthMode.PASSWORD, "k": AuthMode.PUBLIC_KEY},
            current=prof.auth_mode,
        )

        changes: Dict[str, Any] = {
            "alias": alias,
            "host": host,
            "port": port,
            "username": username,
            "os_family": os_family,
            "auth_mode": auth_mode,
        }

        if auth_mode is AuthMode.PUBLIC_KEY:
            changes["key_path"] = self._ask_text("Private key path", prof.key_path, required=True)
            changes["key_passphrase"] = self._ask_secret("Key passphrase", prof.key_passphrase)
            changes["password"] = None
        else:
            changes["key_path"] = ""
            changes["key_passphrase"] = None
            changes["password"] = self._ask_secret("Password", prof.password)

        sudo_policy = self._ask_choice(
            "Sudo [n=none, o=own password, r=reuse login password]",
            choices={
                "n": SudoPolicy.NONE,
                "o": SudoPolicy.OWN_PASSWORD,
                "r": SudoPolicy.USER_PASSWORD_REUSED,
            },
            current=prof.sudo_policy,
        )
        changes["sudo_policy"] = sudo_policy
        if sudo_policy is SudoPolicy.OWN_PASSWORD:
            changes["sudo_password"] = self._ask_secret("Sudo password", prof.sudo_password)
        else:
            changes["sudo_password"] = None

        commands = list(prof.post_connect_commands)
        if self._confirm("Edit post-connect commands? [y/N] ", default=False):
            commands = self._ask_commands(commands)
        changes["post_connect_commands"] = commands

        maximize = self._confirm(
            f"Maximize on connect? [{'Y/n' if prof.maximize_on_connect else 'y/N'}] ",
            default=prof.maximize_on_connect,
        )
        changes["maximize_on_connect"] = maximize

        return prof.with_changes(sealed=False, **changes)

    # ------------------------------------------------------------------ helpers
    def _ask_text(self, label: str, current: str, *, required: bool = False, allow_clear: bool = False) -> str:
        base_prompt = f"{label}"
        if current:
            base_prompt += f" [{current}]"
        if allow_clear and current:
            base_prompt += " (type '-' to clear)"
        base_prompt += ": "

        while True:
            resp = self.input(base_prompt)
            if resp is None:
                resp = ""
            resp = resp.strip()
            if not resp:
                if current or not required:
                    return current
                self.print(f"{label} is required.")
                continue
            if allow_clear and resp == "-":
                return ""
            return resp

    def _ask_secret(self, label: str, current: Optional[str]) -> Optional[str]:
        prompt = f"{label} [stored] (type '-' to clear): " if current else f"{label} (optional): "
        resp = self.secret(prompt)
        if not resp:
            return current
        if resp == "-":
            return None
        return resp

    def _ask_port(self, current: Any) -> int:
        prompt = f"Port [{current}]: "
        while True:
            resp = self.input(prompt)
            if resp is None:
                resp = ""
            resp = resp.strip()
            if not resp:
                try:
                    return int(current)
                except (TypeError, ValueError):
                    current = 22
                    prompt = f"Port [{current}]: "
                    continue
            try:
                value = int(resp)
                if 1 <= value <= 65535:
                    return value
            except ValueError:
                pass
            self.print("Port must be a number between 1 and 65535.")

    def _ask_choice(self, prompt: str, *, choices: Dict[str, Any], current: Any) -> Any:
        normalized_current = None
        for key, value in choices.items():
            if value == current:
                normalized_current = key
                break
        prompt_txt = f"{prompt} [{normalized_current or next(iter(choices))}]: "
        while True:
            resp = self.input(prompt_txt)
            if resp is None:
                resp = ""
            resp = resp.strip().lower()
            if not resp:
                if normalized_current is not None:
                    return choices[normalized_current]
                return next(iter(choices.values()))
            if resp in choices:
                return choices[resp]
            self.print(f"Invalid choice. Expected one of: {', '.join(choices)}")

    def _confirm(self, prompt: str, *, default: bool) -> bool:
        while True:
            resp = self.input(prompt)
            if resp is None:
                resp = ""
            resp = resp.strip().lower()
            if not resp:
                return default
            if resp in ("y", "yes"):
                return True
            if resp in ("n", "no"):
                return False
            self.print("Please respond with 'y' or 'n'.")

    def _ask_commands(self, current: List[str]) -> List[str]:
        self.print("\nCurrent post-connect commands:")
        if not current:
            self.print("  (none)")
        for line in current:
            self.print(f"  {line}")
        self.print("Enter the new commands one per line, '.' on its own line to finish.")
        self.print("Lines starting with '#' are kept as comments and never sent.")

        lines: List[str] = []
        while True:
            resp = self.input("> ")
            if resp is None or resp.strip() == ".":
                return lines
            lines.append(resp.rstrip("\n"))


__all__ = ["ProfileEditSession"]
