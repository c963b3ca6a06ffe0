from sshcourier.editor import ProfileEditSession
from sshcourier.models import AuthMode, ConnectionProfile, OsFamily, SudoPolicy


class ScriptedInput:
    """Helper to feed deterministic answers into ProfileEditSession."""

    def __init__(self, responses):
        self._responses = list(responses)

    def __call__(self, prompt: str) -> str:
        if not self._responses:
            raise AssertionError(f"No scripted response left for prompt: {prompt}")
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def _silent(*_args, **_kwargs):
    pass


def test_new_profile_with_password_and_commands():
    scripted = ScriptedInput(
        [
            "web",  # alias
            "example.com",  # host
            "2222",  # port
            "bob",  # username
            "",  # os -> linux
            "",  # auth -> password
            "o",  # sudo -> own password
            "y",  # edit commands
            "# prepare",
            "cd /srv",
            ".",
            "y",  # maximize
        ]
    )
    secrets = ScriptedInput(["p1", "s1"])

    profile = ProfileEditSession(input_func=scripted, secret_func=secrets, print_func=_silent).run()

    assert profile.alias == "web"
    assert profile.host == "example.com"
    assert profile.port == 2222
    assert profile.username == "bob"
    assert profile.os_family is OsFamily.LINUX
    assert profile.auth_mode is AuthMode.PASSWORD
    assert profile.password == "p1"
    assert profile.sudo_policy is SudoPolicy.OWN_PASSWORD
    assert profile.sudo_password == "s1"
    assert profile.post_connect_commands == ["# prepare", "cd /srv"]
    assert profile.maximize_on_connect is True
    assert not profile.sealed


def test_enter_keeps_values_and_secrets():
    existing = ConnectionProfile(
        alias="db",
        host="db.internal",
        port=2200,
        username="admin",
        password="old",
        post_connect_commands=["uptime"],
    )
    scripted = ScriptedInput(["", "", "", "", "", "", "", "", ""])
    secrets = ScriptedInput([""])

    profile = ProfileEditSession(existing, input_func=scripted, secret_func=secrets, print_func=_silent).run()

    assert profile == existing
    assert profile.id == existing.id


def test_dash_clears_fields_and_secrets():
    existing = ConnectionProfile(alias="db", host="h", username="admin", password="old")
    scripted = ScriptedInput(["", "", "", "-", "", "", "", "", ""])
    secrets = ScriptedInput(["-"])

    profile = ProfileEditSession(existing, input_func=scripted, secret_func=secrets, print_func=_silent).run()

    assert profile.username == ""
    assert profile.password is None


def test_switch_to_public_key_drops_password():
    existing = ConnectionProfile(alias="db", host="h", password="old")
    scripted = ScriptedInput(["", "", "", "", "", "k", "~/.ssh/id_ed25519", "", "", ""])
    secrets = ScriptedInput(["kp"])

    profile = ProfileEditSession(existing, input_func=scripted, secret_func=secrets, print_func=_silent).run()

    assert profile.auth_mode is AuthMode.PUBLIC_KEY
    assert profile.key_path == "~/.ssh/id_ed25519"
    assert profile.key_passphrase == "kp"
    assert profile.password is None


def test_invalid_port_is_reprompted():
    messages = []
    scripted = ScriptedInput(["web", "h", "70000", "abc", "22", "", "", "", "", "", ""])
    secrets = ScriptedInput([""])

    profile = ProfileEditSession(input_func=scripted, secret_func=secrets, print_func=messages.append).run()

    assert profile.port == 22
    assert messages.count("Port must be a number between 1 and 65535.") == 2


def test_required_alias_is_reprompted():
    messages = []
    scripted = ScriptedInput(["", "web", "h", "", "", "", "", "", "", ""])
    secrets = ScriptedInput([""])

    profile = ProfileEditSession(input_func=scripted, secret_func=secrets, print_func=messages.append).run()

    assert profile.alias == "web"
    assert "Alias is required." in messages


def test_ctrl_c_cancels():
    scripted = ScriptedInput(["web", KeyboardInterrupt()])

    result = ProfileEditSession(input_func=scripted, secret_func=ScriptedInput([]), print_func=_silent).run()

    assert result is None
