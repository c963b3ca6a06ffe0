import pytest

from sshcourier.command_builder import build_ssh_argv, build_ssh_command
from sshcourier.models import AuthMode, ConnectionProfile


def _make_profile(**overrides):
    defaults = {
        "alias": "web",
        "host": "example.com",
        "username": "bob",
        "password": "p1",
    }
    defaults.update(overrides)
    return ConnectionProfile(**defaults)


def test_default_port_password_profile():
    profile = _make_profile()

    assert build_ssh_command(profile) == "ssh bob@example.com -o StrictHostKeyChecking=no"


def test_custom_port_and_identity_file():
    profile = _make_profile(
        host="host",
        username="user",
        port=2222,
        auth_mode=AuthMode.PUBLIC_KEY,
        key_path="/k",
        password=None,
    )

    assert build_ssh_argv(profile) == [
        "ssh", "-p", "2222", "-i", "/k", "user@host", "-o", "StrictHostKeyChecking=no",
    ]


def test_identity_file_only_for_public_key_mode():
    profile = _make_profile(key_path="/k")

    assert "-i" not in build_ssh_argv(profile)


def test_key_path_is_expanded(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    profile = _make_profile(auth_mode=AuthMode.PUBLIC_KEY, key_path="~/.ssh/id_ed25519")

    argv = build_ssh_argv(profile)

    assert argv[argv.index("-i") + 1] == str(tmp_path / ".ssh" / "id_ed25519")


def test_missing_username_uses_bare_host():
    profile = _make_profile(username="")

    assert build_ssh_argv(profile)[1] == "example.com"


def test_secrets_never_appear_in_command():
    profile = _make_profile(
        auth_mode=AuthMode.PUBLIC_KEY,
        key_path="/k",
        key_passphrase="kp-secret",
        sudo_password="sudo-secret",
        password="pw-secret",
    )

    command = build_ssh_command(profile)

    for secret in ("kp-secret", "sudo-secret", "pw-secret"):
        assert secret not in command


def test_paths_with_spaces_are_quoted():
    profile = _make_profile(auth_mode=AuthMode.PUBLIC_KEY, key_path="/keys/my key")

    assert "'/keys/my key'" in build_ssh_command(profile)


def test_empty_host_is_rejected():
    with pytest.raises(ValueError):
        build_ssh_argv(_make_profile(host="  "))
