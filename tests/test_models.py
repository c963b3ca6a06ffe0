import pytest

from sshcourier.models import AuthMode, ConnectionProfile, OsFamily, SecretKind, SudoPolicy


def test_port_outside_range_is_rejected():
    with pytest.raises(ValueError):
        ConnectionProfile(host="h", port=0)
    with pytest.raises(ValueError):
        ConnectionProfile(host="h", port=65536)


def test_enums_are_coerced_from_strings():
    profile = ConnectionProfile(host="h", auth_mode="public_key", os_family="WINDOWS", sudo_policy="own_password")

    assert profile.auth_mode is AuthMode.PUBLIC_KEY
    assert profile.os_family is OsFamily.WINDOWS
    assert profile.sudo_policy is SudoPolicy.OWN_PASSWORD


def test_with_changes_keeps_identity():
    profile = ConnectionProfile(alias="a", host="h")

    changed = profile.with_changes(alias="b")

    assert changed.id == profile.id
    assert changed.alias == "b"
    assert profile.alias == "a"
    with pytest.raises(ValueError):
        profile.with_changes(id="other")


def test_duplicate_gets_fresh_id_and_copy_alias():
    profile = ConnectionProfile(alias="db", host="h", post_connect_commands=["ls"])

    copy = profile.duplicate()

    assert copy.id != profile.id
    assert copy.alias == "db (copy)"
    copy.post_connect_commands.append("pwd")
    assert profile.post_connect_commands == ["ls"]


def test_command_lines_skip_comments_and_blanks():
    profile = ConnectionProfile(host="h", post_connect_commands=["# comment", "", "   ", "  # indented", "ls -la"])

    assert list(profile.command_lines()) == ["ls -la"]


def test_sudo_password_source():
    own = ConnectionProfile(host="h", sudo_policy=SudoPolicy.OWN_PASSWORD, sudo_password="s", password="p")
    reused = ConnectionProfile(host="h", sudo_policy=SudoPolicy.USER_PASSWORD_REUSED, password="p")
    missing = ConnectionProfile(host="h", sudo_policy=SudoPolicy.USER_PASSWORD_REUSED)

    assert own.sudo_password_source() == "s"
    assert reused.sudo_password_source() == "p"
    assert missing.sudo_password_source() is None


def test_needs_automation():
    assert not ConnectionProfile(host="h", password="p").needs_automation()
    assert ConnectionProfile(host="h", post_connect_commands=["uptime"]).needs_automation()
    assert ConnectionProfile(host="h", sudo_policy=SudoPolicy.OWN_PASSWORD).needs_automation()
    assert not ConnectionProfile(
        host="h", sudo_policy=SudoPolicy.OWN_PASSWORD, os_family=OsFamily.WINDOWS
    ).needs_automation()
    assert ConnectionProfile(
        host="h", auth_mode=AuthMode.PUBLIC_KEY, key_path="/k", key_passphrase="kp"
    ).needs_automation()
    assert not ConnectionProfile(host="h", post_connect_commands=["# only a comment"]).needs_automation()


def test_from_dict_ignores_unknown_keys_and_splits_commands():
    profile = ConnectionProfile.from_dict(
        {"alias": "a", "host": "h", "post_connect_commands": "ls\npwd", "colour": "red", "id": ""}
    )

    assert profile.post_connect_commands == ["ls", "pwd"]
    assert profile.id


def test_to_dict_round_trip():
    profile = ConnectionProfile(
        alias="a",
        host="h",
        port=2200,
        username="u",
        auth_mode=AuthMode.PUBLIC_KEY,
        key_path="/k",
        sudo_policy=SudoPolicy.USER_PASSWORD_REUSED,
        maximize_on_connect=True,
    )

    assert ConnectionProfile.from_dict(profile.to_dict()) == profile


def test_describe_masks_secrets():
    profile = ConnectionProfile(host="h", password="hunter2", sudo_password="root-pw")

    details = profile.describe()

    assert details["password_provided"] is True
    assert details["sudo_password_provided"] is True
    assert "hunter2" not in repr(details)
    assert "root-pw" not in repr(details)


def test_secret_kind_field_names():
    assert SecretKind.KEY_PASSPHRASE.value == "key_password"
    assert SecretKind.KEY_PASSPHRASE.field_name == "key_passphrase"
