import pytest

from sshcourier.automation import AutomationSettings
from sshcourier.executor import ConnectionExecutor
from sshcourier.models import ConnectionProfile
from sshcourier.repository import ConnectionRepository
from sshcourier.secret_store import SecretStore
from sshcourier.sessions import SessionClosedError, SessionRegistry


class FakeSession:
    def __init__(self, title):
        self.title = title
        self.sent = []
        self.alive = True
        self._callbacks = []

    def send(self, text):
        if not self.alive:
            raise SessionClosedError("gone")
        self.sent.append(text)

    def recent_output(self):
        return ""

    def is_alive(self):
        return self.alive

    def on_terminated(self, callback):
        if not self.alive:
            callback()
            return
        self._callbacks.append(callback)

    def close(self):
        self.terminate()

    def terminate(self):
        self.alive = False
        for callback in self._callbacks:
            callback()


class FakeProvider:
    def __init__(self, dead=False):
        self.created = []
        self.dead = dead

    def create_session(self, working_dir, title):
        session = FakeSession(title)
        session.alive = not self.dead
        self.created.append((working_dir, session))
        return session


class FakeAutomation:
    def __init__(self, session, profile, settings, notifier):
        self.session = session
        self.profile = profile
        self.started = False
        self.abandoned = False

    def start(self):
        self.started = True

    def abandon(self):
        self.abandoned = True


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def __call__(self, message, level="info"):
        self.messages.append((level, message))


@pytest.fixture
def env(tmp_path):
    repository = ConnectionRepository(SecretStore(), str(tmp_path / "connections.json"))
    registry = SessionRegistry()
    provider = FakeProvider()
    notifier = RecordingNotifier()
    executor = ConnectionExecutor(
        repository,
        registry,
        provider,
        settings=AutomationSettings(),
        notifier=notifier,
        working_dir="/work",
        automation_factory=FakeAutomation,
    )
    return executor, repository, registry, provider, notifier


def test_connect_types_ssh_command_and_registers(env):
    executor, repository, registry, provider, _ = env
    profile = repository.add(ConnectionProfile(alias="web", host="example.com", username="bob", password="p1"))

    launch = executor.connect(profile.id)

    assert launch is not None
    assert launch.alias == "web"
    assert launch.automation is None
    assert provider.created[0][0] == "/work"
    assert launch.session.sent == ["ssh bob@example.com -o StrictHostKeyChecking=no\n"]
    assert executor.terminal_count(profile.id) == 1
    assert executor.active_sessions() == {profile.id: [launch.session]}


def test_connect_starts_automation_with_plaintext_profile(env):
    executor, repository, _, _, _ = env
    stored = repository.add(
        ConnectionProfile(alias="db", host="db", password="p1", post_connect_commands=["uptime"], maximize_on_connect=True)
    )

    launch = executor.connect(stored.id)

    assert launch.automation.started
    assert launch.automation.profile.password == "p1"
    assert launch.maximize is True


def test_connect_unknown_id_notifies(env):
    executor, _, registry, provider, notifier = env

    assert executor.connect("missing") is None
    assert provider.created == []
    assert notifier.messages[0][0] == "error"
    assert registry.total() == 0


def test_connect_with_unusable_host_notifies(env):
    executor, repository, _, provider, notifier = env
    stored = repository.add(ConnectionProfile(alias="blank", host=""))

    assert executor.connect(stored.id) is None
    assert provider.created == []
    assert "blank" in notifier.messages[0][1]


def test_termination_unregisters_and_abandons(env):
    executor, repository, registry, _, _ = env
    stored = repository.add(ConnectionProfile(alias="web", host="h", post_connect_commands=["uptime"]))

    first = executor.connect(stored.id)
    second = executor.connect(stored.id)
    assert registry.count_for(stored.id) == 2

    first.session.terminate()

    assert first.automation.abandoned
    assert not second.automation.abandoned
    assert registry.all_for(stored.id) == [second.session]


def test_session_dead_on_arrival(env, tmp_path):
    executor, repository, registry, provider, notifier = env
    provider.dead = True
    stored = repository.add(ConnectionProfile(alias="web", host="h"))

    assert executor.connect(stored.id) is None
    assert registry.total() == 0
    assert notifier.messages[-1][0] == "error"


def test_session_spawn_failure_notifies(env):
    executor, repository, registry, provider, notifier = env
    stored = repository.add(ConnectionProfile(alias="web", host="h"))

    def refuse(working_dir, title):
        raise FileNotFoundError(2, "No such file or directory", "/bin/missing-shell")

    provider.create_session = refuse

    assert executor.connect(stored.id) is None
    assert registry.total() == 0
    level, message = notifier.messages[-1]
    assert level == "error"
    assert "Failed to start a session for 'web'" in message
