import time

import pytest

from replica_bootstrap import filesystem, orchestrator
from replica_bootstrap.errors import ExecutionError
from replica_bootstrap.models import (
    CommandResult,
    ConfigProvider,
    ConvergenceState,
    NodeIdentity,
    ReplicaSetMode,
    ReplicaSetSpec,
    RunContext,
)
from replica_bootstrap.settings import Settings


class FakeClusterClient:
    """
    Scripted stand-in for ClusterClient.

    ``responses`` maps a command prefix to either a list (consumed one per call,
    the last entry repeats) or a single value. Values are stdout strings,
    CommandResult or exceptions to raise.
    """

    def __init__(self, responses=None, check_error=None):
        self.responses = dict(responses or {})
        self.check_error = check_error
        self.calls = []
        self.checks = []

    def _next(self, command):
        for prefix, value in self.responses.items():
            if command.startswith(prefix):
                if isinstance(value, list):
                    return value.pop(0) if len(value) > 1 else value[0]
                return value
        return CommandResult('')

    def execute(self, command, connection):
        self.calls.append((command, connection))
        value = self._next(command)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, str):
            return CommandResult(value)
        return value

    def check_connection(self, connection):
        self.checks.append(connection)
        if self.check_error is not None:
            raise self.check_error

    @property
    def commands(self):
        return [c for c, _ in self.calls]


class FakeNodeService:

    def __init__(self):
        self.events = []

    def start(self):
        self.events.append('start')

    def stop(self):
        self.events.append('stop')

    def restart(self):
        self.events.append('restart')

    def wait_ready(self):
        self.events.append('wait_ready')


class FakeUserAdmin:

    def __init__(self):
        self.created = []

    def create_user(self, connection, user, password, database, roles):
        self.created.append((user, database, roles, connection))
        return True


def shell_failure(output, exit_code=1):
    return ExecutionError(f"shell failed: {output}", CommandResult('', output, exit_code))


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record sleeps instead of waiting."""
    calls = []
    monkeypatch.setattr(time, 'sleep', lambda seconds: calls.append(seconds))
    return calls


@pytest.fixture(autouse=True)
def not_root(monkeypatch):
    monkeypatch.setattr(filesystem, 'running_as_root', lambda: False)
    monkeypatch.setattr(orchestrator, 'running_as_root', lambda: False)


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = dict(
            base_dir=str(tmp_path / 'opt' / 'mongodb'),
            persist_dir=str(tmp_path / 'persist' / 'mongodb'),
            advertised_hostname='mongo-1',
            sync_timeout=3,
        )
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def make_context(make_settings):
    def _make(mode=ReplicaSetMode.SECONDARY, fresh=True, **overrides):
        settings = make_settings(**overrides)
        spec = ReplicaSetSpec(settings.replica_set_name, mode, True) if mode is not None else None
        state = ConvergenceState(not fresh, fresh, False, False)
        node = NodeIdentity(settings.advertised_hostname, settings.port)
        return RunContext(settings, node, state, ConfigProvider.GENERATED, spec)
    return _make
