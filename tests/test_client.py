import subprocess
import types

import docker
import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from replica_bootstrap import client as client_module
from replica_bootstrap.client import (
    ClusterClient,
    ContainerShellRunner,
    LocalShellRunner,
    build_client,
    redact,
    redact_command,
    shell_argv,
)
from replica_bootstrap.errors import ConnectivityError, ExecutionError
from replica_bootstrap.models import ConnectionProperties
from replica_bootstrap.settings import Settings

PRIMARY = ConnectionProperties('mongo-0', 27017, 'admin', 'root', 's3cret')


class DummyCP:
    def __init__(self, rc=0, out="", err=""):
        self.returncode = rc
        self.stdout = out
        self.stderr = err


def test_shell_argv_with_credentials():
    argv = shell_argv('mongosh', 'rs.status().members', PRIMARY)

    assert argv[:6] == ['mongosh', '--quiet', '--host', 'mongo-0', '--port', '27017']
    assert argv[6:12] == ['-u', 'root', '-p', 's3cret', '--authenticationDatabase', 'admin']
    assert argv[-3:] == ['admin', '--eval', 'rs.status().members']


def test_shell_argv_without_password_skips_auth():
    argv = shell_argv('mongosh', 'db.isMaster().ismaster', ConnectionProperties('127.0.0.1', 27017))

    assert '-u' not in argv and '-p' not in argv


def test_redact_masks_password():
    assert 's3cret' not in redact(shell_argv('mongosh', 'x', PRIMARY))


def test_redact_masks_user_passwords_in_eval():
    command = 'db.getSiblingDB("admin").createUser({"user": "root", "pwd": "Top\\"Secret1", "roles": ["root"]})'

    masked = redact(shell_argv('mongosh', command, PRIMARY))

    assert 'Secret1' not in " ".join(masked)
    assert '"pwd": "****"' in masked[-1]
    assert '"user": "root"' in masked[-1]
    assert redact_command("db.createUser({user: 'app', pwd: 'x1'})") == "db.createUser({user: 'app', pwd: \"****\"})"


def test_execute_returns_captured_output(monkeypatch):
    calls = []

    def fake_run(argv, capture_output=False, text=False, timeout=None):
        calls.append(argv)
        return DummyCP(0, '{ ok: 1 }\n')

    monkeypatch.setattr(subprocess, 'run', fake_run)

    result = ClusterClient(LocalShellRunner('mongosh')).execute("rs.add('mongo-1:27017')", PRIMARY)

    assert result.stdout == '{ ok: 1 }'
    assert result.exit_code == 0
    assert calls[0][-1] == "rs.add('mongo-1:27017')"


def test_execute_non_zero_exit_is_execution_error(monkeypatch):
    monkeypatch.setattr(subprocess, 'run', lambda argv, **kw: DummyCP(1, '', 'MongoNetworkError: connect ECONNREFUSED'))

    with pytest.raises(ExecutionError) as excinfo:
        ClusterClient(LocalShellRunner('mongosh')).execute('db.isMaster().ismaster', PRIMARY)

    assert 'ECONNREFUSED' in excinfo.value.output
    assert excinfo.value.result.exit_code == 1


def test_execute_missing_shell_is_execution_error(monkeypatch):
    def fake_run(argv, **kw):
        raise FileNotFoundError(argv[0])

    monkeypatch.setattr(subprocess, 'run', fake_run)

    with pytest.raises(ExecutionError):
        ClusterClient(LocalShellRunner('mongosh')).execute('rs.status()', PRIMARY)


def test_execute_timeout_is_execution_error(monkeypatch):
    def fake_run(argv, **kw):
        raise subprocess.TimeoutExpired(argv, 60)

    monkeypatch.setattr(subprocess, 'run', fake_run)

    with pytest.raises(ExecutionError):
        ClusterClient(LocalShellRunner('mongosh')).execute('rs.status()', PRIMARY)


class FakeMongoClient:
    error = None
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.closed = False
        self.admin = types.SimpleNamespace(command=self.command)
        FakeMongoClient.instances.append(self)

    def command(self, name):
        if FakeMongoClient.error is not None:
            raise FakeMongoClient.error
        return {'ok': 1}

    def close(self):
        self.closed = True


@pytest.fixture
def fake_mongo(monkeypatch):
    FakeMongoClient.error = None
    FakeMongoClient.instances = []
    monkeypatch.setattr(client_module.pm, 'MongoClient', FakeMongoClient)
    return FakeMongoClient


def test_check_connection_uses_direct_authenticated_client(fake_mongo):
    ClusterClient(LocalShellRunner()).check_connection(PRIMARY)

    mc = fake_mongo.instances[0]
    assert mc.kwargs['directConnection'] is True
    assert mc.kwargs['username'] == 'root'
    assert mc.kwargs['authSource'] == 'admin'
    assert mc.closed


def test_check_connection_rejects_bad_credentials(fake_mongo):
    fake_mongo.error = OperationFailure('Authentication failed.', code=18)

    with pytest.raises(ConnectivityError, match='Authentication'):
        ClusterClient(LocalShellRunner()).check_connection(PRIMARY)
    assert fake_mongo.instances[0].closed


def test_check_connection_unreachable(fake_mongo):
    fake_mongo.error = ServerSelectionTimeoutError('mongo-0:27017: timed out')

    with pytest.raises(ConnectivityError, match='Cannot connect'):
        ClusterClient(LocalShellRunner()).check_connection(PRIMARY)


class FakeContainer:
    def __init__(self, result):
        self.result = result
        self.exec_calls = []

    def exec_run(self, argv, demux=False):
        self.exec_calls.append(argv)
        return self.result


class FakeDockerClient:
    def __init__(self, container):
        self.container = container
        self.closed = False
        self.containers = types.SimpleNamespace(get=self.get)

    def get(self, name):
        if name != 'mongodb':
            raise docker.errors.DockerException(f"No such container: {name}")
        return self.container

    def close(self):
        self.closed = True


def test_container_runner_execs_shell(monkeypatch):
    container = FakeContainer(types.SimpleNamespace(exit_code=0, output=(b'true\n', None)))
    dc = FakeDockerClient(container)
    monkeypatch.setattr(docker, 'from_env', lambda: dc)

    result = ClusterClient(ContainerShellRunner('mongodb')).execute('db.isMaster().ismaster', PRIMARY)

    assert result.stdout == 'true'
    assert container.exec_calls[0][0] == 'mongosh'
    assert dc.closed


def test_container_runner_missing_container(monkeypatch):
    dc = FakeDockerClient(None)
    monkeypatch.setattr(docker, 'from_env', lambda: dc)

    with pytest.raises(ExecutionError, match='ghost'):
        ContainerShellRunner('ghost').run(['mongosh'])


def test_build_client_picks_runner(tmp_path):
    local = build_client(Settings(base_dir=str(tmp_path)))
    container = build_client(Settings(base_dir=str(tmp_path), container_name='mongodb'))

    assert isinstance(local.runner, LocalShellRunner)
    assert isinstance(container.runner, ContainerShellRunner)
    assert container.runner.container_name == 'mongodb'


def test_failed_command_error_hides_user_password(monkeypatch):
    monkeypatch.setattr(subprocess, 'run', lambda argv, **kw: DummyCP(1, '', 'MongoServerError: not primary'))
    command = 'db.getSiblingDB(\'admin\').createUser({"user": "root", "pwd": "TopSecret1", "roles": ["root"]})'

    with pytest.raises(ExecutionError) as excinfo:
        ClusterClient(LocalShellRunner('mongosh')).execute(command, PRIMARY)

    assert 'TopSecret1' not in str(excinfo.value)
    assert 'not primary' in str(excinfo.value)


def test_timeout_error_hides_credentials(monkeypatch):
    def fake_run(argv, **kw):
        raise subprocess.TimeoutExpired(argv, 60)

    monkeypatch.setattr(subprocess, 'run', fake_run)

    with pytest.raises(ExecutionError) as excinfo:
        ClusterClient(LocalShellRunner('mongosh')).execute('rs.status()', PRIMARY)

    assert 's3cret' not in str(excinfo.value)
