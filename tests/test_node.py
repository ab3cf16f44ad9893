import os
import subprocess
import time
import types
from time import sleep as real_sleep

import docker
import pytest

from replica_bootstrap import node as node_module
from replica_bootstrap.errors import ConnectivityError, ExecutionError
from replica_bootstrap.node import MongodContainer, MongodProcess, build_node_service, wait_for_service


def test_wait_for_service_returns_once_port_opens(monkeypatch, sleeps):
    answers = iter([False, False, True])
    monkeypatch.setattr(node_module, 'is_port_open', lambda host, port: next(answers))

    wait_for_service('127.0.0.1', 27017)

    assert sleeps == [1, 1]


def test_wait_for_service_times_out(monkeypatch, sleeps):
    monkeypatch.setattr(node_module, 'is_port_open', lambda host, port: False)

    with pytest.raises(ConnectivityError, match='127.0.0.1:27017'):
        wait_for_service('127.0.0.1', 27017, timeout=5, step=1)
    assert sleeps[:4] == [1, 1, 1, 1]
    assert sum(sleeps) >= 5


def test_process_without_pid_file_is_not_running(make_settings):
    process = MongodProcess(make_settings())

    assert process.pid() is None
    assert not process.is_running()
    process.stop()


class FakeContainer:
    def __init__(self):
        self.actions = []

    def start(self):
        self.actions.append('start')

    def restart(self):
        self.actions.append('restart')

    def stop(self):
        self.actions.append('stop')


def test_container_lifecycle(monkeypatch, make_settings):
    container = FakeContainer()
    dc = types.SimpleNamespace(containers=types.SimpleNamespace(get=lambda name: container), close=lambda: None)
    monkeypatch.setattr(docker, 'from_env', lambda: dc)
    waits = []
    monkeypatch.setattr(node_module, 'wait_for_service', lambda host, port: waits.append((host, port)))
    service = MongodContainer(make_settings(container_name='mongodb'))

    service.restart()
    service.stop()

    assert container.actions == ['restart', 'stop']
    assert waits == [('mongodb', 27017)]


def test_container_api_errors_are_execution_errors(monkeypatch, make_settings):
    def unavailable():
        raise docker.errors.DockerException('socket not found')

    monkeypatch.setattr(docker, 'from_env', unavailable)

    with pytest.raises(ExecutionError, match='mongodb'):
        MongodContainer(make_settings(container_name='mongodb')).stop()


def test_build_node_service(make_settings):
    assert isinstance(build_node_service(make_settings()), MongodProcess)
    assert isinstance(build_node_service(make_settings(container_name='mongodb')), MongodContainer)


FAKE_MONGOD = """#!/bin/sh
echo $$ > {pid_file}
exec sleep 60
"""


@pytest.fixture
def fake_mongod(make_settings, monkeypatch):
    """A bundled mongod that records its pid and runs until SIGTERM."""
    monkeypatch.setattr(time, 'sleep', real_sleep)
    settings = make_settings()
    os.makedirs(settings.bin_dir)
    os.makedirs(settings.tmp_dir)
    binary = os.path.join(settings.bin_dir, 'mongod')
    with open(binary, 'w') as f:
        f.write(FAKE_MONGOD.format(pid_file=settings.pid_file))
    os.chmod(binary, 0o755)
    monkeypatch.setattr(MongodProcess, 'wait_ready', lambda self: None)
    return settings


def test_started_process_stops_and_is_collected(fake_mongod):
    process = MongodProcess(fake_mongod)

    process.start()
    assert process.is_running()
    pid = process.process.pid

    process.stop()

    assert not process.is_running()
    with pytest.raises(ChildProcessError):
        os.waitpid(pid, os.WNOHANG)


def test_restart_replaces_the_child(fake_mongod):
    process = MongodProcess(fake_mongod)
    process.start()
    first = process.process.pid

    process.restart()

    assert process.is_running()
    assert process.process.pid != first
    process.stop()
    assert not process.is_running()


def test_stop_by_pid_file_collects_an_exited_child(fake_mongod):
    # mongod started by an earlier MongodProcess that is gone
    child = subprocess.Popen(['sleep', '60'])
    with open(fake_mongod.pid_file, 'w') as f:
        f.write(str(child.pid))
    process = MongodProcess(fake_mongod)

    assert process.is_running()
    process.stop()

    assert not process.is_running()
