"""
Lifecycle of the local mongod: start, stop, restart and port readiness.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import subprocess

import docker

from replica_bootstrap.client import docker_client
from replica_bootstrap.errors import ConnectivityError, ExecutionError
from replica_bootstrap.poller import Poller

SERVICE_WAIT_TIMEOUT = 120
SERVICE_WAIT_STEP = 1


def is_port_open(host, port, timeout=2):
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_service(host, port, timeout=SERVICE_WAIT_TIMEOUT, step=SERVICE_WAIT_STEP):
    """Block until ``host:port`` accepts TCP connections."""
    logger = logging.getLogger(__name__)
    logger.debug(f"Waiting for {host}:{port} to accept connections...")
    poller = Poller(timeout, step, label=f"service {host}:{port}")
    if not poller.retry_while(lambda: not is_port_open(host, port)):
        raise ConnectivityError(f"{host}:{port} did not accept connections after {timeout}s")


class MongodProcess:
    """
    mongod running as a child process of the bootstrap. Tracked through its
    Popen handle, or through the pid file when an earlier run started it.
    """

    def __init__(self, settings):
        self.settings = settings
        self.process = None

    @property
    def binary(self):
        bundled = os.path.join(self.settings.bin_dir, 'mongod')
        return bundled if os.path.exists(bundled) else 'mongod'

    def pid(self):
        try:
            with open(self.settings.pid_file) as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def is_running(self):
        if self.process is not None:
            return self.process.poll() is None
        pid = self.pid()
        if pid is None:
            return False
        try:
            # an exited child of ours lingers as a zombie until collected
            reaped, _ = os.waitpid(pid, os.WNOHANG)
            if reaped == pid:
                return False
        except ChildProcessError:
            pass
        try:
            os.kill(pid, 0)
        except OSError:
            return False
        return True

    def start(self):
        logger = logging.getLogger(__name__)
        if self.is_running():
            logger.debug("mongod already running")
            return
        logger.info("==> Starting mongod...")
        try:
            self.process = subprocess.Popen(
                [self.binary, '--config', self.settings.conf_file],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutionError(f"Unable to start mongod: {e}") from e
        self.wait_ready()

    def wait_ready(self):
        wait_for_service('127.0.0.1', self.settings.port)

    def stop(self):
        logger = logging.getLogger(__name__)
        if not self.is_running():
            logger.debug("mongod not running")
            self.process = None
            return
        logger.info("==> Stopping mongod...")
        if self.process is not None:
            self._terminate_child()
            return
        pid = self.pid()
        os.kill(pid, signal.SIGTERM)
        poller = Poller(SERVICE_WAIT_TIMEOUT, SERVICE_WAIT_STEP, label="mongod shutdown")
        if not poller.retry_while(self.is_running):
            raise ExecutionError(f"mongod (pid {pid}) did not stop after {SERVICE_WAIT_TIMEOUT}s")

    def _terminate_child(self):
        process, self.process = self.process, None
        process.terminate()
        try:
            process.wait(timeout=SERVICE_WAIT_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"mongod (pid {process.pid}) did not stop after {SERVICE_WAIT_TIMEOUT}s") from e

    def restart(self):
        self.stop()
        self.start()


class MongodContainer:
    """mongod running in its own container, driven through the Docker API."""

    def __init__(self, settings):
        self.settings = settings

    def _call(self, action, progress):
        logger = logging.getLogger(__name__)
        logger.info(f"==> {progress} container {self.settings.container_name}...")
        try:
            with docker_client() as dc:
                container = dc.containers.get(self.settings.container_name)
                getattr(container, action)()
        except docker.errors.DockerException as e:
            raise ExecutionError(f"Unable to {action} container {self.settings.container_name}: {e}") from e

    def start(self):
        self._call('start', 'Starting')
        self.wait_ready()

    def stop(self):
        self._call('stop', 'Stopping')

    def restart(self):
        self._call('restart', 'Restarting')
        self.wait_ready()

    def wait_ready(self):
        wait_for_service(self.settings.container_name, self.settings.port)


def build_node_service(settings):
    if settings.container_name:
        return MongodContainer(settings)
    return MongodProcess(settings)
