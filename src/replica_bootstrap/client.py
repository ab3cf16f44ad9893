"""
Administrative access to a MongoDB node.

Commands are shell snippets (``rs.add(...)``, ``db.isMaster().ismaster``) run
through the administrative shell, either as a local process or inside the
MongoDB container via the Docker API. The reachability gate goes through
PyMongo.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from contextlib import contextmanager

import docker
import pymongo as pm
from pymongo.errors import OperationFailure, PyMongoError

from replica_bootstrap.errors import ConnectivityError, ExecutionError
from replica_bootstrap.models import CommandResult

SHELL_TIMEOUT = 60
SECRET_FIELD_PATTERN = re.compile(r'(["\']?pwd["\']?\s*:\s*)(?:"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\')')


@contextmanager
def docker_client():
    client = docker.from_env()
    try:
        yield client
    finally:
        client.close()


@contextmanager
def mongo_client(connection, server_selection_timeout_ms=30000):
    """
    Direct (non-discovering) PyMongo client for one node, closed on exit.
    """
    kwargs = dict(
        host=connection.host,
        port=connection.port,
        directConnection=True,  # discovery would report the set's primary instead of this node
        serverSelectionTimeoutMS=server_selection_timeout_ms,
        connectTimeoutMS=30000,
        socketTimeoutMS=30000,
    )
    if connection.password:
        kwargs.update(username=connection.user, password=connection.password, authSource=connection.database)
    client = pm.MongoClient(**kwargs)
    try:
        yield client
    finally:
        client.close()


def shell_argv(shell, command, connection):
    """
    :param shell: administrative shell binary.
    :param command: snippet passed to --eval.
    :param connection: ConnectionProperties of the target node.
    """
    argv = [shell, '--quiet', '--host', connection.host, '--port', str(connection.port)]
    if connection.password:
        argv += ['-u', connection.user, '-p', connection.password, '--authenticationDatabase', connection.database]
    argv += [connection.database, '--eval', command]
    return argv


def redact_command(command):
    """Mask ``pwd`` values (createUser and friends) in a shell snippet."""
    return SECRET_FIELD_PATTERN.sub(r'\1"****"', command)


def redact(argv):
    """Hide the password and any secret in the --eval snippet before argv gets logged."""
    masked = list(argv)
    for i, arg in enumerate(masked[:-1]):
        if arg == '-p':
            masked[i + 1] = '****'
        elif arg == '--eval':
            masked[i + 1] = redact_command(masked[i + 1])
    return masked


class LocalShellRunner:
    """Runs the shell as a child process of the bootstrap."""

    def __init__(self, shell='mongosh', timeout=SHELL_TIMEOUT):
        self.shell = shell
        self.timeout = timeout

    def run(self, argv):
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            # the exception text carries the full argv, credentials included
            raise ExecutionError(f"{argv[0]} did not finish within {self.timeout}s") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise ExecutionError(f"Unable to run {argv[0]}: {e}") from e
        return CommandResult(proc.stdout.strip(), proc.stderr.strip(), proc.returncode)


class ContainerShellRunner:
    """
    Runs the shell inside the named MongoDB container through the Docker API,
    for a bootstrap deployed as a sidecar.
    """

    def __init__(self, container_name, shell='mongosh'):
        self.container_name = container_name
        self.shell = shell

    def run(self, argv):
        try:
            with docker_client() as dc:
                container = dc.containers.get(self.container_name)
                res = container.exec_run(argv, demux=True)
        except docker.errors.DockerException as e:
            raise ExecutionError(f"Unable to exec into container {self.container_name}: {e}") from e
        stdout, stderr = res.output if res.output else (None, None)
        return CommandResult(
            (stdout or b'').decode(errors='replace').strip(),
            (stderr or b'').decode(errors='replace').strip(),
            res.exit_code,
        )


class ClusterClient:
    """
    Sends administrative commands to a node and checks it can be reached.

    :param runner: LocalShellRunner or ContainerShellRunner.
    """

    def __init__(self, runner, server_selection_timeout_ms=30000):
        self.runner = runner
        self.server_selection_timeout_ms = server_selection_timeout_ms

    def execute(self, command, connection):
        """
        Run ``command`` against ``connection``.

        A command that runs but reports a logical failure is returned as is;
        ExecutionError is raised only when the shell exits non-zero (node
        unreachable, auth rejected, command threw).
        """
        logger = logging.getLogger(__name__)
        argv = shell_argv(self.runner.shell, command, connection)
        logger.debug("Executing on {}: {}".format(connection.address, redact(argv)))
        result = self.runner.run(argv)
        if result.exit_code != 0:
            raise ExecutionError(
                "Command '{}' failed on {} (exit code {}): {}".format(redact_command(command), connection.address, result.exit_code, result.rendered),
                result,
            )
        logger.debug("Result from {}: {}".format(connection.address, result.stdout))
        return result

    def check_connection(self, connection):
        """
        Fail fast with ConnectivityError if the node can't be reached with these
        credentials. PyMongo's server selection timeout bounds the wait.
        """
        logger = logging.getLogger(__name__)
        with mongo_client(connection, self.server_selection_timeout_ms) as mc:
            try:
                mc.admin.command('ping')
            except OperationFailure as of:
                raise ConnectivityError(f"Authentication against {connection.address} as '{connection.user}' failed: {of}") from of
            except PyMongoError as e:
                raise ConnectivityError(f"Cannot connect to {connection.address}: {e}") from e
        logger.debug("Connection to {} as '{}' verified".format(connection.address, connection.user))


def build_client(settings):
    """Pick the shell runner for this deployment."""
    shell = settings.shell
    bundled = os.path.join(settings.bin_dir, shell)
    if not os.path.isabs(shell) and os.path.exists(bundled):
        shell = bundled
    if settings.container_name:
        return ClusterClient(ContainerShellRunner(settings.container_name, settings.shell))
    return ClusterClient(LocalShellRunner(shutil.which(shell) or shell))
