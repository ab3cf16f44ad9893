"""
Replica set role paths.

Each role drives the node from unconfigured to registered in the set:

    primary:            wait local service -> rs.initiate -> initiated
    secondary/arbiter:  wait primary -> rs.add / rs.addArb -> wait confirmation -> joined

Every wait goes through a Poller (90s / 5s). Poll checks return an Outcome:
shell failures are Pending, authentication failures are Fatal.
"""

from __future__ import annotations

import json
import logging

from replica_bootstrap.errors import (
    ConnectivityError,
    ExecutionError,
    MembershipNotConfirmed,
    PrimaryUnreachable,
    ReplicaSetJoinTimeout,
    RetryExhausted,
)
from replica_bootstrap.models import Outcome, ReplicaSetMode
from replica_bootstrap.poller import DEFAULT_STEP, DEFAULT_TIMEOUT, Poller
from replica_bootstrap.protocol import LegacyTextProtocolAdapter

PRIMARY_PRIORITY = 5
SYNC_DONE_MARKER = 'initial sync done'


def initiate_config(replica_set_name, node):
    """Single-member set definition preferring this node as primary."""
    return {
        '_id': replica_set_name,
        'members': [{'_id': 0, 'host': node.member, 'priority': PRIMARY_PRIORITY}],
    }


def _auth_outcome(protocol, output, connection):
    if protocol.auth_failed(output):
        return Outcome.fatal(ConnectivityError(f"Authentication against {connection.address} as '{connection.user}' failed: {output}"))
    return None


def is_primary_initiated(client, protocol, config, connection):
    logger = logging.getLogger(__name__)
    try:
        output = client.execute(f"rs.initiate({json.dumps(config)})", connection).rendered
    except ExecutionError as e:
        output = e.output
        logger.debug(f"[rs.initiate] {e}")
    if protocol.is_ok(output) or protocol.already_initialized(output):
        return Outcome.success()
    return _auth_outcome(protocol, output, connection) or Outcome.pending(output)


def is_primary_up(client, protocol, connection):
    logger = logging.getLogger(__name__)
    logger.debug(f"==> Validating {connection.host} as primary node...")
    try:
        output = client.execute('db.isMaster().ismaster', connection).stdout
    except ExecutionError as e:
        logger.debug(f"[is_primary_up] ERROR: {e}")
        return _auth_outcome(protocol, e.output, connection) or Outcome.pending(str(e))
    if protocol.is_true(output):
        return Outcome.success()
    return Outcome.pending(output)


def is_member_listed(client, protocol, node, connection):
    logger = logging.getLogger(__name__)
    try:
        output = client.execute('rs.status().members', connection).stdout
    except ExecutionError as e:
        logger.debug(f"[is_member_listed] ERROR: {e}")
        return _auth_outcome(protocol, e.output, connection) or Outcome.pending(str(e))
    if protocol.lists_member(output, node.member):
        return Outcome.success()
    return Outcome.pending(f"{node.member} not listed yet")


def is_member_added(client, protocol, command, node, connection):
    """
    Issue ``rs.add``/``rs.addArb``. A rejected add still succeeds when the node
    is already a member, so re-running a join is harmless.
    """
    logger = logging.getLogger(__name__)
    try:
        output = client.execute(f"{command}('{node.member}')", connection).rendered
    except ExecutionError as e:
        output = e.output
        logger.debug(f"[{command}] {e}")
    if protocol.is_ok(output):
        return Outcome.success()
    fatal = _auth_outcome(protocol, output, connection)
    if fatal:
        return fatal
    if is_member_listed(client, protocol, node, connection).is_success:
        logger.debug(f"{node.member} is already a member of the replica set")
        return Outcome.success()
    return Outcome.pending(output)


class RoleConfigurator:
    """
    :param context: RunContext of this run.
    :param client: ClusterClient.
    :param node_service: local mongod lifecycle (restarted once replication is enabled).
    """

    def __init__(self, context, client, node_service, protocol=None, timeout=DEFAULT_TIMEOUT, step=DEFAULT_STEP):
        self.context = context
        self.client = client
        self.node_service = node_service
        self.protocol = protocol or LegacyTextProtocolAdapter()
        self.timeout = timeout
        self.step = step

    def _poller(self, label):
        return Poller(self.timeout, self.step, label=label)

    def configure_replica_set(self, spec, connection):
        """
        Run the role path for ``spec.mode``; the node is restarted first so it
        picks up the replication settings.
        """
        logger = logging.getLogger(__name__)
        logger.info('==> Configuring MongoDB replica set')
        node = self.context.node
        self.node_service.restart()
        if spec.mode is ReplicaSetMode.PRIMARY:
            self.configure_primary(node, connection)
        elif spec.mode is ReplicaSetMode.SECONDARY:
            self.configure_secondary(node, connection)
        elif spec.mode is ReplicaSetMode.ARBITER:
            self.configure_arbiter(node, connection)
        else:
            logger.debug("Dynamic replica set mode - membership is managed externally")

    def configure_primary(self, node, connection):
        logger = logging.getLogger(__name__)
        logger.info('==> Configuring MongoDB PRIMARY node')
        self.node_service.wait_ready()
        config = initiate_config(self.context.replica_set.name, node)
        outcome = self._poller('rs.initiate').until(
            lambda: is_primary_initiated(self.client, self.protocol, config, connection))
        if not outcome.is_success:
            raise RetryExhausted(f"Unable to initiate replica set '{config['_id']}' on {node.member}: {outcome.reason}")
        logger.info(f"ReplicaSet '{config['_id']}' initiated with PRIMARY {node.member}")

    def configure_secondary(self, node, connection):
        logger = logging.getLogger(__name__)
        logger.info('==> Configuring MongoDB SECONDARY node')
        self._join(node, connection, 'rs.add')

    def configure_arbiter(self, node, connection):
        logger = logging.getLogger(__name__)
        logger.info('==> Configuring MongoDB ARBITER node')
        self._join(node, connection, 'rs.addArb')

    def _join(self, node, connection, command):
        self.wait_for_primary(connection)
        outcome = self._poller(command).until(
            lambda: is_member_added(self.client, self.protocol, command, node, connection))
        if not outcome.is_success:
            raise ReplicaSetJoinTimeout(node.member, command)
        self.wait_confirmation(node, connection)

    def wait_for_primary(self, connection):
        """
        Check the primary's root credentials once, then poll until it reports
        itself as master.
        """
        logger = logging.getLogger(__name__)
        settings = self.context.settings
        logger.debug('Waiting for PRIMARY node...')
        self.client.check_connection(self.context.primary_root_connection())
        outcome = self._poller('wait primary').until(
            lambda: is_primary_up(self.client, self.protocol, connection))
        if not outcome.is_success:
            raise PrimaryUnreachable(settings.primary_host)
        logger.info(f"PRIMARY node {settings.primary_host}:{settings.primary_port} is ready")

    def wait_confirmation(self, node, connection):
        logger = logging.getLogger(__name__)
        logger.debug(f"[wait_confirmation] Waiting until {node.member} is added to the replica set")
        outcome = self._poller('wait confirmation').until(
            lambda: is_member_listed(self.client, self.protocol, node, connection))
        if not outcome.is_success:
            raise MembershipNotConfirmed(node.member)
        logger.info(f"{node.member} confirmed as replica set member")

    def drop_local_database(self, connection):
        """Clear stale membership so the node can rejoin under a new set name."""
        logger = logging.getLogger(__name__)
        logger.info('==> Drop local database to reset replica set setup')
        self.client.execute("db.getSiblingDB('local').dropDatabase()", connection)


def wait_until_sync_complete(log_file, timeout=10):
    """
    Best effort: wait up to ``timeout`` seconds for the node log to report the
    end of the initial sync. Never fails the run.

    :return: True when the marker was seen.
    """
    logger = logging.getLogger(__name__)
    logger.info('==> Waiting until initial data sync is complete')

    def sync_pending():
        try:
            with open(log_file, errors='replace') as f:
                return SYNC_DONE_MARKER not in f.read().lower()
        except OSError as e:
            logger.debug(f"[sync] cannot read {log_file}: {e}")
            return True

    done = Poller(timeout, 1, label='initial sync').retry_while(sync_pending)
    if not done:
        logger.info(f"==> Initial data sync did not finish after {timeout} seconds!")
    return done
