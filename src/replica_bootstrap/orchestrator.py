"""
Convergence orchestrator: the two lifecycle hooks exposed to the host.

post_installation runs once per boot. It takes one of two branches, decided
once at entry from the persisted data directory:

    fresh:   validate -> runtime dirs -> render config -> start -> users -> key file ->
             replication settings -> role path -> (secondary) sync drain -> stop -> persist
    restart: restore -> render config if missing -> (dynamic, renamed set) drop local ->
             key file -> replication settings -> auth

There is no rollback: a failed run is retried as a whole by the supervisor and
relies on every step being idempotent.
"""

from __future__ import annotations

import logging
import os

from replica_bootstrap import extras
from replica_bootstrap.conffile import MongoConfigFile
from replica_bootstrap.errors import ValidationError
from replica_bootstrap.filesystem import configure_permissions, ensure_dir, running_as_root
from replica_bootstrap.keyfile import write_key_file
from replica_bootstrap.models import (
    ConfigProvider,
    ConvergenceState,
    NodeIdentity,
    ReplicaSetMode,
    ReplicaSetSpec,
    RunContext,
)
from replica_bootstrap.roles import RoleConfigurator, wait_until_sync_complete

REPLICA_SET_AUTH_MESSAGE = (
    'In order to configure MongoDB replica set authentication '
    'you need to provide the replica set key on every node, '
    'specify the root password in the primary node and the primary root password in the rest of nodes'
)


def parse_replica_set(settings):
    """
    :return: ReplicaSetSpec, or None when no replica set mode is declared.
    """
    if not settings.replica_set_mode:
        return None
    try:
        mode = ReplicaSetMode(settings.replica_set_mode)
    except ValueError:
        raise ValidationError(
            f"Invalid replica set mode '{settings.replica_set_mode}'. "
            "Available options are 'primary/secondary/arbiter/dynamic'") from None
    return ReplicaSetSpec(settings.replica_set_name, mode, settings.enable_majority_read_concern)


def _all_or_none(values):
    return all(values) or not any(values)


def validate_inputs(settings):
    """
    Reject inconsistent role/auth/user input before anything is touched.

    - secondary/arbiter need a primary host;
    - secondary/arbiter: key and primary root password together, no root password;
    - primary: key and root password together, no primary root password;
    - an application user needs password and database, and vice versa.
    """
    spec = parse_replica_set(settings)
    if spec is not None:
        if spec.mode.joins_primary:
            if not settings.primary_host:
                raise ValidationError('In order to configure MongoDB as secondary or arbiter node '
                                      'you need to provide the primary host')
            if not _all_or_none([settings.primary_root_password, settings.replica_set_key]):
                raise ValidationError(REPLICA_SET_AUTH_MESSAGE)
            if settings.root_password:
                raise ValidationError(REPLICA_SET_AUTH_MESSAGE)
        if spec.mode is ReplicaSetMode.PRIMARY:
            if not _all_or_none([settings.root_password, settings.replica_set_key]):
                raise ValidationError(REPLICA_SET_AUTH_MESSAGE)
            if settings.primary_root_password:
                raise ValidationError(REPLICA_SET_AUTH_MESSAGE)
    if settings.username:
        if not (settings.password and settings.database):
            raise ValidationError('If you defined an username you must define a password and a database too')
    elif settings.password or settings.database:
        raise ValidationError('If you defined a password or a database you should define an username too')


def build_context(settings):
    """Observe the instance once and freeze everything the run branches on."""
    spec = parse_replica_set(settings)
    conf = MongoConfigFile(settings.conf_file)
    state = ConvergenceState.observe(settings.persisted_db_dir, conf, spec.name if spec else None)
    provider = ConfigProvider.EXTERNAL if state.local_config_file_exists else ConfigProvider.GENERATED
    node = NodeIdentity.resolve(settings.advertised_hostname, settings.port)
    return RunContext(settings, node, state, provider, spec)


class Orchestrator:
    """
    :param context: RunContext built by build_context.
    :param client: ClusterClient.
    :param node_service: mongod lifecycle (MongodProcess / MongodContainer).
    :param users: UserAdmin.
    :param volumes: VolumeManager.
    """

    def __init__(self, context, client, node_service, users, volumes, roles=None):
        self.context = context
        self.settings = context.settings
        self.client = client
        self.node_service = node_service
        self.users = users
        self.volumes = volumes
        self.roles = roles or RoleConfigurator(context, client, node_service)
        self.conf = MongoConfigFile(self.settings.conf_file)

    @property
    def owner(self):
        if running_as_root():
            return self.settings.system_user, self.settings.system_group
        return None, None

    def post_unpack(self):
        """One-time setup after the deployment artifact is extracted."""
        logger = logging.getLogger(__name__)
        user, group = self.owner
        for folder in (self.settings.conf_dir, self.settings.data_dir, self.settings.logs_dir, self.settings.tmp_dir):
            ensure_dir(folder, user, group)
        logger.info("==> Runtime directories ready")

    def post_installation(self):
        logger = logging.getLogger(__name__)
        if self.context.fresh:
            validate_inputs(self.settings)
        user, group = self.owner
        for folder in (self.settings.tmp_dir, self.settings.logs_dir):
            ensure_dir(folder, user, group)

        if self.context.fresh:
            logger.info('==> Deploying MongoDB from scratch...')
            self.deploy_fresh(user)
        else:
            logger.info('==> Deploying MongoDB with persisted data...')
            self.deploy_persisted()

        if running_as_root():
            configure_permissions([self.settings.tmp_dir, self.settings.logs_dir], self.settings.system_user, self.settings.system_group)
        configure_permissions([self.settings.data_dir], user, group, dir_mode=0o755, file_mode=0o644)

        extras.create_extra_configuration_files(self.settings)
        extras.print_properties(extras.populate_print_properties(self.settings, self.context.replica_set))

    def deploy_fresh(self, user):
        """Expects validated input; post_installation checks it before touching the disk."""
        ensure_dir(os.path.join(self.settings.data_dir, 'db'), user)
        self.materialize_config()
        self.node_service.start()

        self.create_users()
        spec = self.context.replica_set
        if spec is not None:
            if self.settings.replica_set_key:
                self.configure_key_file(user)
            self.enable_replica_set_mode(spec)
            self.roles.configure_replica_set(spec, self.context.primary_connection())
            # stopping a secondary before its initial sync may leave it corrupt
            if spec.mode is ReplicaSetMode.SECONDARY:
                wait_until_sync_complete(self.settings.log_file, self.settings.sync_timeout)
        self.node_service.stop()
        self.volumes.prepare_data_to_persist(self.settings.data_to_persist)

    def deploy_persisted(self):
        logger = logging.getLogger(__name__)
        self.volumes.restore_persisted_data(self.settings.data_to_persist)
        self.materialize_config()
        spec = self.context.replica_set
        if spec is not None:
            if spec.mode is ReplicaSetMode.DYNAMIC and not self.context.state.repl_set_name_matches:
                logger.info('==> ReplicaSetMode set to "dynamic" and replSetName different from config file.')
                logger.info('==> Dropping local database ...')
                self.node_service.start()
                self.roles.drop_local_database(self.context.local_connection())
                self.node_service.stop()
            if self.settings.replica_set_key:
                self.configure_key_file(self.owner[0])
            self.enable_replica_set_mode(spec)
        self.enable_auth()

    def materialize_config(self):
        logger = logging.getLogger(__name__)
        if self.context.generated_config:
            if not self.conf.exists():
                logger.info('==> No injected configuration files found. Creating default config files...')
                self.conf.render_default(self.settings)
        else:
            logger.info('==> Configuration files found...')

    def create_users(self):
        logger = logging.getLogger(__name__)
        spec = self.context.replica_set
        local = self.context.local_connection(password='')
        if self.settings.root_password and not (spec is not None and spec.mode.joins_primary):
            logger.info('==> Creating root user...')
            self.users.create_user(local, 'root', self.settings.root_password, 'admin', ['root'])
        self.enable_auth()
        if self.settings.username:
            logger.info(f"==> Creating {self.settings.username} user...")
            self.users.create_user(
                self.context.local_connection(),
                self.settings.username,
                self.settings.password,
                self.settings.database,
                [{'role': 'readWrite', 'db': self.settings.database}],
            )

    def enable_auth(self):
        logger = logging.getLogger(__name__)
        if not (self.settings.root_password or self.settings.password):
            return
        if self.context.generated_config:
            if not self.conf.authorization_disabled():
                logger.info('==> Enabling authentication...')
                self.conf.configure({'authorization': 'enabled', 'enableLocalhostAuthBypass': 'false'})
        else:
            logger.warning('==> You are mounting a configuration file and setting the mongodb password or root password.')
            logger.warning('==> Remember to enable authentication in your config file for those password to be valid.')

    def enable_replica_set_mode(self, spec):
        logger = logging.getLogger(__name__)
        logger.info('==> Enabling MongoDB replica set name')
        if self.context.generated_config:
            self.conf.configure({
                'replication': '',
                'replSetName': spec.name,
                'enableMajorityReadConcern': spec.enable_majority_read_concern,
            })

    def configure_key_file(self, user):
        write_key_file(self.settings.key_file, self.settings.replica_set_key, user)
        if self.context.generated_config:
            self.conf.configure({'authorization': 'enabled', 'keyFile': self.settings.key_file})
