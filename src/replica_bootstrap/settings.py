"""
Environment driven configuration.

Variables are matched case-insensitively, the same way the swarm manager reads
its environment. See SETTINGS_DEFAULTS for the full list.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from replica_bootstrap.errors import ValidationError

SETTINGS_DEFAULTS = {
    'MONGODB_PORT': '27017',
    'MONGODB_ROOT_PASSWORD': '',
    'MONGODB_USERNAME': '',
    'MONGODB_PASSWORD': '',
    'MONGODB_DATABASE': '',
    'MONGODB_REPLICA_SET_MODE': '',
    'MONGODB_REPLICA_SET_NAME': 'replicaset',
    'MONGODB_REPLICA_SET_KEY': '',
    'MONGODB_PRIMARY_HOST': '',
    'MONGODB_PRIMARY_PORT': '27017',
    'MONGODB_PRIMARY_ROOT_USER': 'root',
    'MONGODB_PRIMARY_ROOT_PASSWORD': '',
    'MONGODB_ADVERTISED_HOSTNAME': '',
    'MONGODB_ENABLE_MAJORITY_READ_CONCERN': 'yes',
    'MONGODB_ENABLE_IPV6': 'no',
    'MONGODB_ENABLE_DIRECTORY_PER_DB': 'no',
    'MONGODB_DISABLE_SYSTEM_LOG': 'no',
    'MONGODB_BASE_DIR': '/opt/mongodb',
    'MONGODB_PERSIST_DIR': '/persist/mongodb',
    'MONGODB_SYSTEM_USER': 'mongo',
    'MONGODB_SYSTEM_GROUP': 'mongo',
    'MONGODB_SYNC_TIMEOUT': '10',
    'MONGODB_SHELL': 'mongosh',
    'MONGODB_CONTAINER_NAME': '',
}

YES = ('yes', 'true', '1')
NO = ('no', 'false', '0', '')


def read_env(environ=None):
    """
    Collect the known variables from the environment, falling back to defaults.

    :param environ: mapping to read from (defaults to os.environ).
    :return: dict keyed by lower-cased variable name.
    """
    if environ is None:
        environ = os.environ
    envs = {}
    for var, default in SETTINGS_DEFAULTS.items():
        envs[var.lower()] = default
        for env_var in environ:
            if env_var.lower() == var.lower():
                envs[var.lower()] = environ[env_var]
                break
    return envs


def parse_flag(name, value):
    value = (value or '').strip().lower()
    if value in YES:
        return True
    if value in NO:
        return False
    raise ValidationError(f"{name} must be one of yes/no, got '{value}'")


def parse_int(name, value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer, got '{value}'") from None


@dataclass(frozen=True)
class Settings:
    port: int = 27017
    root_password: str = ''
    username: str = ''
    password: str = ''
    database: str = ''
    replica_set_mode: str = ''
    replica_set_name: str = 'replicaset'
    replica_set_key: str = ''
    primary_host: str = ''
    primary_port: int = 27017
    primary_root_user: str = 'root'
    primary_root_password: str = ''
    advertised_hostname: str = ''
    enable_majority_read_concern: bool = True
    enable_ipv6: bool = False
    enable_directory_per_db: bool = False
    disable_system_log: bool = False
    base_dir: str = '/opt/mongodb'
    persist_dir: str = '/persist/mongodb'
    system_user: str = 'mongo'
    system_group: str = 'mongo'
    sync_timeout: int = 10
    shell: str = 'mongosh'
    container_name: str = ''

    @classmethod
    def from_env(cls, environ=None):
        envs = read_env(environ)
        return cls(
            port=parse_int('MONGODB_PORT', envs['mongodb_port']),
            root_password=envs['mongodb_root_password'],
            username=envs['mongodb_username'],
            password=envs['mongodb_password'],
            database=envs['mongodb_database'],
            replica_set_mode=envs['mongodb_replica_set_mode'].strip().lower(),
            replica_set_name=envs['mongodb_replica_set_name'],
            replica_set_key=envs['mongodb_replica_set_key'],
            primary_host=envs['mongodb_primary_host'],
            primary_port=parse_int('MONGODB_PRIMARY_PORT', envs['mongodb_primary_port']),
            primary_root_user=envs['mongodb_primary_root_user'],
            primary_root_password=envs['mongodb_primary_root_password'],
            advertised_hostname=envs['mongodb_advertised_hostname'],
            enable_majority_read_concern=parse_flag('MONGODB_ENABLE_MAJORITY_READ_CONCERN', envs['mongodb_enable_majority_read_concern']),
            enable_ipv6=parse_flag('MONGODB_ENABLE_IPV6', envs['mongodb_enable_ipv6']),
            enable_directory_per_db=parse_flag('MONGODB_ENABLE_DIRECTORY_PER_DB', envs['mongodb_enable_directory_per_db']),
            disable_system_log=parse_flag('MONGODB_DISABLE_SYSTEM_LOG', envs['mongodb_disable_system_log']),
            base_dir=envs['mongodb_base_dir'],
            persist_dir=envs['mongodb_persist_dir'],
            system_user=envs['mongodb_system_user'],
            system_group=envs['mongodb_system_group'],
            sync_timeout=parse_int('MONGODB_SYNC_TIMEOUT', envs['mongodb_sync_timeout']),
            shell=envs['mongodb_shell'],
            container_name=envs['mongodb_container_name'],
        )

    # Layout under the install root
    @property
    def conf_dir(self):
        return os.path.join(self.base_dir, 'conf')

    @property
    def conf_file(self):
        return os.path.join(self.conf_dir, 'mongodb.conf')

    @property
    def key_file(self):
        return os.path.join(self.conf_dir, 'keyfile')

    @property
    def data_dir(self):
        return os.path.join(self.base_dir, 'data')

    @property
    def logs_dir(self):
        return os.path.join(self.base_dir, 'logs')

    @property
    def log_file(self):
        return os.path.join(self.logs_dir, 'mongodb.log')

    @property
    def tmp_dir(self):
        return os.path.join(self.base_dir, 'tmp')

    @property
    def pid_file(self):
        return os.path.join(self.tmp_dir, 'mongodb.pid')

    @property
    def bin_dir(self):
        return os.path.join(self.base_dir, 'bin')

    @property
    def monit_file(self):
        return os.path.join(self.conf_dir, 'monit', 'mongodb.conf')

    @property
    def logrotate_file(self):
        return os.path.join(self.conf_dir, 'logrotate', 'mongodb')

    @property
    def persisted_db_dir(self):
        return os.path.join(self.persist_dir, 'data', 'db')

    @property
    def data_to_persist(self):
        """Paths (relative to the install root) that live on the persistence volume."""
        return ('data',)
