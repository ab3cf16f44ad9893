"""
Value objects shared by the bootstrap components.

Everything here is immutable and created fresh for every run.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from replica_bootstrap.errors import BootstrapError

if TYPE_CHECKING:
    from replica_bootstrap.settings import Settings


class ReplicaSetMode(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    ARBITER = "arbiter"
    DYNAMIC = "dynamic"

    @property
    def joins_primary(self):
        """Secondaries and arbiters join an existing primary."""
        return self in (ReplicaSetMode.SECONDARY, ReplicaSetMode.ARBITER)


class ConfigProvider(str, Enum):
    GENERATED = "generated"
    EXTERNAL = "external"


@dataclass(frozen=True)
class NodeIdentity:
    address: str
    port: int

    @property
    def member(self):
        """``host:port`` as it appears in the replica set configuration."""
        return f"{self.address}:{self.port}"

    @classmethod
    def resolve(cls, advertised_hostname, port):
        """
        Use the advertised hostname when configured, otherwise the machine IP.
        """
        if advertised_hostname:
            return cls(advertised_hostname, port)
        return cls(machine_ip(), port)


def machine_ip():
    logger = logging.getLogger(__name__)
    hostname = socket.gethostname()
    try:
        ip = socket.gethostbyname(hostname)
    except OSError as e:
        logger.warning(f"Unable to resolve {hostname} ({e}) - advertising the hostname instead")
        return hostname
    logger.debug("Resolved machine IP {} for {}".format(ip, hostname))
    return ip


@dataclass(frozen=True)
class ReplicaSetSpec:
    name: str
    mode: ReplicaSetMode
    enable_majority_read_concern: bool = True


@dataclass(frozen=True)
class ConnectionProperties:
    host: str
    port: int
    database: str = "admin"
    user: str = "root"
    password: str = ""

    @property
    def address(self):
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ConvergenceState:
    """What the filesystem tells us about this instance at entry."""

    data_dir_exists: bool
    data_dir_empty: bool
    local_config_file_exists: bool
    repl_set_name_matches: bool

    @property
    def fresh(self):
        return not self.data_dir_exists or self.data_dir_empty

    @classmethod
    def observe(cls, db_dir, conf_file, repl_set_name=None):
        """
        Inspect the persisted data directory and the configuration file.

        :param db_dir: persisted database directory.
        :param conf_file: the MongoConfigFile of this node.
        :param repl_set_name: declared replica set name, if any.
        """
        exists = os.path.isdir(db_dir)
        empty = not exists or not os.listdir(db_dir)
        conf_exists = conf_file is not None and conf_file.exists()
        matches = bool(conf_exists and repl_set_name and conf_file.has_repl_set_name(repl_set_name))
        return cls(exists, empty, conf_exists, matches)


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str = ""
    exit_code: int = 0

    @property
    def rendered(self):
        """stdout and stderr together, for substring checks on failures."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class OutcomeKind(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    """Result of a single poll attempt."""

    kind: OutcomeKind
    reason: str = ""
    error: Optional[BootstrapError] = field(default=None, compare=False)

    @classmethod
    def pending(cls, reason=""):
        return cls(OutcomeKind.PENDING, reason)

    @classmethod
    def success(cls, reason=""):
        return cls(OutcomeKind.SUCCESS, reason)

    @classmethod
    def fatal(cls, error):
        return cls(OutcomeKind.FATAL, str(error), error)

    @property
    def is_pending(self):
        return self.kind is OutcomeKind.PENDING

    @property
    def is_success(self):
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_fatal(self):
        return self.kind is OutcomeKind.FATAL


@dataclass(frozen=True)
class RunContext:
    """
    Everything a run needs, computed once at entry and passed to every component.
    """

    settings: Settings
    node: NodeIdentity
    state: ConvergenceState
    config_provider: ConfigProvider
    replica_set: Optional[ReplicaSetSpec] = None

    @property
    def fresh(self):
        return self.state.fresh

    @property
    def generated_config(self):
        return self.config_provider is ConfigProvider.GENERATED

    def primary_connection(self):
        """
        Connection used by the role paths: the local node for a primary, the
        configured primary otherwise.
        """
        s = self.settings
        password = s.primary_root_password or s.root_password or ""
        if self.replica_set is not None and self.replica_set.mode is ReplicaSetMode.PRIMARY:
            return ConnectionProperties("127.0.0.1", s.port, "admin", "root", password)
        return ConnectionProperties(s.primary_host, s.primary_port, "admin", "root", password)

    def primary_root_connection(self):
        s = self.settings
        return ConnectionProperties(s.primary_host, s.primary_port, "admin", s.primary_root_user, s.primary_root_password)

    def local_connection(self, user="root", password=None):
        s = self.settings
        if password is None:
            password = s.root_password
        return ConnectionProperties("127.0.0.1", s.port, "admin", user, password or "")
