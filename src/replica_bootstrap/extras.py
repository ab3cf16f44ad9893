"""
Supervision/log rotation files and the end-of-run summary.
"""

from __future__ import annotations

import logging
import os

from replica_bootstrap.conffile import render_to_file
from replica_bootstrap.models import ReplicaSetMode


def create_extra_configuration_files(settings):
    mongod = os.path.join(settings.bin_dir, 'mongod')
    render_to_file(
        'monit.j2',
        settings.monit_file,
        service='mongodb',
        pid_file=settings.pid_file,
        start_command=f"{mongod} --config {settings.conf_file} --fork",
        stop_command=f"{mongod} --config {settings.conf_file} --shutdown",
    )
    render_to_file('logrotate.j2', settings.logrotate_file, log_path=os.path.join(settings.logs_dir, '*log'))


def populate_print_properties(settings, replica_set=None):
    """
    Properties worth showing to the operator once the node is configured.
    Primary coordinates are shown only for nodes that join a primary.
    """
    properties = {}
    if replica_set is None or replica_set.mode is ReplicaSetMode.PRIMARY:
        properties['Root Password'] = settings.root_password
    if settings.username and settings.password and settings.database:
        properties['Username'] = settings.username
        properties['Password'] = settings.password
        properties['Database'] = settings.database
    if replica_set is not None:
        properties['Replication Mode'] = replica_set.mode.value
        if replica_set.mode.joins_primary:
            properties['Primary Host'] = settings.primary_host
            properties['Primary Port'] = settings.primary_port
            properties['Primary Root User'] = settings.primary_root_user
            properties['Primary Root Password'] = settings.primary_root_password
    return properties


def print_properties(properties):
    logger = logging.getLogger(__name__)
    logger.info("=== MongoDB node configured ===")
    for key, value in properties.items():
        shown = '**********' if 'Password' in key and value else value
        logger.info(f"  {key}: {shown}")
