"""
MongoDB replica set bootstrap

DESCRIPTION:
    Drives one MongoDB node into its declared replica set role. Each instance
    (primary, secondary, arbiter) runs the same bootstrap with a different
    MONGODB_REPLICA_SET_MODE; they converge without a coordinator, using only
    the primary's membership state.

USAGE:
    mongodb-replica-bootstrap post-unpack     # once, after the image is unpacked
    mongodb-replica-bootstrap post-install    # on every boot (default)

    Configure via environment variables (see replica_bootstrap.settings).
    DEBUG=1 enables debug logging.
"""

import argparse
import logging
import os
import sys

from replica_bootstrap.client import build_client
from replica_bootstrap.errors import BootstrapError
from replica_bootstrap.log import setup_logging
from replica_bootstrap.node import build_node_service
from replica_bootstrap.orchestrator import Orchestrator, build_context
from replica_bootstrap.settings import Settings
from replica_bootstrap.users import UserAdmin
from replica_bootstrap.volume import VolumeManager


def build_orchestrator(settings):
    context = build_context(settings)
    client = build_client(settings)
    return Orchestrator(
        context,
        client,
        build_node_service(settings),
        UserAdmin(client),
        VolumeManager(settings.base_dir, settings.persist_dir),
    )


def main(argv=None):
    parser = argparse.ArgumentParser(prog='mongodb-replica-bootstrap', description='Bootstrap a MongoDB replica set node.')
    parser.add_argument('hook', nargs='?', default='post-install', choices=('post-unpack', 'post-install'))
    args = parser.parse_args(argv)

    setup_logging(debug='1' == os.environ.get('DEBUG'))
    logger = logging.getLogger(__name__)

    try:
        orchestrator = build_orchestrator(Settings.from_env())
        if args.hook == 'post-unpack':
            orchestrator.post_unpack()
        else:
            orchestrator.post_installation()
    except BootstrapError as e:
        logger.error(f"{e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
