"""
Root and application user creation on the local node.

Users are created through the administrative shell so that the first one can
rely on the localhost exception, before any credentials exist.
"""

from __future__ import annotations

import json
import logging

from replica_bootstrap.errors import ExecutionError, UserAdminError
from replica_bootstrap.protocol import LegacyTextProtocolAdapter


def create_user_command(user, password, database, roles):
    spec = json.dumps({'user': user, 'pwd': password, 'roles': roles})
    return f"db.getSiblingDB('{database}').createUser({spec})"


class UserAdmin:
    """
    :param client: ClusterClient used to reach the local node.
    """

    def __init__(self, client, protocol=None):
        self.client = client
        self.protocol = protocol or LegacyTextProtocolAdapter()

    def create_user(self, connection, user, password, database, roles):
        """
        Create ``user`` in ``database`` through ``connection``.

        :param connection: ConnectionProperties of the local node. Without a
            password the localhost exception is used (first user only).
        :param roles: list of role names or {role, db} documents.
        :return: True when created, False if the user already existed.
        """
        logger = logging.getLogger(__name__)
        command = create_user_command(user, password, database, roles)
        try:
            result = self.client.execute(command, connection)
            output = result.rendered
        except ExecutionError as e:
            output = e.output
            if not self.protocol.user_exists(output):
                raise UserAdminError(f"Unable to create user '{user}' in database '{database}': {e}") from e
        if self.protocol.user_exists(output):
            logger.info(f"User '{user}' already exists in database '{database}'. No action needed.")
            return False
        if not self.protocol.is_ok(output):
            raise UserAdminError(f"Unable to create user '{user}' in database '{database}': {output}")
        logger.info(f"User '{user}' created successfully!")
        return True
