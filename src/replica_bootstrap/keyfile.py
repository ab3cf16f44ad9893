"""
Shared key file for intra-cluster authentication.

mongod refuses key files readable by group/others, so the file is written with
mode 400 and owned by the database user.
"""

from __future__ import annotations

import logging
import os

from replica_bootstrap.errors import FilePermissionError
from replica_bootstrap.filesystem import chown

KEY_FILE_MODE = 0o400


def write_key_file(path, key, user=None):
    """
    :param path: key file location.
    :param key: shared secret, written verbatim.
    :param user: owner when running as root.
    """
    logger = logging.getLogger(__name__)
    logger.info("==> Writing keyfile for replica set authentication")
    try:
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        if os.path.exists(path):
            # a previous run left it read-only
            os.chmod(path, 0o600)
        with open(path, 'w') as f:
            f.write(key)
        os.chmod(path, KEY_FILE_MODE)
        chown(path, user)
    except (OSError, KeyError) as e:
        raise FilePermissionError(f"Unable to write key in {path}: {e}") from e
