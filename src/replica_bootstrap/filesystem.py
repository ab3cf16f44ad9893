"""
Directory creation and ownership/permission helpers.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd

from replica_bootstrap.errors import FilePermissionError


def running_as_root():
    return os.geteuid() == 0


def chown(path, user=None, group=None):
    """Change ownership when running as root; a no-op otherwise."""
    if not running_as_root() or (user is None and group is None):
        return
    uid = pwd.getpwnam(user).pw_uid if user else -1
    gid = grp.getgrnam(group).gr_gid if group else -1
    os.chown(path, uid, gid)


def ensure_dir(path, user=None, group=None):
    try:
        os.makedirs(path, exist_ok=True)
        chown(path, user, group)
    except (OSError, KeyError) as e:
        raise FilePermissionError(f"Unable to create directory {path}: {e}") from e


def configure_permissions(paths, user=None, group=None, dir_mode=None, file_mode=None):
    """
    Apply ownership and modes recursively.

    :param paths: directories to walk.
    :param dir_mode: octal mode for directories (e.g. 0o755), None to keep.
    :param file_mode: octal mode for files (e.g. 0o644), None to keep.
    """
    logger = logging.getLogger(__name__)
    for top in paths:
        if not os.path.exists(top):
            continue
        try:
            for root, dirs, files in os.walk(top):
                _apply(root, user, group, dir_mode)
                for name in files:
                    _apply(os.path.join(root, name), user, group, file_mode)
        except (OSError, KeyError) as e:
            raise FilePermissionError(f"Unable to set permissions on {top}: {e}") from e
        logger.debug(f"Permissions applied to {top}")


def _apply(path, user, group, mode):
    if os.path.islink(path):
        return
    chown(path, user, group)
    if mode is not None:
        os.chmod(path, mode)
