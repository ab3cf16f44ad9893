"""
Moving data onto the persistence volume and linking it back.

Each persisted path lives under the persist dir; the install root keeps a
symlink to it.
"""

from __future__ import annotations

import logging
import os
import shutil

from replica_bootstrap.errors import FilePermissionError


class VolumeManager:
    """
    :param base_dir: install root the relative paths resolve against.
    :param persist_dir: mount point of the persistence volume.
    """

    def __init__(self, base_dir, persist_dir):
        self.base_dir = base_dir
        self.persist_dir = persist_dir

    def prepare_data_to_persist(self, paths):
        """Move freshly initialised ``paths`` to the volume and link them back."""
        logger = logging.getLogger(__name__)
        logger.info("==> Preparing data to persist...")
        for rel in paths:
            local = os.path.join(self.base_dir, rel)
            persisted = os.path.join(self.persist_dir, rel)
            if os.path.islink(local) or not os.path.exists(local):
                continue
            try:
                os.makedirs(os.path.dirname(persisted), exist_ok=True)
                if os.path.isdir(persisted):
                    shutil.rmtree(persisted)
                elif os.path.exists(persisted):
                    os.remove(persisted)
                shutil.move(local, persisted)
                os.symlink(persisted, local)
            except OSError as e:
                raise FilePermissionError(f"Unable to persist {local} to {persisted}: {e}") from e
            logger.debug(f"Persisted {local} -> {persisted}")

    def restore_persisted_data(self, paths):
        """Replace local ``paths`` with links to their persisted copies."""
        logger = logging.getLogger(__name__)
        logger.info("==> Restoring persisted data...")
        for rel in paths:
            local = os.path.join(self.base_dir, rel)
            persisted = os.path.join(self.persist_dir, rel)
            if not os.path.exists(persisted):
                logger.warning(f"Nothing persisted for {rel} in {self.persist_dir}")
                continue
            try:
                if os.path.islink(local):
                    os.remove(local)
                elif os.path.isdir(local):
                    shutil.rmtree(local)
                elif os.path.exists(local):
                    os.remove(local)
                os.makedirs(os.path.dirname(local), exist_ok=True)
                os.symlink(persisted, local)
            except OSError as e:
                raise FilePermissionError(f"Unable to restore {persisted} to {local}: {e}") from e
            logger.debug(f"Restored {persisted} -> {local}")
