"""
Retention policy enforcement for remote backups.

Keeps the newest N archives in each remote folder and deletes the rest.
Only files following the archive naming convention ({name}_{YYYYMMDD}.zip)
are considered, so unrelated files in the same folder are never touched.
"""

import re
import logging
from typing import Iterable, List

from dbkeeper.models import RemoteEntry
from .storage import DeleteError


logger = logging.getLogger(__name__)

ARCHIVE_NAME_PATTERN = re.compile(r'^[^/]+_\d{8}\.zip$')

DEFAULT_KEEP = 10


def is_archive_name(name: str) -> bool:
    return bool(ARCHIVE_NAME_PATTERN.match(name))


def select_for_deletion(entries: Iterable[RemoteEntry], keep: int = DEFAULT_KEEP) -> List[str]:
    """
    Pick the archives that fall outside the retention window.

    Args:
        entries: Remote listing
        keep: Number of newest archives to keep

    Returns:
        Names to delete, oldest last
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")

    archives = [e for e in entries if is_archive_name(e.name)]
    archives.sort(key=lambda e: e.mod_time, reverse=True)

    return [e.name for e in archives[keep:]]


class RetentionManager:
    """
    Prunes old archives from one remote folder.
    """

    def __init__(self, storage, keep: int = DEFAULT_KEEP, dry_run: bool = False):
        """
        Initialize retention manager.

        Args:
            storage: Storage handler (RcloneStorage or S3Storage)
            keep: Number of newest archives to keep per folder
            dry_run: Report deletions without performing them
        """
        self.storage = storage
        self.keep = keep
        self.dry_run = dry_run

    def prune(self, remote_folder: str) -> List[str]:
        """
        Delete archives beyond the retention window.

        Args:
            remote_folder: Folder on the remote

        Returns:
            Names deleted (or, in dry-run, that would be deleted)

        Raises:
            ListError: If the folder cannot be listed
        """
        location = self.storage.describe(remote_folder)
        logger.info("Cleaning up old backups in %s", location)

        entries = self.storage.list_files(remote_folder)
        to_delete = select_for_deletion(entries, self.keep)

        if not to_delete:
            logger.info("Nothing to remove in %s (%d files)", location, len(entries))
            return []

        deleted = []
        for name in to_delete:
            if self.dry_run:
                logger.info("[dry-run] Would remove: %s", name)
                deleted.append(name)
                continue

            try:
                self.storage.delete(remote_folder, name)
                deleted.append(name)
                logger.info("Removed: %s", name)
            except DeleteError as e:
                logger.warning("Failed to remove %s: %s", name, e)

        return deleted
