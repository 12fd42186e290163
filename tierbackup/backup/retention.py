"""
Retention policy enforcement for backups.

Keeps the N most recent archives under a backup type's prefix, where N is
the type's configured retention count, and batch-deletes the rest. Keys embed
a lexically sortable timestamp, so descending key order is newest first.
"""

import logging
from typing import List

from tierbackup.errors import PruneListError, PruneDeleteError, StorageError, BatchDeleteError
from tierbackup.models import BackupConfiguration
from .storage import ObjectStore


logger = logging.getLogger(__name__)


def select_expired_keys(keys: List[str], keep: int) -> List[str]:
    """
    Return the keys beyond the newest `keep`, newest first.

    Args:
        keys: Remote keys under one backup type's prefix
        keep: Number of most recent keys to retain

    Returns:
        Keys to delete (empty when len(keys) <= keep)
    """
    ordered = sorted(keys, reverse=True)
    if len(ordered) <= keep:
        return []
    return ordered[keep:]


class RetentionPruner:
    """
    Enforces the keep-count retention policy for a backup type.
    """

    def __init__(self, config: BackupConfiguration, store: ObjectStore):
        self.config = config
        self.store = store

    def prune(self, backup_type: str, timestamp: str = None) -> List[str]:
        """
        Delete archives of backup_type beyond its retention count.

        Args:
            backup_type: Backup type; unknown types use the hourly count
            timestamp: Run timestamp, for error context

        Returns:
            Keys that were deleted

        Raises:
            PruneListError: If existing archives cannot be listed
            PruneDeleteError: If the batch delete fails, fully or partially
        """
        prefix = self.config.type_prefix(backup_type)

        try:
            keys = self.store.list_keys(prefix)
        except StorageError as e:
            raise PruneListError(
                f"Failed to list backups under {prefix}",
                backup_type=backup_type, timestamp=timestamp, cause=e
            )

        keep = self.config.retention_count(backup_type)
        expired = select_expired_keys(keys, keep)

        if not expired:
            logger.debug("Nothing to prune, skipping: prefix=%s, found=%d, keep=%d", prefix, len(keys), keep)
            return []

        logger.info("Pruning %d of %d backups under %s (keep=%d)", len(expired), len(keys), prefix, keep)

        try:
            self.store.batch_delete(expired)
        except BatchDeleteError as e:
            raise PruneDeleteError(
                f"Failed to delete {len(e.failed_keys)} expired backups under {prefix}",
                backup_type=backup_type, timestamp=timestamp, cause=e, failed_keys=e.failed_keys
            )
        except StorageError as e:
            raise PruneDeleteError(
                f"Failed to delete expired backups under {prefix}",
                backup_type=backup_type, timestamp=timestamp, cause=e, failed_keys=expired
            )

        logger.info("Backups pruned successfully: prefix=%s, deleted=%d", prefix, len(expired))
        return expired
