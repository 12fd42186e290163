"""
Error types for the backup pipeline.

Every stage error derives from either FatalBackupError or
RecoverableBackupError. The executor decides whether a run continues purely
from which of the two an error is:

- Fatal: ArchiveError, UploadError
- Recoverable: PruneListError, PruneDeleteError, CleanupError
"""


class ConfigurationError(ValueError):
    """Raised when backup configuration is missing or invalid."""
    pass


class StorageError(Exception):
    """Raised when an object store operation fails."""
    pass


class BatchDeleteError(StorageError):
    """Raised when some or all keys of a batch delete were not removed."""

    def __init__(self, message, failed_keys=None):
        super().__init__(message)
        self.failed_keys = list(failed_keys or [])


class BackupError(Exception):
    """Base class for errors raised by a pipeline stage."""

    stage = 'backup'

    def __init__(self, message, backup_type=None, timestamp=None, cause=None):
        super().__init__(message)
        self.backup_type = backup_type
        self.timestamp = timestamp
        self.cause = cause

    def __str__(self):
        message = super().__str__()
        if self.cause is not None:
            return f"{message}: {self.cause}"
        return message


class FatalBackupError(BackupError):
    """Stage error that aborts the run."""
    pass


class RecoverableBackupError(BackupError):
    """Stage error that is logged while the run carries on."""
    pass


class ArchiveError(FatalBackupError):
    """Raised when the marker, work directory or archive cannot be written."""
    stage = 'archive'


class UploadError(FatalBackupError):
    """Raised when the archive cannot be read or stored remotely."""
    stage = 'upload'


class PruneListError(RecoverableBackupError):
    """Raised when existing backups cannot be listed."""
    stage = 'prune'


class PruneDeleteError(RecoverableBackupError):
    """Raised when the batch delete of expired backups fails."""
    stage = 'prune'

    def __init__(self, message, backup_type=None, timestamp=None, cause=None, failed_keys=None):
        super().__init__(message, backup_type=backup_type, timestamp=timestamp, cause=cause)
        self.failed_keys = list(failed_keys or [])


class CleanupError(RecoverableBackupError):
    """Raised when the temporary work directory cannot be removed."""
    stage = 'cleanup'
