"""
Backup executor - orchestrates one backup cycle.

Workflow:
1. Archive the data directory (fatal on failure)
2. Upload the archive (fatal on failure)
3. Prune expired archives of the same type (best effort)
4. Remove the temporary work directory (best effort)

Each stage returns a StageOutcome; whether the run continues is decided by
the type of error a stage raises, not by where the check happens.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from tierbackup.errors import (
    BackupError,
    FatalBackupError,
    RecoverableBackupError,
    CleanupError,
)
from tierbackup.models import BackupConfiguration
from .compression import create_backup_archive, format_timestamp
from .retention import RetentionPruner
from .storage import ObjectStore, S3ObjectStore, upload_archive


logger = logging.getLogger(__name__)

SUCCESS = 'success'
RECOVERABLE = 'recoverable'
FATAL = 'fatal'

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_COMPLETED_WITH_ERRORS = 3


@dataclass
class StageOutcome:
    """Tagged result of a single pipeline stage."""
    stage: str
    status: str
    value: Any = None
    error: Optional[BackupError] = None


@dataclass
class BackupResult:
    """Summary of one backup run."""
    backup_type: str
    timestamp: str
    remote_key: Optional[str] = None
    archive_path: Optional[str] = None
    deleted_keys: List[str] = field(default_factory=list)
    outcomes: List[StageOutcome] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        """True when no must-succeed stage failed."""
        return all(o.status != FATAL for o in self.outcomes)

    @property
    def errors(self) -> List[BackupError]:
        return [o.error for o in self.outcomes if o.error is not None]

    @property
    def warnings(self) -> List[BackupError]:
        return [o.error for o in self.outcomes if o.status == RECOVERABLE]

    @property
    def exit_code(self) -> int:
        if not self.completed:
            return EXIT_FAILED
        if self.warnings:
            return EXIT_COMPLETED_WITH_ERRORS
        return EXIT_OK

    def stage(self, name: str) -> Optional[StageOutcome]:
        for outcome in self.outcomes:
            if outcome.stage == name:
                return outcome
        return None


class BackupExecutor:
    """
    Runs the archive, upload, prune and cleanup stages for one backup type.
    """

    def __init__(self, config: BackupConfiguration, store: ObjectStore):
        """
        Initialize backup executor.

        Args:
            config: Backup configuration
            store: Object store receiving the archives
        """
        self.config = config
        self.store = store
        self.pruner = RetentionPruner(config, store)
        self.result = None

    def execute(self, backup_type: str, now: Optional[datetime] = None) -> BackupResult:
        """
        Execute one backup cycle.

        Args:
            backup_type: hourly, daily, weekly or monthly; other values are
                accepted and pruned with the hourly retention count
            now: Run time (default: current UTC time)

        Returns:
            BackupResult describing every stage that ran
        """
        backup_type = getattr(backup_type, 'value', backup_type)
        self.result = BackupResult(backup_type=backup_type, timestamp=format_timestamp(now))

        self._log(logging.INFO, f"Beginning {backup_type} backup")

        stages = [
            ('archive', self._archive),
            ('upload', self._upload),
            ('prune', self._prune),
            ('cleanup', self._cleanup),
        ]

        for name, stage in stages:
            outcome = self._run_stage(name, stage)
            self.result.outcomes.append(outcome)
            if outcome.status == FATAL:
                self._log(logging.ERROR, f"Backup aborted at {name} stage")
                return self.result

        if self.result.warnings:
            self._log(logging.WARNING, f"Backup complete with {len(self.result.warnings)} non-fatal error(s)")
        else:
            self._log(logging.INFO, "Backup complete")

        return self.result

    def _run_stage(self, name: str, stage: Callable[[], Any]) -> StageOutcome:
        try:
            return StageOutcome(stage=name, status=SUCCESS, value=stage())
        except FatalBackupError as e:
            self._log(logging.ERROR, f"{name} failed: {e}", e)
            return StageOutcome(stage=name, status=FATAL, error=e)
        except RecoverableBackupError as e:
            level = logging.WARNING if isinstance(e, CleanupError) else logging.ERROR
            self._log(level, f"{name} failed, continuing: {e}", e)
            return StageOutcome(stage=name, status=RECOVERABLE, error=e)

    def _archive(self) -> str:
        self._log(logging.INFO, f"Compressing directory {self.config.data_directory}")
        archive_path = create_backup_archive(self.config, self.result.timestamp, self.result.backup_type)
        self.result.archive_path = archive_path
        self._log(logging.INFO, f"Archive created: {archive_path} ({os.path.getsize(archive_path) / 1024 / 1024:.2f} MB)")
        return archive_path

    def _upload(self) -> str:
        remote_key = self.config.remote_key(self.result.backup_type, self.result.timestamp)
        self._log(logging.INFO, f"Uploading to {self.config.s3_bucket}: key={remote_key}")
        upload_archive(
            self.store,
            self.result.archive_path,
            remote_key,
            backup_type=self.result.backup_type,
            timestamp=self.result.timestamp
        )
        self.result.remote_key = remote_key
        return remote_key

    def _prune(self) -> List[str]:
        self._log(logging.INFO, "Pruning old backups")
        deleted = self.pruner.prune(self.result.backup_type, timestamp=self.result.timestamp)
        self.result.deleted_keys = deleted
        self._log(logging.INFO, f"Pruned {len(deleted)} backup(s)")
        return deleted

    def _cleanup(self):
        """Remove the temporary work directory and everything in it."""
        work_directory = self.config.work_directory
        if not os.path.exists(work_directory):
            return None

        self._log(logging.INFO, f"Removing temporary backup directory {work_directory}")
        try:
            shutil.rmtree(work_directory)
        except OSError as e:
            raise CleanupError(
                f"Failed to delete backup directory {work_directory}",
                backup_type=self.result.backup_type, timestamp=self.result.timestamp, cause=e
            )
        return work_directory

    def _log(self, level: int, message: str, error: Optional[BackupError] = None):
        """
        Record a run log entry and emit it through the module logger.

        Args:
            level: logging level
            message: Log message
            error: Stage error, attached as structured context
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.result.logs.append(f"[{timestamp}] {logging.getLevelName(level)} {message}")

        extra = {
            'backup_type': self.result.backup_type,
            'backup_timestamp': self.result.timestamp,
        }
        if error is not None:
            extra['backup_stage'] = error.stage
            extra['backup_error'] = repr(error.cause or error)

        logger.log(level, "[%s %s] %s", self.result.backup_type, self.result.timestamp, message, extra=extra)


def run_backup(config: BackupConfiguration, store: ObjectStore, backup_type: str,
               now: Optional[datetime] = None) -> BackupResult:
    """
    Run exactly one backup cycle for backup_type.

    Returns:
        BackupResult; stage failures are reported on the result, not raised
    """
    return BackupExecutor(config, store).execute(backup_type, now=now)


def run_configured_backup(backup_type: str, config_obj) -> BackupResult:
    """
    Build configuration and S3 store from a Config class and run a backup.

    Args:
        backup_type: Backup type string
        config_obj: Config class or instance (see tierbackup.config)

    Returns:
        BackupResult

    Raises:
        ConfigurationError: If the configuration is invalid
        StorageError: If the S3 client cannot be created
    """
    backup_config = BackupConfiguration.from_object(config_obj)
    store = S3ObjectStore(
        bucket_name=backup_config.s3_bucket,
        access_key=getattr(config_obj, 'AWS_ACCESS_KEY_ID', None),
        secret_key=getattr(config_obj, 'AWS_SECRET_ACCESS_KEY', None),
        region=getattr(config_obj, 'AWS_REGION', None) or 'us-east-1',
        endpoint_url=getattr(config_obj, 'AWS_ENDPOINT_URL', None)
    )
    return run_backup(backup_config, store, backup_type)
