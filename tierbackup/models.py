import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum

from tierbackup.errors import ConfigurationError


def default_work_directory() -> str:
    return os.path.join(tempfile.gettempdir(), 'backups')


class BackupType(str, Enum):
    """Backup cadence tier"""
    HOURLY = 'hourly'
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'

    @classmethod
    def resolve(cls, value) -> 'BackupType':
        """
        Map a backup type string to its retention tier.

        Unknown strings fall back to HOURLY.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.HOURLY


@dataclass(frozen=True)
class BackupConfiguration:
    """
    Immutable settings for one backup run.

    Retention counts are independent per backup type: a count of N keeps at
    most N archives under that type's prefix after pruning.
    """
    hourly_backups: int
    daily_backups: int
    weekly_backups: int
    monthly_backups: int
    s3_bucket: str
    s3_path: str
    data_directory: str
    work_directory: str = field(default_factory=default_work_directory)
    write_marker_file: bool = False

    def __post_init__(self):
        for name in ('hourly_backups', 'daily_backups', 'weekly_backups', 'monthly_backups'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{name} must not be negative, got {value}")

        if not self.s3_bucket:
            raise ConfigurationError("s3_bucket is required")
        if not self.data_directory:
            raise ConfigurationError("data_directory is required")

    def retention_count(self, backup_type) -> int:
        """Return the keep count for a backup type (unknown types use hourly)."""
        counts = {
            BackupType.HOURLY: self.hourly_backups,
            BackupType.DAILY: self.daily_backups,
            BackupType.WEEKLY: self.weekly_backups,
            BackupType.MONTHLY: self.monthly_backups,
        }
        return counts[BackupType.resolve(backup_type)]

    def type_prefix(self, backup_type) -> str:
        """Remote prefix holding every archive of a backup type."""
        return _join_key(self.s3_path, str(_type_value(backup_type))) + '/'

    def remote_key(self, backup_type, timestamp: str) -> str:
        """Remote key for an archive: {s3_path}/{backup_type}/{timestamp}.tar.gz"""
        return self.type_prefix(backup_type) + f"{timestamp}.tar.gz"

    @classmethod
    def from_object(cls, obj) -> 'BackupConfiguration':
        """
        Build a configuration from a Config class or instance.

        Args:
            obj: Object exposing the BACKUP_* attributes of tierbackup.config.Config

        Returns:
            Validated BackupConfiguration

        Raises:
            ConfigurationError: If a value is missing or invalid
        """
        def count(name):
            raw = getattr(obj, name, None)
            if raw is None or raw == '':
                raise ConfigurationError(f"{name} is not set")
            try:
                return int(raw)
            except (TypeError, ValueError):
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}")

        work_directory = getattr(obj, 'BACKUP_WORK_DIRECTORY', None) or default_work_directory()

        return cls(
            hourly_backups=count('BACKUP_HOURLY_COUNT'),
            daily_backups=count('BACKUP_DAILY_COUNT'),
            weekly_backups=count('BACKUP_WEEKLY_COUNT'),
            monthly_backups=count('BACKUP_MONTHLY_COUNT'),
            s3_bucket=getattr(obj, 'BACKUP_S3_BUCKET', None) or '',
            s3_path=getattr(obj, 'BACKUP_S3_PATH', None) or '',
            data_directory=getattr(obj, 'BACKUP_DATA_DIRECTORY', None) or '',
            work_directory=work_directory,
            write_marker_file=bool(getattr(obj, 'BACKUP_WRITE_MARKER_FILE', False)),
        )


def _type_value(backup_type) -> str:
    if isinstance(backup_type, BackupType):
        return backup_type.value
    return backup_type


def _join_key(prefix: str, name: str) -> str:
    prefix = (prefix or '').strip('/')
    if not prefix:
        return name
    return f"{prefix}/{name}"
