"""
Backup module for tierbackup.

This module handles the backup pipeline:
- Archive creation
- Object storage (S3)
- Retention pruning
- Execution orchestration
"""

from .executor import BackupExecutor, BackupResult, StageOutcome, run_backup
from .compression import create_backup_archive, format_timestamp
from .storage import ObjectStore, S3ObjectStore, upload_archive
from .retention import RetentionPruner

__all__ = [
    'BackupExecutor',
    'BackupResult',
    'StageOutcome',
    'run_backup',
    'create_backup_archive',
    'format_timestamp',
    'ObjectStore',
    'S3ObjectStore',
    'upload_archive',
    'RetentionPruner'
]
