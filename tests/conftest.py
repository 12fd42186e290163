"""
Shared pytest fixtures for tierbackup tests.

This module provides fixtures for:
- Backup configuration pointing at temporary directories
- Source directory trees
- An in-memory object store
- Mock fixtures for external services (S3, APScheduler)
"""

from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from tierbackup.backup.storage import ObjectStore
from tierbackup.errors import StorageError, BatchDeleteError
from tierbackup.models import BackupConfiguration


class InMemoryObjectStore(ObjectStore):
    """
    Dict backed ObjectStore.

    Failures can be injected by setting list_error, put_error or
    delete_error to an exception instance, and failing_keys to make
    batch_delete report partial failure.
    """

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.list_error = None
        self.put_error = None
        self.delete_error = None
        self.failing_keys = set()
        self.calls = []

    def list_keys(self, prefix):
        self.calls.append(('list_keys', prefix))
        if self.list_error:
            raise self.list_error
        return [key for key in self.objects if key.startswith(prefix)]

    def put(self, key, stream):
        self.calls.append(('put', key))
        if self.put_error:
            raise self.put_error
        self.objects[key] = stream.read()

    def batch_delete(self, keys):
        keys = list(keys)
        self.calls.append(('batch_delete', keys))
        if self.delete_error:
            raise self.delete_error

        failed = [key for key in keys if key in self.failing_keys]
        for key in keys:
            if key not in self.failing_keys:
                self.objects.pop(key, None)
        if failed:
            raise BatchDeleteError(f"Failed to delete {len(failed)} objects", failed_keys=failed)

    def call_names(self):
        return [name for name, _ in self.calls]


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source directory tree.

    Creates:
    - a.txt ("hello")
    - sub/b.txt ("world")
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'a.txt').write_text('hello')
    (source / 'sub').mkdir()
    (source / 'sub' / 'b.txt').write_text('world')
    return source


@pytest.fixture
def work_dir(tmp_path):
    """Work directory path for a run (not created)."""
    return tmp_path / 'work' / 'backups'


@pytest.fixture
def backup_config(source_dir, work_dir):
    """
    BackupConfiguration with counts hourly=24, daily=3, weekly=4, monthly=12.
    """
    work_dir.parent.mkdir(parents=True, exist_ok=True)
    return BackupConfiguration(
        hourly_backups=24,
        daily_backups=3,
        weekly_backups=4,
        monthly_backups=12,
        s3_bucket='test-bucket',
        s3_path='backups',
        data_directory=str(source_dir),
        work_directory=str(work_dir),
    )


@pytest.fixture
def memory_store():
    """Empty in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture
def daily_keys():
    """Five daily backup keys, oldest first."""
    return [
        'backups/daily/2024-01-01T00:00:00Z.tar.gz',
        'backups/daily/2024-01-02T00:00:00Z.tar.gz',
        'backups/daily/2024-01-03T00:00:00Z.tar.gz',
        'backups/daily/2024-01-04T00:00:00Z.tar.gz',
        'backups/daily/2024-01-05T00:00:00Z.tar.gz',
    ]


@pytest.fixture
def list_failure():
    return StorageError("S3 list failed (AccessDenied): denied")


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region and yields a
    boto3 client for it.
    """
    with mock_aws():
        client = boto3.client(
            's3',
            region_name='us-east-1',
            aws_access_key_id='testing',
            aws_secret_access_key='testing'
        )
        client.create_bucket(Bucket='test-bucket')
        yield client


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    import tierbackup.scheduler as scheduler_module

    scheduler_module.scheduler = None
    scheduler_module.backup_config = None

    with patch('tierbackup.scheduler.BlockingScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance

    scheduler_module.scheduler = None
    scheduler_module.backup_config = None
