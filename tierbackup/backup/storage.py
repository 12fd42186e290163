"""
Object store handlers for backup archives.

Supports:
- ObjectStore: the narrow interface the pipeline depends on
- S3ObjectStore: AWS S3 (or any S3-compatible endpoint) via boto3
- upload_archive: streams a local archive to its remote key
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import BinaryIO, Iterable, List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, BotoCoreError

from tierbackup.errors import StorageError, BatchDeleteError, UploadError


logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


class ObjectStore(ABC):
    """Minimal object store capabilities used by the backup pipeline."""

    @abstractmethod
    def list_keys(self, prefix: str) -> List[str]:
        """Return every key starting with prefix."""

    @abstractmethod
    def put(self, key: str, stream: BinaryIO) -> None:
        """Store the contents of stream under key."""

    @abstractmethod
    def batch_delete(self, keys: Iterable[str]) -> None:
        """Delete keys; raise BatchDeleteError if any of them could not be deleted."""


def create_s3_client(
    access_key: Optional[str] = None,
    secret_key: Optional[str] = None,
    region: str = 'us-east-1',
    endpoint_url: Optional[str] = None
):
    """
    Create a boto3 S3 client.

    When no keys are given boto3's default credential chain is used
    (environment, shared config, instance profile).

    Raises:
        StorageError: If the client cannot be created
    """
    kwargs = {'region_name': region}
    if access_key and secret_key:
        kwargs['aws_access_key_id'] = access_key
        kwargs['aws_secret_access_key'] = secret_key
    if endpoint_url:
        kwargs['endpoint_url'] = endpoint_url

    try:
        return boto3.client('s3', **kwargs)
    except Exception as e:
        raise StorageError(f"Failed to initialize S3 client: {e}")


class S3ObjectStore(ObjectStore):
    """
    Object store backed by an S3 bucket.
    """

    def __init__(
        self,
        bucket_name: str,
        s3_client=None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 object store.

        Args:
            bucket_name: S3 bucket name
            s3_client: Ready-to-use boto3 S3 client; created from the remaining
                arguments when omitted
            access_key: AWS access key ID
            secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
        """
        self.bucket_name = bucket_name
        self.region = region

        if s3_client is None:
            s3_client = create_s3_client(access_key, secret_key, region, endpoint_url)
        self.s3_client = s3_client

    def list_keys(self, prefix: str) -> List[str]:
        """
        List object keys in the bucket with given prefix.

        Raises:
            StorageError: If listing fails
        """
        try:
            keys = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    keys.append(obj['Key'])

            return keys

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")

    def put(self, key: str, stream: BinaryIO) -> None:
        """
        Upload a stream to S3.

        upload_fileobj switches to a multipart upload for large streams, so
        the archive is never read into memory as a whole.

        Raises:
            StorageError: If upload fails
        """
        try:
            self.s3_client.upload_fileobj(stream, self.bucket_name, key)
        except S3UploadFailedError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")

    def batch_delete(self, keys: Iterable[str]) -> None:
        """
        Delete objects with DeleteObjects requests of up to 1000 keys each.

        Raises:
            BatchDeleteError: If any key was reported as not deleted, or a
                request failed outright
        """
        keys = list(keys)
        failed = []
        messages = []

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={
                        'Objects': [{'Key': key} for key in chunk],
                        'Quiet': True
                    }
                )
            except (ClientError, BotoCoreError) as e:
                failed.extend(chunk)
                messages.append(str(e))
                continue

            for error in response.get('Errors', []):
                failed.append(error.get('Key'))
                messages.append(f"{error.get('Key')}: {error.get('Code')} {error.get('Message')}")

        if failed:
            raise BatchDeleteError(
                f"Failed to delete {len(failed)} of {len(keys)} objects: {'; '.join(messages)}",
                failed_keys=failed
            )


def upload_archive(store: ObjectStore, archive_path: str, remote_key: str,
                   backup_type: str = None, timestamp: str = None) -> str:
    """
    Upload a local archive under its remote key as one logical put.

    No retry or checksum verification is performed; the first failure is
    raised to the caller.

    Args:
        store: Object store to upload to
        archive_path: Path to the local .tar.gz archive
        remote_key: Destination key
        backup_type: Backup type, for error context
        timestamp: Run timestamp, for error context

    Returns:
        The remote key

    Raises:
        UploadError: If the archive cannot be read or the put fails
    """
    if not os.path.isfile(archive_path):
        raise UploadError(
            f"Local archive not found: {archive_path}",
            backup_type=backup_type, timestamp=timestamp
        )

    logger.info("Uploading backup file: file=%s, key=%s", archive_path, remote_key)

    try:
        with open(archive_path, 'rb') as f:
            store.put(remote_key, f)
    except OSError as e:
        raise UploadError(
            f"Failed to read archive {archive_path}",
            backup_type=backup_type, timestamp=timestamp, cause=e
        )
    except StorageError as e:
        raise UploadError(
            f"Failed to upload {archive_path} to {remote_key}",
            backup_type=backup_type, timestamp=timestamp, cause=e
        )

    logger.info("Uploaded backup successfully: file=%s, key=%s", archive_path, remote_key)
    return remote_key
