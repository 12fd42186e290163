"""
Archive creation for backups.

Builds a single gzip compressed tar of a source directory, streamed file by
file into a temporary file inside the run's work directory.
"""

import io
import logging
import os
import stat
import tarfile
import tempfile
import time
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

from tierbackup.errors import ArchiveError
from tierbackup.models import BackupConfiguration


logger = logging.getLogger(__name__)

MARKER_FILENAME = 'BACKUP_DATE'
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Render a run timestamp, e.g. 2024-01-15T12:00:00Z.

    The format sorts lexically in time order, which pruning relies on.
    """
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def marker_record(backup_type: str, timestamp: str) -> str:
    return f"{backup_type}/{timestamp}\n"


def iter_source_files(directory: str) -> Iterator[Tuple[str, str]]:
    """
    Yield (path, arcname) for every regular file under directory.

    Entries are yielded in lexical order, each subdirectory expanded at its
    sorted position; directories produce no entries of their own. Symlinked
    directories are not descended into; symlinks to files are followed. The
    top-level marker file is skipped since every archive gets a fresh marker
    entry.

    Raises:
        OSError: If a directory cannot be read
    """
    yield from _walk_sorted(directory, directory)


def _walk_sorted(current: str, top: str) -> Iterator[Tuple[str, str]]:
    with os.scandir(current) as it:
        entries = sorted(it, key=lambda entry: entry.name)

    # Subdirectories are descended at their sorted position among the files
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_sorted(entry.path, top)
            continue

        arcname = os.path.relpath(entry.path, top).replace(os.sep, "/")
        if arcname == MARKER_FILENAME:
            logger.info("Skipping existing %s in %s, replaced by the archive marker entry",
                        MARKER_FILENAME, top)
            continue
        if not stat.S_ISREG(os.stat(entry.path).st_mode):
            logger.debug("Skipping non-regular file: %s", entry.path)
            continue

        yield entry.path, arcname


def write_marker_file(data_directory: str, record: str) -> str:
    """
    Write the marker record into {data_directory}/BACKUP_DATE.

    The file is truncated, so it always holds only the latest record.
    """
    marker_path = os.path.join(data_directory, MARKER_FILENAME)
    with open(marker_path, 'w') as f:
        f.write(record)
    return marker_path


def create_work_directory(work_directory: str) -> str:
    """
    Create the run's work directory.

    Raises:
        FileExistsError: If a previous run left the directory behind
    """
    os.mkdir(work_directory, 0o700)
    return work_directory


def _add_marker_entry(tar: tarfile.TarFile, record: str):
    data = record.encode('utf-8')
    info = tarfile.TarInfo(name=MARKER_FILENAME)
    info.size = len(data)
    info.mode = 0o644
    info.mtime = int(time.time())
    tar.addfile(info, io.BytesIO(data))


def _add_file(tar: tarfile.TarFile, path: str, arcname: str):
    with open(path, 'rb') as f:
        # Header comes from fstat of the open handle, so size and content agree
        info = tar.gettarinfo(arcname=arcname, fileobj=f)
        logger.debug("Adding file: %s => %s", path, arcname)
        tar.addfile(info, f)


def create_backup_archive(config: BackupConfiguration, timestamp: str, backup_type: str) -> str:
    """
    Archive config.data_directory into a new .tar.gz in the work directory.

    Args:
        config: Backup configuration
        timestamp: Run timestamp (see format_timestamp)
        backup_type: Backup type string

    Returns:
        Absolute path to the completed archive

    Raises:
        ArchiveError: If the marker, work directory, walk or any file copy
            fails. Partially written output is left in place.
    """
    record = marker_record(backup_type, timestamp)

    def fail(message, error):
        return ArchiveError(message, backup_type=backup_type, timestamp=timestamp, cause=error)

    if config.write_marker_file:
        try:
            write_marker_file(config.data_directory, record)
        except OSError as e:
            raise fail("Failed to write backup marker file", e)

    try:
        create_work_directory(config.work_directory)
    except OSError as e:
        raise fail(f"Failed to create work directory {config.work_directory}", e)

    try:
        fd, archive_path = tempfile.mkstemp(prefix='backup', suffix='.tar.gz', dir=config.work_directory)
    except OSError as e:
        raise fail("Failed to create temporary archive file", e)

    archive_path = os.path.abspath(archive_path)
    file_count = 0

    try:
        with os.fdopen(fd, 'wb') as output:
            with tarfile.open(fileobj=output, mode='w:gz') as tar:
                _add_marker_entry(tar, record)
                for path, arcname in iter_source_files(config.data_directory):
                    _add_file(tar, path, arcname)
                    file_count += 1
    except (OSError, tarfile.TarError) as e:
        raise fail(f"Failed to archive {config.data_directory}", e)

    logger.info("Archive created successfully: output file=%s, files=%d", archive_path, file_count)
    return archive_path
