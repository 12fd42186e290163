"""
Unit tests for archive creation (tierbackup/backup/compression.py).
"""

import logging
import os
import tarfile
from dataclasses import replace
from datetime import datetime, timezone, timedelta

import pytest
from freezegun import freeze_time

from tierbackup.backup.compression import (
    create_backup_archive,
    format_timestamp,
    marker_record,
    iter_source_files,
    MARKER_FILENAME,
)
from tierbackup.errors import ArchiveError, FatalBackupError


TIMESTAMP = '2024-01-15T12:00:00Z'


def _read_members(archive_path):
    with tarfile.open(archive_path, 'r:gz') as tar:
        return {
            m.name: tar.extractfile(m).read()
            for m in tar.getmembers()
        }


class TestFormatTimestamp:
    """Test run timestamp rendering."""

    @freeze_time("2024-01-15 12:00:00")
    def test_defaults_to_current_utc_time(self):
        assert format_timestamp() == '2024-01-15T12:00:00Z'

    def test_converts_aware_datetimes_to_utc(self):
        moment = datetime(2024, 1, 15, 14, 30, 5, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(moment) == '2024-01-15T12:30:05Z'

    def test_sorts_lexically_in_time_order(self):
        earlier = format_timestamp(datetime(2024, 9, 30, 23, 59, 59))
        later = format_timestamp(datetime(2024, 10, 1, 0, 0, 0))
        assert earlier < later


class TestCreateBackupArchive:
    """Test create_backup_archive."""

    def test_round_trip_preserves_paths_and_content(self, backup_config, tmp_path):
        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'daily')

        extract_dir = tmp_path / 'extracted'
        with tarfile.open(archive_path, 'r:gz') as tar:
            tar.extractall(extract_dir)

        assert (extract_dir / 'a.txt').read_text() == 'hello'
        assert (extract_dir / 'sub' / 'b.txt').read_text() == 'world'

    def test_archive_is_in_work_directory(self, backup_config):
        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'daily')

        assert os.path.isabs(archive_path)
        assert os.path.dirname(archive_path) == backup_config.work_directory
        assert os.path.basename(archive_path).startswith('backup')
        assert archive_path.endswith('.tar.gz')

    def test_no_directory_entries(self, backup_config):
        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'daily')

        with tarfile.open(archive_path, 'r:gz') as tar:
            assert all(m.isfile() for m in tar.getmembers())
            names = tar.getnames()

        assert names == [MARKER_FILENAME, 'a.txt', 'sub/b.txt']

    def test_members_follow_lexical_walk_order(self, backup_config, source_dir):
        (source_dir / 'c.txt').write_text('c')
        (source_dir / 'b').mkdir()
        (source_dir / 'b' / 'z.txt').write_text('z')

        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'daily')

        with tarfile.open(archive_path, 'r:gz') as tar:
            names = tar.getnames()

        assert names == [MARKER_FILENAME, 'a.txt', 'b/z.txt', 'c.txt', 'sub/b.txt']

    def test_marker_entry_records_type_and_timestamp(self, backup_config):
        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'weekly')

        members = _read_members(archive_path)
        assert members[MARKER_FILENAME] == b'weekly/2024-01-15T12:00:00Z\n'

    def test_source_directory_not_modified_by_default(self, backup_config, source_dir):
        create_backup_archive(backup_config, TIMESTAMP, 'daily')

        assert not (source_dir / MARKER_FILENAME).exists()

    def test_marker_file_written_when_enabled(self, backup_config, source_dir):
        config = replace(backup_config, write_marker_file=True)

        create_backup_archive(config, TIMESTAMP, 'daily')

        assert (source_dir / MARKER_FILENAME).read_text() == 'daily/2024-01-15T12:00:00Z\n'

    def test_marker_file_holds_latest_record_only(self, backup_config, source_dir):
        config = replace(backup_config, write_marker_file=True)
        (source_dir / MARKER_FILENAME).write_text('hourly/2024-01-14T11:00:00Z\nstale line\n')

        archive_path = create_backup_archive(config, TIMESTAMP, 'monthly')

        assert (source_dir / MARKER_FILENAME).read_text() == 'monthly/2024-01-15T12:00:00Z\n'
        members = _read_members(archive_path)
        assert members[MARKER_FILENAME] == b'monthly/2024-01-15T12:00:00Z\n'
        assert list(members).count(MARKER_FILENAME) == 1

    def test_marker_write_failure_aborts(self, backup_config, tmp_path):
        config = replace(
            backup_config,
            data_directory=str(tmp_path / 'missing'),
            write_marker_file=True
        )

        with pytest.raises(ArchiveError):
            create_backup_archive(config, TIMESTAMP, 'daily')

        assert not os.path.exists(config.work_directory)

    def test_existing_work_directory_aborts(self, backup_config):
        os.mkdir(backup_config.work_directory)

        with pytest.raises(ArchiveError) as exc_info:
            create_backup_archive(backup_config, TIMESTAMP, 'daily')

        assert isinstance(exc_info.value.cause, FileExistsError)

    def test_missing_source_directory_aborts(self, backup_config, tmp_path):
        config = replace(backup_config, data_directory=str(tmp_path / 'missing'))

        with pytest.raises(ArchiveError) as exc_info:
            create_backup_archive(config, TIMESTAMP, 'daily')

        error = exc_info.value
        assert isinstance(error, FatalBackupError)
        assert error.backup_type == 'daily'
        assert error.timestamp == TIMESTAMP
        assert error.stage == 'archive'

    def test_broken_symlink_aborts(self, backup_config, source_dir):
        os.symlink(source_dir / 'nowhere', source_dir / 'dangling')

        with pytest.raises(ArchiveError):
            create_backup_archive(backup_config, TIMESTAMP, 'daily')

    def test_empty_source_directory(self, backup_config, tmp_path):
        empty = tmp_path / 'empty'
        empty.mkdir()
        config = replace(backup_config, data_directory=str(empty))

        archive_path = create_backup_archive(config, TIMESTAMP, 'hourly')

        assert list(_read_members(archive_path)) == [MARKER_FILENAME]

    def test_preserves_file_metadata(self, backup_config, source_dir):
        target = source_dir / 'a.txt'
        os.chmod(target, 0o640)
        os.utime(target, (1700000000, 1700000000))

        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'daily')

        with tarfile.open(archive_path, 'r:gz') as tar:
            member = tar.getmember('a.txt')
        assert member.size == 5
        assert member.mode & 0o777 == 0o640
        assert member.mtime == 1700000000

    def test_large_file_content(self, backup_config, source_dir):
        payload = os.urandom(3 * 1024 * 1024)
        (source_dir / 'big.bin').write_bytes(payload)

        archive_path = create_backup_archive(backup_config, TIMESTAMP, 'daily')

        assert _read_members(archive_path)['big.bin'] == payload


class TestIterSourceFiles:
    """Test source walking order and filtering."""

    def test_lexical_order(self, tmp_path):
        (tmp_path / 'b').mkdir()
        (tmp_path / 'b' / 'z.txt').write_text('z')
        (tmp_path / 'a').mkdir()
        (tmp_path / 'a' / 'y.txt').write_text('y')
        (tmp_path / 'c.txt').write_text('c')

        arcnames = [arcname for _, arcname in iter_source_files(str(tmp_path))]

        assert arcnames == ['a/y.txt', 'b/z.txt', 'c.txt']

    def test_directory_sorts_before_longer_file_name(self, tmp_path):
        (tmp_path / 'a.txt').write_text('1')
        (tmp_path / 'a').mkdir()
        (tmp_path / 'a' / 'inner.txt').write_text('2')

        arcnames = [arcname for _, arcname in iter_source_files(str(tmp_path))]

        assert arcnames == ['a/inner.txt', 'a.txt']

    def test_follows_file_symlinks_but_not_directory_symlinks(self, tmp_path):
        source = tmp_path / 'source'
        source.mkdir()
        outside = tmp_path / 'outside'
        outside.mkdir()
        (outside / 'secret.txt').write_text('x')
        (tmp_path / 'target.txt').write_text('t')
        os.symlink(outside, source / 'linked_dir')
        os.symlink(tmp_path / 'target.txt', source / 'link.txt')

        arcnames = [arcname for _, arcname in iter_source_files(str(source))]

        assert arcnames == ['link.txt']

    def test_skips_top_level_marker_only(self, tmp_path):
        (tmp_path / MARKER_FILENAME).write_text('old')
        (tmp_path / 'nested').mkdir()
        (tmp_path / 'nested' / MARKER_FILENAME).write_text('keep')

        arcnames = [arcname for _, arcname in iter_source_files(str(tmp_path))]

        assert arcnames == [f'nested/{MARKER_FILENAME}']

    def test_logs_skipped_marker(self, tmp_path, caplog):
        (tmp_path / MARKER_FILENAME).write_text('old')
        caplog.set_level(logging.INFO, logger='tierbackup.backup.compression')

        list(iter_source_files(str(tmp_path)))

        assert any(
            MARKER_FILENAME in record.getMessage() and record.levelno == logging.INFO
            for record in caplog.records
        )


def test_marker_record_format():
    assert marker_record('hourly', TIMESTAMP) == 'hourly/2024-01-15T12:00:00Z\n'
