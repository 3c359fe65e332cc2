"""
Tests for bundle packing and the optional S3 upload.
"""
import os
import re
import tarfile
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from hypothesis import given, strategies as st, settings

from eks_log_collector.archive import archive_name, pack, upload_archive
from eks_log_collector.config import COMMON_DIRECTORIES
from eks_log_collector.tree import create_tree

from .conftest import INSTANCE_ID

TIMESTAMP = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


def _staging(tmp_path):
    staging = str(tmp_path / 'collect')
    create_tree(staging, COMMON_DIRECTORIES)
    with open(os.path.join(staging, 'kernel', 'dmesg.current'), 'w') as f:
        f.write('[0.0] boot\n')
    return staging


def test_archive_name():
    assert archive_name(INSTANCE_ID, TIMESTAMP, '0.0.1') == \
        'eks_i-0123456789abcdef0_2024-03-05_140709-UTC_0.0.1.tar.gz'


@given(ts=st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2099, 12, 31),
                       timezones=st.just(timezone.utc)))
@settings(max_examples=100)
def test_archive_name_format(ts):
    name = archive_name(INSTANCE_ID, ts, '0.0.1')
    assert re.fullmatch(r'eks_i-0123456789abcdef0_\d{4}-\d{2}-\d{2}_\d{6}-UTC_0\.0\.1\.tar\.gz', name)


def test_pack_contains_staging_tree(tmp_path):
    staging = _staging(tmp_path)
    install = str(tmp_path / 'opt')
    archive = pack(staging, install, INSTANCE_ID, TIMESTAMP, '0.0.1')
    assert archive is not None
    assert os.path.dirname(archive.path) == install
    assert archive.size == os.path.getsize(archive.path)
    with tarfile.open(archive.path, 'r:gz') as tar:
        names = tar.getnames()
    for category in COMMON_DIRECTORIES:
        assert category in names
    assert 'kernel/dmesg.current' in names


def test_pack_never_overwrites(tmp_path):
    staging = _staging(tmp_path)
    install = str(tmp_path / 'opt')
    first = pack(staging, install, INSTANCE_ID, TIMESTAMP, '0.0.1')
    second = pack(staging, install, INSTANCE_ID, TIMESTAMP, '0.0.1')
    assert first.path != second.path
    assert second.path.endswith('_0.0.1-1.tar.gz')
    assert os.path.exists(first.path) and os.path.exists(second.path)


def test_pack_failure_degrades_to_warning(tmp_path, capsys):
    staging = _staging(tmp_path)
    with patch('eks_log_collector.archive.tarfile.open', side_effect=OSError('disk full')):
        archive = pack(staging, str(tmp_path / 'opt'), INSTANCE_ID, TIMESTAMP, '0.0.1')
    assert archive is None
    assert 'Warning: Failed to create the collection archive' in capsys.readouterr().out
    assert os.path.isdir(staging)


def test_pack_failure_midway_removes_partial_bundle(tmp_path):
    staging = _staging(tmp_path)
    with patch('eks_log_collector.archive.tarfile.TarFile.add', side_effect=OSError('read error')):
        assert pack(staging, str(tmp_path / 'opt'), INSTANCE_ID, TIMESTAMP, '0.0.1') is None
    assert os.listdir(tmp_path / 'opt') == []


def test_pack_interrupted_removes_partial_bundle(tmp_path):
    staging = _staging(tmp_path)
    with patch('eks_log_collector.archive.tarfile.TarFile.add', side_effect=KeyboardInterrupt):
        with pytest.raises(KeyboardInterrupt):
            pack(staging, str(tmp_path / 'opt'), INSTANCE_ID, TIMESTAMP, '0.0.1')
    assert os.listdir(tmp_path / 'opt') == []
    assert os.path.isdir(staging)


class TestUploadArchive:

    def _archive(self, tmp_path):
        return pack(_staging(tmp_path), str(tmp_path / 'opt'), INSTANCE_ID, TIMESTAMP, '0.0.1')

    def test_no_bucket_skips_upload(self, tmp_path):
        archive = self._archive(tmp_path)
        with patch('eks_log_collector.archive.boto3.client') as client:
            assert upload_archive(archive, INSTANCE_ID, bucket='') is archive
        client.assert_not_called()

    def test_upload(self, tmp_path):
        archive = self._archive(tmp_path)
        s3 = MagicMock()
        with patch('eks_log_collector.archive.boto3.client', return_value=s3):
            uploaded = upload_archive(archive, INSTANCE_ID, bucket='logs-bucket', region='us-west-2')
        key = f'eks_{INSTANCE_ID}/{os.path.basename(archive.path)}'
        s3.upload_file.assert_called_once_with(archive.path, 'logs-bucket', key)
        assert uploaded.s3_uri == f's3://logs-bucket/{key}'
        assert uploaded.path == archive.path

    def test_upload_failure_is_warning(self, tmp_path, capsys):
        archive = self._archive(tmp_path)
        s3 = MagicMock()
        s3.upload_file.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'Access Denied'}}, 'PutObject')
        with patch('eks_log_collector.archive.boto3.client', return_value=s3):
            result = upload_archive(archive, INSTANCE_ID, bucket='logs-bucket')
        assert result.s3_uri is None
        assert 'Warning: Failed to upload' in capsys.readouterr().out
