"""
Archiver: packs the staging tree into a tar.gz bundle in the install directory
and optionally ships it to S3.
"""

import os
import tarfile
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .config import AWS_REGION, LOGS_BUCKET
from .models import Archive

ARCHIVE_EXT = 'tar.gz'


def archive_name(node_id: str, timestamp: datetime, version: str) -> str:
    """eks_<node>_<YYYY-MM-DD_HHMMSS-UTC>_<version>.tar.gz"""
    stamp = timestamp.astimezone(timezone.utc).strftime('%Y-%m-%d_%H%M%S-UTC')
    return f'eks_{node_id}_{stamp}_{version}.{ARCHIVE_EXT}'


def _unused_path(directory: str, name: str) -> str:
    """Never overwrite an earlier bundle: append -1, -2, ... before the extension."""
    path = os.path.join(directory, name)
    stem = name[:-len(ARCHIVE_EXT) - 1]
    counter = 1
    while os.path.exists(path):
        path = os.path.join(directory, f'{stem}-{counter}.{ARCHIVE_EXT}')
        counter += 1
    return path


def _remove_partial(path: Optional[str]) -> None:
    if path and os.path.exists(path):
        os.remove(path)


def pack(staging_dir: str, install_dir: str, node_id: str, timestamp: datetime,
         version: str) -> Optional[Archive]:
    """
    Create the bundle from every entry of staging_dir.

    Returns None after printing a warning if the archive cannot be written; the
    caller keeps the staging tree in that case so the logs stay inspectable.
    A partially written bundle is removed, including on interrupt.
    """
    path = None
    try:
        os.makedirs(install_dir, exist_ok=True)
        path = _unused_path(install_dir, archive_name(node_id, timestamp, version))
        with tarfile.open(path, 'w:gz') as tar:
            for entry in sorted(os.listdir(staging_dir)):
                tar.add(os.path.join(staging_dir, entry), arcname=entry)
    except (OSError, tarfile.TarError) as e:
        print(f"Warning: Failed to create the collection archive: {str(e)}. "
              f"You can still view the logs in the collect folder {staging_dir}")
        _remove_partial(path)
        return None
    except BaseException:
        _remove_partial(path)
        raise

    return Archive(
        path=path,
        size=os.path.getsize(path),
        created_at=datetime.now(timezone.utc),
    )


def upload_archive(archive: Archive, node_id: str, bucket: str = LOGS_BUCKET,
                   region: str = AWS_REGION) -> Archive:
    """
    Upload the bundle to s3://<bucket>/eks_<node>/<archive name> when a bucket
    is configured. Upload failures are warnings; the local bundle is kept.
    """
    if not bucket:
        return archive

    key = f'eks_{node_id}/{os.path.basename(archive.path)}'
    try:
        s3_client = boto3.client('s3', region_name=region or None)
        s3_client.upload_file(archive.path, bucket, key)
    except (ClientError, BotoCoreError, S3UploadFailedError) as e:
        print(f"Warning: Failed to upload {archive.path} to s3://{bucket}/{key}: {str(e)}")
        return archive

    print(f"Uploaded bundle to s3://{bucket}/{key}")
    return replace(archive, s3_uri=f's3://{bucket}/{key}')
