"""
Storage handlers for backup archives.

Supports:
- RcloneStorage: Any remote configured in rclone (default)
- S3Storage: AWS S3 bucket, selected with an s3://bucket remote name
"""

import os
import re
import json
import shutil
import logging
import subprocess
from datetime import datetime, timezone
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from dbkeeper.models import RemoteEntry


logger = logging.getLogger(__name__)

S3_SCHEME = 's3://'

# rclone prints nanoseconds, datetime accepts at most microseconds
_EXTRA_FRACTION = re.compile(r'(\.\d{6})\d+')


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class UploadError(StorageError):
    """Raised when an archive cannot be uploaded."""
    pass


class ListError(StorageError):
    """Raised when a remote folder cannot be listed."""
    pass


class DeleteError(StorageError):
    """Raised when a remote file cannot be deleted."""
    pass


def _join(*parts: str) -> str:
    return '/'.join(p.strip('/') for p in parts if p and p.strip('/'))


def _parse_mod_time(value: str) -> datetime:
    value = _EXTRA_FRACTION.sub(r'\1', value)
    mod_time = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if mod_time.tzinfo is None:
        mod_time = mod_time.replace(tzinfo=timezone.utc)
    return mod_time


class RcloneStorage:
    """
    Handler for remotes configured in rclone.

    Archives are copied to {remote}:{folder}/{filename}.
    """

    def __init__(self, remote_name: str, binary: str = 'rclone', timeout: Optional[int] = None):
        """
        Initialize rclone storage handler.

        Args:
            remote_name: Name of the rclone remote (without trailing colon)
            binary: rclone executable
            timeout: Timeout for each rclone call in seconds
        """
        self.remote_name = remote_name.rstrip(':')
        self.binary = binary
        self.timeout = timeout

    def describe(self, remote_folder: str = '', name: Optional[str] = None) -> str:
        """Human-readable remote location, e.g. 'remote:Backups/App/'."""
        path = _join(remote_folder, name or '')
        if name is None and path:
            path += '/'
        return f"{self.remote_name}:{path}"

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary] + args
        logger.debug("Running %s", ' '.join(cmd))
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout
        )

    def _call(self, args: List[str], error_cls, action: str) -> str:
        try:
            result = self._run(args)
        except subprocess.TimeoutExpired:
            raise error_cls(f"rclone {action} timed out after {self.timeout}s")
        except OSError as e:
            raise error_cls(f"Failed to run rclone {action}: {e}")

        if result.returncode != 0:
            error_msg = (result.stderr or '').strip() or f"exit code {result.returncode}"
            raise error_cls(f"rclone {action} failed: {error_msg}")

        return result.stdout

    def is_reachable(self) -> bool:
        """
        Check that the remote exists and answers.

        Returns:
            True if `rclone lsd remote:` succeeds
        """
        try:
            self._call(['lsd', f"{self.remote_name}:"], StorageError, 'lsd')
            return True
        except StorageError as e:
            logger.warning("Remote %s is not accessible: %s", self.remote_name, e)
            return False

    def upload(self, local_path: str, remote_folder: str) -> str:
        """
        Copy an archive to the remote folder.

        Args:
            local_path: Path to local archive file
            remote_folder: Folder on the remote

        Returns:
            Remote path of uploaded file

        Raises:
            UploadError: If upload fails
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        target = self.describe(remote_folder, os.path.basename(local_path))
        self._call(['copyto', local_path, target], UploadError, 'copyto')
        return target

    def list_files(self, remote_folder: str) -> List[RemoteEntry]:
        """
        List files (not directories) in a remote folder.

        Args:
            remote_folder: Folder on the remote

        Returns:
            List of RemoteEntry

        Raises:
            ListError: If listing fails or output is not understood
        """
        output = self._call(
            ['lsjson', self.describe(remote_folder), '--files-only'],
            ListError,
            'lsjson'
        )

        try:
            items = json.loads(output or '[]')
            return [
                RemoteEntry(name=item['Name'], mod_time=_parse_mod_time(item['ModTime']))
                for item in items
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise ListError(f"Unexpected rclone lsjson output: {e}")

    def delete(self, remote_folder: str, name: str):
        """
        Delete a single file from the remote folder.

        Raises:
            DeleteError: If deletion fails
        """
        self._call(['deletefile', self.describe(remote_folder, name)], DeleteError, 'deletefile')


class S3Storage:
    """
    Handler for uploading backups to AWS S3.

    Uploads archives with the key format {folder}/{filename}.
    Credentials are resolved by boto3 (environment, shared config, instance role).
    """

    def __init__(self, bucket_name: str, region: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: boto3 default)
        """
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client('s3', region_name=region)
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def describe(self, remote_folder: str = '', name: Optional[str] = None) -> str:
        path = _join(remote_folder, name or '')
        if name is None and path:
            path += '/'
        return f"{S3_SCHEME}{self.bucket_name}/{path}"

    def is_reachable(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if the bucket can be reached
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                logger.warning("Bucket does not exist: %s", self.bucket_name)
            elif error_code == '403':
                logger.warning("Access denied to bucket: %s", self.bucket_name)
            else:
                logger.warning("S3 connection test failed (%s): %s", error_code, e)
            return False
        except BotoCoreError as e:
            logger.warning("Failed to connect to S3: %s", e)
            return False

    def upload(self, local_path: str, remote_folder: str) -> str:
        """
        Upload archive to S3.

        Args:
            local_path: Path to local archive file
            remote_folder: Key prefix (folder) in the bucket

        Returns:
            Remote path of uploaded file

        Raises:
            UploadError: If upload fails
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        filename = os.path.basename(local_path)
        s3_key = _join(remote_folder, filename)

        try:
            with open(local_path, 'rb') as f:
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    Body=f
                )
            return self.describe(remote_folder, filename)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise UploadError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload failed: {e}")
        except OSError as e:
            raise UploadError(f"Failed to read {local_path}: {e}")

    def list_files(self, remote_folder: str) -> List[RemoteEntry]:
        """
        List objects directly inside a folder (no recursion).

        Returns:
            List of RemoteEntry

        Raises:
            ListError: If listing fails
        """
        prefix = _join(remote_folder)
        if prefix:
            prefix += '/'

        try:
            entries = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter='/'):
                for obj in page.get('Contents', []):
                    name = obj['Key'][len(prefix):]
                    if name:
                        entries.append(RemoteEntry(name=name, mod_time=obj['LastModified']))

            return entries

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise ListError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise ListError(f"Failed to list S3 objects: {e}")

    def delete(self, remote_folder: str, name: str):
        """
        Delete an object from S3.

        Raises:
            DeleteError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=_join(remote_folder, name)
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise DeleteError(f"S3 delete failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise DeleteError(f"Failed to delete from S3: {e}")


def is_s3_remote(remote_name: str) -> bool:
    return remote_name.startswith(S3_SCHEME)


def create_storage(remote_name: str, rclone_binary: str = 'rclone', timeout: Optional[int] = None):
    """
    Create the storage handler for the configured remote.

    Args:
        remote_name: rclone remote name, or s3://bucket
        rclone_binary: rclone executable for rclone remotes
        timeout: Per-call timeout for rclone

    Returns:
        RcloneStorage or S3Storage
    """
    if is_s3_remote(remote_name):
        bucket = remote_name[len(S3_SCHEME):].strip('/')
        if not bucket:
            raise StorageError(f"Missing bucket name in remote: {remote_name}")
        return S3Storage(bucket_name=bucket)

    return RcloneStorage(remote_name, binary=rclone_binary, timeout=timeout)


def required_tools(remote_name: str, rclone_binary: str = 'rclone') -> List[str]:
    """External executables a run against this remote needs."""
    if is_s3_remote(remote_name):
        return []
    return [rclone_binary]


def find_missing_tools(tools: List[str]) -> List[str]:
    """Return the tools that cannot be found on PATH."""
    return [tool for tool in tools if shutil.which(tool) is None]
