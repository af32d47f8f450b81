"""
Shared pytest fixtures for dbkeeper tests.

This module provides fixtures for:
- Runtime Config pointed at temporary directories
- Tracked objects and parsed configuration
- Fake storage and alert sink for orchestrator tests
- Temporary file fixtures
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from dbkeeper.config import Config
from dbkeeper.models import BackupConfig, CloudConfig, RemoteEntry, TelegramCredentials, TrackedObject
from dbkeeper.scheduler import RunStateStore
from dbkeeper.backup.storage import DeleteError, ListError, UploadError


class FakeStorage:
    """
    In-memory remote store with the RcloneStorage interface.

    Files are kept per folder as {name: mod_time}; uploads get a mod_time one
    second newer than anything already stored.
    """

    def __init__(self, remote_name='remote'):
        self.remote_name = remote_name
        self.folders = {}
        self.uploads = []
        self.deleted = []
        self.reachable = True
        self.fail_upload = False
        self.fail_list = False
        self.fail_delete_for = set()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def describe(self, remote_folder='', name=None):
        path = '/'.join(p for p in (remote_folder.strip('/'), name or '') if p)
        if name is None and path:
            path += '/'
        return f"{self.remote_name}:{path}"

    def is_reachable(self):
        return self.reachable

    def add(self, remote_folder, name, mod_time):
        self.folders.setdefault(remote_folder, {})[name] = mod_time

    def upload(self, local_path, remote_folder):
        if self.fail_upload:
            raise UploadError("rclone copyto failed: connection reset")
        name = os.path.basename(local_path)
        with open(local_path, 'rb') as f:
            data = f.read()
        self._clock += timedelta(seconds=1)
        latest = max(self.folders.get(remote_folder, {}).values(), default=self._clock)
        self.add(remote_folder, name, max(self._clock, latest + timedelta(seconds=1)))
        self.uploads.append((remote_folder, name, data))
        return self.describe(remote_folder, name)

    def list_files(self, remote_folder):
        if self.fail_list:
            raise ListError("rclone lsjson failed: directory not found")
        return [
            RemoteEntry(name=name, mod_time=mod_time)
            for name, mod_time in self.folders.get(remote_folder, {}).items()
        ]

    def delete(self, remote_folder, name):
        if name in self.fail_delete_for:
            raise DeleteError(f"rclone deletefile failed: {name}")
        del self.folders[remote_folder][name]
        self.deleted.append((remote_folder, name))


@pytest.fixture
def fake_storage():
    """Fake remote store named 'remote'."""
    return FakeStorage()


@pytest.fixture
def alerts():
    """Alert sink recording every notify() call."""
    sink = MagicMock()
    sink.notify.return_value = True
    return sink


@pytest.fixture
def dirs(tmp_path):
    """State and scratch directories."""
    state_dir = tmp_path / 'state'
    scratch_dir = tmp_path / 'scratch'
    state_dir.mkdir()
    scratch_dir.mkdir()
    return state_dir, scratch_dir


@pytest.fixture
def state_store(dirs):
    state_dir, _ = dirs
    return RunStateStore(str(state_dir))


@pytest.fixture
def db_file(tmp_path):
    """
    Create a small fake database file.
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    path = data_dir / 'app.db'
    path.write_bytes(b'SQLite format 3\x00' + os.urandom(2048))
    return path


@pytest.fixture
def tracked_object(db_file):
    """Daily backup of db_file to Backups/App."""
    return TrackedObject(local_path=str(db_file), interval_days=1, remote_folder='Backups/App')


@pytest.fixture
def backup_config(tracked_object):
    return BackupConfig(
        cloud=CloudConfig(
            remote_name='remote',
            telegram=TelegramCredentials(token='123456:ABC-def', chat_id='987654')
        ),
        objects=(tracked_object,)
    )


@pytest.fixture
def config_file(tmp_path, db_file):
    """
    Write a backups.ini tracking db_file.
    """
    path = tmp_path / 'backups.ini'
    path.write_text(
        "# test configuration\n"
        "[cloud]\n"
        "provider = remote\n"
        "telegram = 123456:ABC-def:987654\n"
        "\n"
        "[objects]\n"
        f"app = {db_file}; 1; Backups/App\n"
    )
    return path


@pytest.fixture
def runtime_config(monkeypatch, tmp_path, config_file):
    """
    Point Config at temporary directories and the test config file.
    """
    state_dir = tmp_path / 'runtime_state'
    scratch_dir = tmp_path / 'runtime_scratch'

    monkeypatch.setattr(Config, 'CONFIG_FILE', str(config_file))
    monkeypatch.setattr(Config, 'STATE_DIR', str(state_dir))
    monkeypatch.setattr(Config, 'SCRATCH_DIR', str(scratch_dir))
    monkeypatch.setattr(Config, 'LOG_FILE', str(state_dir / 'dbkeeper.log'))
    monkeypatch.setattr(Config, 'LOCK_FILE', str(state_dir / 'dbkeeper.lock'))

    return Config
