"""
Unit tests for retention policy management (dbkeeper/backup/retention.py).

Tests archive selection and RetentionManager pruning.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dbkeeper.backup.retention import (
    RetentionManager,
    select_for_deletion,
    is_archive_name
)
from dbkeeper.backup.storage import ListError
from dbkeeper.models import RemoteEntry


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_entries(count, prefix='_data_app.db'):
    """Entries named by day, mod_time increasing with the day."""
    return [
        RemoteEntry(
            name=f"{prefix}_{(BASE_TIME + timedelta(days=i)):%Y%m%d}.zip",
            mod_time=BASE_TIME + timedelta(days=i)
        )
        for i in range(count)
    ]


class TestArchiveNamePattern:
    """Test which remote names take part in retention."""

    @pytest.mark.parametrize("name", [
        "_data_app.db_20240101.zip",
        "app.db_20991231.zip",
        "x_00000000.zip",
    ])
    def test_matching_names(self, name):
        assert is_archive_name(name)

    @pytest.mark.parametrize("name", [
        "notes.txt",
        "app.db_2024011.zip",
        "app.db_202401011.zip",
        "app.db-20240101.zip",
        "app.db_20240101.tar.gz",
        "_20240101.zip",
        "sub/app_20240101.zip",
        "app_20240101.zip.bak",
    ])
    def test_non_matching_names(self, name):
        assert not is_archive_name(name)


class TestSelectForDeletion:
    """Test select_for_deletion."""

    def test_fifteen_entries_keep_ten(self):
        """Test 15 archives plus a foreign file: the 5 oldest archives go."""
        entries = make_entries(15)
        foreign = RemoteEntry(name='README.md', mod_time=BASE_TIME - timedelta(days=100))

        to_delete = select_for_deletion(entries + [foreign], keep=10)

        assert sorted(to_delete) == sorted(e.name for e in entries[:5])
        assert 'README.md' not in to_delete

    def test_order_of_listing_does_not_matter(self):
        entries = make_entries(12)

        to_delete = select_for_deletion(list(reversed(entries)), keep=10)

        assert sorted(to_delete) == sorted(e.name for e in entries[:2])

    def test_sorts_by_mod_time_not_name(self):
        """Test the newest by mod_time are kept even if their date tag is older."""
        entries = [
            RemoteEntry(name='a_20240105.zip', mod_time=BASE_TIME),
            RemoteEntry(name='a_20240101.zip', mod_time=BASE_TIME + timedelta(days=10)),
        ]

        assert select_for_deletion(entries, keep=1) == ['a_20240105.zip']

    def test_fewer_than_keep(self):
        assert select_for_deletion(make_entries(10), keep=10) == []
        assert select_for_deletion(make_entries(3), keep=10) == []
        assert select_for_deletion([], keep=10) == []

    def test_keep_zero_selects_all_archives(self):
        entries = make_entries(3) + [RemoteEntry(name='other.bin', mod_time=BASE_TIME)]

        assert len(select_for_deletion(entries, keep=0)) == 3

    def test_only_foreign_files(self):
        entries = [RemoteEntry(name=f'file{i}.txt', mod_time=BASE_TIME) for i in range(20)]

        assert select_for_deletion(entries, keep=10) == []

    def test_negative_keep(self):
        with pytest.raises(ValueError):
            select_for_deletion(make_entries(3), keep=-1)

    def test_default_keep_is_ten(self):
        assert len(select_for_deletion(make_entries(11))) == 1


class TestRetentionManager:
    """Test RetentionManager against the fake store."""

    def _fill(self, storage, folder, count):
        for entry in make_entries(count):
            storage.add(folder, entry.name, entry.mod_time)
        storage.add(folder, 'keep-me.txt', BASE_TIME - timedelta(days=365))

    def test_prune_deletes_oldest(self, fake_storage):
        self._fill(fake_storage, 'Backups/App', 15)

        deleted = RetentionManager(fake_storage, keep=10).prune('Backups/App')

        assert len(deleted) == 5
        remaining = fake_storage.list_files('Backups/App')
        archives = [e for e in remaining if is_archive_name(e.name)]
        assert len(archives) == 10
        assert 'keep-me.txt' in {e.name for e in remaining}

    def test_prune_nothing_to_do(self, fake_storage):
        self._fill(fake_storage, 'Backups/App', 4)

        assert RetentionManager(fake_storage).prune('Backups/App') == []
        assert fake_storage.deleted == []

    def test_prune_dry_run_does_not_delete(self, fake_storage):
        self._fill(fake_storage, 'Backups/App', 13)

        would_delete = RetentionManager(fake_storage, keep=10, dry_run=True).prune('Backups/App')

        assert len(would_delete) == 3
        assert fake_storage.deleted == []
        assert len(fake_storage.list_files('Backups/App')) == 14

    def test_prune_continues_after_delete_error(self, fake_storage):
        """Test one failing delete does not stop the others."""
        self._fill(fake_storage, 'Backups/App', 14)
        oldest = make_entries(14)[:4]
        fake_storage.fail_delete_for = {oldest[1].name}

        deleted = RetentionManager(fake_storage, keep=10).prune('Backups/App')

        assert len(deleted) == 3
        assert oldest[1].name not in deleted
        assert {name for _, name in fake_storage.deleted} == {e.name for e in oldest} - {oldest[1].name}

    def test_prune_list_error_propagates(self, fake_storage):
        fake_storage.fail_list = True

        with pytest.raises(ListError):
            RetentionManager(fake_storage).prune('Backups/App')

    def test_prune_only_touches_given_folder(self, fake_storage):
        self._fill(fake_storage, 'Backups/App', 12)
        self._fill(fake_storage, 'Backups/Other', 12)

        RetentionManager(fake_storage, keep=10).prune('Backups/App')

        assert all(folder == 'Backups/App' for folder, _ in fake_storage.deleted)
        assert len(fake_storage.list_files('Backups/Other')) == 13
