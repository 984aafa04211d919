"""
Unit tests for retention policy evaluation (backsync/backup/retention.py).

Tests select_expired for cleaning up old remote backups.
"""

from datetime import datetime, timedelta, timezone

import pytest

from backsync.backup.gateway import EntryKind, RemoteEntry
from backsync.backup.retention import RetentionPolicy, is_expired, select_expired


NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
MONTH = 2592000


def make_entry(name, age_seconds, kind=EntryKind.FILE, folder='/backups'):
    modified_at = None if age_seconds is None else NOW - timedelta(seconds=age_seconds)
    return RemoteEntry(path=f"{folder}/{name}", name=name, kind=kind, modified_at=modified_at)


class TestRetentionPolicy:

    def test_defaults(self):
        policy = RetentionPolicy()

        assert policy.expiry_seconds == MONTH
        assert policy.name_suffix == '.tar'

    def test_negative_expiry_rejected(self):
        with pytest.raises(ValueError):
            RetentionPolicy(expiry_seconds=-1)


class TestSelectExpired:
    """Test selection of expired entries."""

    def test_mixed_folder_listing(self):
        """Only the expired .tar file is selected; other files and folders stay."""
        entries = [
            make_entry('a.tar', 3000000),
            make_entry('b.txt', 3000000),
            make_entry('c', 3000000, kind=EntryKind.FOLDER),
        ]
        policy = RetentionPolicy(expiry_seconds=MONTH, name_suffix='.tar')

        assert select_expired(entries, policy, NOW) == ['/backups/a.tar']

    def test_age_equal_to_expiry_is_expired(self):
        policy = RetentionPolicy(expiry_seconds=MONTH)

        assert select_expired([make_entry('a.tar', MONTH)], policy, NOW) == ['/backups/a.tar']

    def test_age_below_expiry_is_kept(self):
        policy = RetentionPolicy(expiry_seconds=MONTH)

        assert select_expired([make_entry('a.tar', MONTH - 1)], policy, NOW) == []

    @pytest.mark.parametrize("age,kind,name,expected", [
        (MONTH + 1, EntryKind.FILE, 'x.tar', True),
        (MONTH, EntryKind.FILE, 'x.tar', True),
        (MONTH - 1, EntryKind.FILE, 'x.tar', False),
        (MONTH * 10, EntryKind.FILE, 'x.tar.gz', False),
        (MONTH * 10, EntryKind.FOLDER, 'x.tar', False),
        (0, EntryKind.FILE, 'x.tar', False),
    ])
    def test_selection_rule(self, age, kind, name, expected):
        """Selected iff old enough, a file, and matching the suffix."""
        policy = RetentionPolicy(expiry_seconds=MONTH, name_suffix='.tar')

        assert is_expired(make_entry(name, age, kind=kind), policy, NOW) is expected

    def test_folders_never_selected(self):
        entries = [make_entry(f'folder{i}.tar', MONTH * (i + 2), kind=EntryKind.FOLDER) for i in range(5)]

        assert select_expired(entries, RetentionPolicy(expiry_seconds=0, name_suffix=''), NOW) == []

    def test_zero_expiry_selects_every_matching_file(self):
        entries = [make_entry('a.tar', 0), make_entry('b.tar', 10)]

        assert select_expired(entries, RetentionPolicy(expiry_seconds=0), NOW) == ['/backups/a.tar', '/backups/b.tar']

    def test_empty_suffix_matches_all_files(self):
        entries = [make_entry('a.tar', MONTH), make_entry('notes.txt', MONTH)]

        result = select_expired(entries, RetentionPolicy(expiry_seconds=MONTH, name_suffix=''), NOW)

        assert result == ['/backups/a.tar', '/backups/notes.txt']

    def test_missing_timestamp_never_expired(self):
        policy = RetentionPolicy(expiry_seconds=0)

        assert select_expired([make_entry('a.tar', None)], policy, NOW) == []

    def test_future_timestamp_not_expired(self):
        """Clock skew between provider and host must not delete new backups."""
        assert select_expired([make_entry('a.tar', -600)], RetentionPolicy(expiry_seconds=0), NOW) == []

    def test_input_order_preserved(self):
        entries = [
            make_entry('c.tar', MONTH * 3),
            make_entry('a.tar', MONTH * 2),
            make_entry('keep.tar', 10),
            make_entry('b.tar', MONTH * 4),
        ]

        result = select_expired(entries, RetentionPolicy(expiry_seconds=MONTH), NOW)

        assert result == ['/backups/c.tar', '/backups/a.tar', '/backups/b.tar']

    def test_deterministic(self):
        entries = [make_entry('a.tar', MONTH * 2), make_entry('b.tar', 10), make_entry('c.tar', MONTH)]
        policy = RetentionPolicy(expiry_seconds=MONTH)

        first = select_expired(entries, policy, NOW)
        second = select_expired(entries, policy, NOW)

        assert first == second == ['/backups/a.tar', '/backups/c.tar']

    def test_does_not_consume_generator_twice(self):
        """Each entry is evaluated once even when entries is an iterator."""
        entries = (make_entry(name, MONTH) for name in ('a.tar', 'b.tar'))

        assert select_expired(entries, RetentionPolicy(expiry_seconds=MONTH), NOW) == ['/backups/a.tar', '/backups/b.tar']

    def test_naive_times_treated_as_utc(self):
        entry = RemoteEntry(path='/a.tar', name='a.tar', kind=EntryKind.FILE, modified_at=datetime(2023, 12, 1))

        assert select_expired([entry], RetentionPolicy(expiry_seconds=MONTH), datetime(2024, 1, 15)) == ['/a.tar']
