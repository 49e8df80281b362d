"""Share lifecycle tests: create, list, remove, history and URLs.

Run against both the in-memory store and the SQLite store so the two
implementations stay behaviorally identical.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone

import pytest

from slink.codec import generate_token
from slink.db import SqlRecordStore
from slink.errors import ShareConflictError, StorageError, TokenExhaustionError
from slink.model import FileRecord, InMemoryRecordStore, ShareStatus
from slink.shares import ShareLifecycle, share_url

FILE_UUID = '5a6b7c8d-9e0f-4a1b-8c2d-3e4f5a6b7c8d'


@pytest.fixture(params=['memory', 'sqlite'])
def any_store(request, tmp_path):
    if request.param == 'memory':
        yield InMemoryRecordStore()
        return
    store = SqlRecordStore.open(tmp_path / 'shares.db')
    yield store
    store.close()


@pytest.fixture
def file_record(any_store):
    record = FileRecord(
        uuid=FILE_UUID,
        filename='report.pdf',
        added_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    any_store.insert_file(record)
    return record


@pytest.fixture
def manager(any_store, config, clock):
    return ShareLifecycle(any_store, config, clock=clock)


class TestShareUrl:
    def test_format(self):
        assert share_url('https://x.example', 'AbC-_1', 'report.pdf') == (
            'https://x.example/AbC-_1/report.pdf'
        )

    def test_trailing_slash_is_not_doubled(self):
        assert share_url('https://x.example/', 'tok', 'a.txt') == 'https://x.example/tok/a.txt'

    def test_filename_is_url_encoded(self):
        assert share_url('https://x.example', 'tok', 'my report #1.pdf') == (
            'https://x.example/tok/my%20report%20%231.pdf'
        )


class TestCreateShare:
    def test_creates_active_share(self, manager, file_record, config):
        share = manager.create_share(file_record, 'alice')
        assert share.status is ShareStatus.ACTIVE
        assert share.removed_at is None
        assert share.recipient == 'alice'
        assert share.token == generate_token(config.secret, FILE_UUID, 'alice', 0, 7)

    def test_share_is_listed(self, manager, file_record):
        share = manager.create_share(file_record, 'alice')
        assert manager.list_shares(file_record) == [share]

    def test_url(self, manager, file_record):
        share = manager.create_share(file_record, 'alice')
        assert manager.url_for(file_record, share) == (
            f'https://files.example.com/{share.token}/report.pdf'
        )

    def test_same_recipient_twice_gets_distinct_tokens(self, manager, file_record):
        first = manager.create_share(file_record, 'alice')
        second = manager.create_share(file_record, 'alice')
        assert first.token != second.token
        assert second.salt == 1

    def test_empty_recipient_rejected(self, manager, file_record):
        with pytest.raises(ValueError):
            manager.create_share(file_record, '')

    def test_list_is_ordered_by_creation(self, manager, file_record):
        created = [manager.create_share(file_record, r) for r in ('carol', 'alice', 'bob')]
        assert [s.token for s in manager.list_shares(file_record)] == [
            s.token for s in created
        ]


class TestRemoveShare:
    def test_no_active_share_is_zero(self, manager, file_record):
        assert manager.remove_share(file_record, 'nobody') == 0

    def test_removes_all_active_for_recipient(self, manager, file_record):
        manager.create_share(file_record, 'alice')
        manager.create_share(file_record, 'alice')
        bob = manager.create_share(file_record, 'bob')

        assert manager.remove_share(file_record, 'alice') == 2
        by_recipient = {}
        for s in manager.list_shares(file_record):
            by_recipient.setdefault(s.recipient, []).append(s)
        assert all(s.status is ShareStatus.REMOVED for s in by_recipient['alice'])
        assert by_recipient['bob'] == [bob]

    def test_second_remove_is_noop(self, manager, file_record):
        manager.create_share(file_record, 'alice')
        assert manager.remove_share(file_record, 'alice') == 1
        assert manager.remove_share(file_record, 'alice') == 0


class TestEndToEnd:
    def test_share_remove_reshare(self, manager, file_record):
        share = manager.create_share(file_record, 'alice')
        [listed] = manager.list_shares(file_record)
        assert listed.token == share.token
        assert listed.is_active
        assert listed.removed_at is None

        assert manager.remove_share(file_record, 'alice') == 1
        [removed] = manager.list_shares(file_record)
        assert removed.token == share.token
        assert removed.status is ShareStatus.REMOVED
        assert removed.removed_at is not None
        assert removed.removed_at >= removed.created_at

        again = manager.create_share(file_record, 'alice')
        other = manager.create_share(file_record, 'bob')
        assert share.token not in {again.token, other.token}
        assert len({s.token for s in manager.list_shares(file_record)}) == 3

    def test_removed_token_not_reissued_to_other_recipient(
        self, any_store, file_record, config, clock, monkeypatch,
    ):
        manager = ShareLifecycle(any_store, config, clock=clock)
        alice = manager.create_share(file_record, 'alice')
        manager.remove_share(file_record, 'alice')

        # Force bob's first candidate onto alice's removed token.
        import slink.guard as guard

        real = guard.generate_token

        def colliding(secret, file_uuid, recipient, salt, hash_bytes):
            if recipient == 'bob' and salt == 0:
                return alice.token
            return real(secret, file_uuid, recipient, salt, hash_bytes)

        monkeypatch.setattr(guard, 'generate_token', colliding)
        bob = manager.create_share(file_record, 'bob')
        assert bob.token != alice.token
        assert bob.salt == 1


class TestConcurrentInsert:
    def test_store_conflict_is_retried(self, any_store, file_record, config, clock):
        # Another invocation inserted our first candidate after we read history.
        token0 = generate_token(config.secret, FILE_UUID, 'alice', 0, 7)

        class RacingStore:
            def __init__(self, inner):
                self.inner = inner
                self.raced = False

            def __getattr__(self, name):
                return getattr(self.inner, name)

            def insert_share(self, share):
                if not self.raced:
                    self.raced = True
                    self.inner.insert_share(dataclasses.replace(share, recipient='other'))
                return self.inner.insert_share(share)

        manager = ShareLifecycle(RacingStore(any_store), config, clock=clock)
        share = manager.create_share(file_record, 'alice')
        assert share.token != token0
        assert share.salt == 1
        tokens = [s.token for s in any_store.list_shares_by_file(FILE_UUID)]
        assert sorted(tokens) == sorted([token0, share.token])

    def test_duplicate_insert_raises_conflict(self, any_store, file_record, manager):
        share = manager.create_share(file_record, 'alice')
        with pytest.raises(ShareConflictError):
            any_store.insert_share(dataclasses.replace(share, recipient='mallory'))

    def test_exhaustion_surfaces(self, any_store, file_record, config, clock):
        class AlwaysConflicts:
            def __init__(self, inner):
                self.inner = inner

            def __getattr__(self, name):
                return getattr(self.inner, name)

            def insert_share(self, share):
                raise ShareConflictError(share.file_uuid, share.token)

        manager = ShareLifecycle(AlwaysConflicts(any_store), config, clock=clock)
        with pytest.raises(TokenExhaustionError):
            manager.create_share(file_record, 'alice')
        assert any_store.list_shares_by_file(FILE_UUID) == []


class TestPublishing:
    def test_links_follow_share_state(self, store, config, clock, storage, base_dir):
        record = FileRecord(FILE_UUID, 'report.pdf', clock())
        store.insert_file(record)
        manager = ShareLifecycle(store, config, storage=storage, clock=clock)

        share = manager.create_share(record, 'alice')
        link = base_dir / share.token
        assert link.is_symlink()
        assert str(link.readlink()) == FILE_UUID

        manager.remove_share(record, 'alice')
        assert not link.is_symlink()

    def test_publish_failure_leaves_no_active_share(
        self, store, config, clock, storage, monkeypatch,
    ):
        record = FileRecord(FILE_UUID, 'report.pdf', clock())
        store.insert_file(record)
        manager = ShareLifecycle(store, config, storage=storage, clock=clock)

        def refuse(token, file_uuid):
            raise StorageError('permission denied')

        monkeypatch.setattr(storage, 'publish', refuse)
        with pytest.raises(StorageError):
            manager.create_share(record, 'alice')

        [share] = manager.list_shares(record)
        assert share.status is ShareStatus.REMOVED
        assert share.removed_at is not None
        assert store.stats().active_shares == 0


OTHER_UUID = '0b1c2d3e-4f5a-4b6c-9d7e-8f9a0b1c2d3e'


class TestSharedLinkDirectory:
    """Tokens are unique per file, but every link lives in one directory."""

    @pytest.fixture
    def two_files(self, store, clock):
        first = FileRecord(FILE_UUID, 'report.pdf', clock())
        second = FileRecord(OTHER_UUID, 'report.pdf', clock())
        store.insert_file(first)
        store.insert_file(second)
        return first, second

    @pytest.fixture
    def manager(self, store, config, clock, storage):
        return ShareLifecycle(store, config, storage=storage, clock=clock)

    def test_token_linked_by_another_file_is_a_collision(
        self, manager, two_files, base_dir, monkeypatch,
    ):
        first, second = two_files
        alice = manager.create_share(first, 'alice')

        import slink.guard as guard

        real = guard.generate_token

        def colliding(secret, file_uuid, recipient, salt, hash_bytes):
            if file_uuid == OTHER_UUID and salt == 0:
                return alice.token
            return real(secret, file_uuid, recipient, salt, hash_bytes)

        monkeypatch.setattr(guard, 'generate_token', colliding)
        bob = manager.create_share(second, 'bob')

        assert bob.token != alice.token
        assert bob.salt == 1
        assert str((base_dir / alice.token).readlink()) == FILE_UUID
        assert str((base_dir / bob.token).readlink()) == OTHER_UUID
        assert [s.token for s in manager.list_shares(second)] == [bob.token]

    def test_removing_share_keeps_other_files_link(
        self, manager, store, two_files, base_dir, clock,
    ):
        first, second = two_files
        bob = manager.create_share(second, 'bob')
        # Same token recorded for the first file, as a concurrent run could.
        store.insert_share(dataclasses.replace(
            bob, file_uuid=FILE_UUID, recipient='carol', created_at=clock(),
        ))

        assert manager.remove_share(first, 'carol') == 1

        assert str((base_dir / bob.token).readlink()) == OTHER_UUID
        [still] = manager.list_shares(second)
        assert still.is_active


class TestConcurrentRemove:
    def test_share_removed_between_list_and_update(
        self, any_store, manager, file_record, monkeypatch,
    ):
        manager.create_share(file_record, 'alice')
        stale = any_store.list_shares_by_file(FILE_UUID)
        assert manager.remove_share(file_record, 'alice') == 1

        # The second invocation still sees the share as active.
        monkeypatch.setattr(any_store, 'list_shares_by_file', lambda uuid: stale)
        assert manager.remove_share(file_record, 'alice') == 0
        assert manager.remove_all(file_record) == 0
