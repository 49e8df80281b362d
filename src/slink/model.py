"""File and share records plus the record-store interface.

This module provides:
  1. ``FileRecord`` / ``ShareRecord``: domain objects matching the
     ``files`` and ``shares`` tables.
  2. ``RecordStore``: abstract storage protocol.
  3. ``InMemoryRecordStore``: test implementation.

Invariant:
  For one file, the set of tokens ever issued (active or removed) is
  unique.  Every store rejects a duplicate (file_uuid, token) insert with
  ``ShareConflictError``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from .errors import InvalidShareTransition, ShareConflictError


class ShareStatus(str, Enum):
    ACTIVE = 'active'
    REMOVED = 'removed'

    @property
    def label(self) -> str:
        return self.value.capitalize()


# ── Domain model ──────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FileRecord:
    """A managed file.

    Attributes:
        uuid: Primary identity, canonical lower-case text. Immutable.
        filename: Display name. Not unique across records.
        added_at: When the file was added (aware UTC).
    """

    uuid: str
    filename: str
    added_at: datetime

    @property
    def stored_path(self) -> str:
        """Location relative to the base directory."""
        return f'{self.uuid}/{self.filename}'


@dataclass(frozen=True, slots=True)
class ShareRecord:
    """A (file, recipient, token) grant.

    Attributes:
        file_uuid: Owning file.
        recipient: Free-form recipient identifier as supplied.
        token: URL path segment, unique per file across all its shares.
        salt: Salt the token was minted with.
        status: Active or Removed.  Removed is terminal.
        created_at: When the share was created (aware UTC).
        removed_at: When the share was removed; None while active.
    """

    file_uuid: str
    recipient: str
    token: str
    salt: int
    status: ShareStatus
    created_at: datetime
    removed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is ShareStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class FileSummary:
    record: FileRecord
    active_shares: int


@dataclass(frozen=True, slots=True)
class StoreStats:
    total_files: int
    total_shares: int
    active_shares: int
    oldest_added_at: datetime | None


def check_transition(current: ShareStatus, target: ShareStatus) -> None:
    """Only Active -> Removed is allowed."""
    if current is ShareStatus.ACTIVE and target is ShareStatus.REMOVED:
        return
    raise InvalidShareTransition(current.value, target.value)


def share_order(share: ShareRecord) -> tuple[datetime, str]:
    return (share.created_at, share.token)


def file_age_order(record: FileRecord) -> tuple[datetime, str]:
    """Oldest first; identical timestamps fall back to UUID order."""
    return (record.added_at, record.uuid)


# ── Repository protocol ──────────────────────────────────────────────


class RecordStore(Protocol):
    """Abstract file/share storage.

    Implementations: InMemoryRecordStore (testing),
    SqlRecordStore (SQLite via SQLAlchemy).
    """

    def insert_file(self, record: FileRecord) -> FileRecord: ...

    def get_file(self, uuid: str) -> FileRecord | None: ...

    def list_files_by_name(self, filename: str) -> list[FileRecord]:
        """Files with this display name, oldest first."""
        ...

    def list_files(self) -> list[FileSummary]:
        """Every file, newest first, with its active share count."""
        ...

    def delete_file(self, uuid: str) -> bool: ...

    def insert_share(self, share: ShareRecord) -> ShareRecord:
        """Persist a share.

        Raises:
            ShareConflictError: (file_uuid, token) was already issued.
        """
        ...

    def list_shares_by_file(self, file_uuid: str) -> list[ShareRecord]: ...

    def count_shares_for(self, file_uuid: str, recipient: str) -> int: ...

    def update_share_status(
        self,
        file_uuid: str,
        token: str,
        status: ShareStatus,
        removed_at: datetime | None,
    ) -> ShareRecord | None: ...

    def stats(self) -> StoreStats: ...


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryRecordStore:
    """Simple in-memory record store for testing."""

    def __init__(self) -> None:
        self._files: dict[str, FileRecord] = {}
        self._shares: dict[tuple[str, str], ShareRecord] = {}

    def insert_file(self, record: FileRecord) -> FileRecord:
        if record.uuid in self._files:
            raise ValueError(f'file {record.uuid} already exists')
        self._files[record.uuid] = record
        return record

    def get_file(self, uuid: str) -> FileRecord | None:
        return self._files.get(uuid)

    def list_files_by_name(self, filename: str) -> list[FileRecord]:
        matches = [f for f in self._files.values() if f.filename == filename]
        return sorted(matches, key=file_age_order)

    def list_files(self) -> list[FileSummary]:
        summaries = [
            FileSummary(
                record=record,
                active_shares=sum(
                    1
                    for s in self._shares.values()
                    if s.file_uuid == record.uuid and s.is_active
                ),
            )
            for record in self._files.values()
        ]
        return sorted(
            summaries, key=lambda s: file_age_order(s.record), reverse=True,
        )

    def delete_file(self, uuid: str) -> bool:
        if self._files.pop(uuid, None) is None:
            return False
        for key in [k for k in self._shares if k[0] == uuid]:
            del self._shares[key]
        return True

    def insert_share(self, share: ShareRecord) -> ShareRecord:
        key = (share.file_uuid, share.token)
        if key in self._shares:
            raise ShareConflictError(share.file_uuid, share.token)
        self._shares[key] = share
        return share

    def list_shares_by_file(self, file_uuid: str) -> list[ShareRecord]:
        shares = [s for s in self._shares.values() if s.file_uuid == file_uuid]
        return sorted(shares, key=share_order)

    def count_shares_for(self, file_uuid: str, recipient: str) -> int:
        return sum(
            1
            for s in self._shares.values()
            if s.file_uuid == file_uuid and s.recipient == recipient
        )

    def update_share_status(
        self,
        file_uuid: str,
        token: str,
        status: ShareStatus,
        removed_at: datetime | None,
    ) -> ShareRecord | None:
        key = (file_uuid, token)
        share = self._shares.get(key)
        if share is None:
            return None
        check_transition(share.status, status)
        updated = replace(share, status=status, removed_at=removed_at)
        self._shares[key] = updated
        return updated

    def stats(self) -> StoreStats:
        oldest = min(
            (f.added_at for f in self._files.values()), default=None,
        )
        return StoreStats(
            total_files=len(self._files),
            total_shares=len(self._shares),
            active_shares=sum(1 for s in self._shares.values() if s.is_active),
            oldest_added_at=oldest,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
