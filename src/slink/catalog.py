"""Managed-file catalog: add, remove and list files."""

from __future__ import annotations

import uuid
from pathlib import Path

from .errors import NotFoundError, StorageError
from .logging import get_logger
from .model import FileRecord, FileSummary, RecordStore, StoreStats, utcnow
from .shares import Clock, ShareLifecycle
from .storage import LocalStorage

logger = get_logger(__name__)


class FileCatalog:
    def __init__(
        self,
        store: RecordStore,
        storage: LocalStorage,
        *,
        shares: ShareLifecycle,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.storage = storage
        self.shares = shares
        self.clock = clock

    def add_file(self, path: Path | str) -> FileRecord:
        """Copy ``path`` under a fresh UUID and record it."""
        source = Path(path)
        if not source.is_file():
            raise NotFoundError(str(source), f'No such file: {source}')
        filename = source.name
        if not filename:
            raise StorageError(f'invalid filename: {source}')

        record = FileRecord(
            uuid=str(uuid.uuid4()),
            filename=filename,
            added_at=self.clock(),
        )
        self.storage.place(source, record.uuid, filename)
        try:
            self.store.insert_file(record)
        except Exception:
            self.storage.remove(record.uuid)
            raise

        logger.info('file_added', file_uuid=record.uuid, filename=filename)
        return record

    def remove_file(self, record: FileRecord) -> int:
        """Delete a file, its links and its records.

        Records are removed before the copy and its links; a database
        failure leaves the file listed and served.

        Returns the number of shares that were still active.
        """
        removed = self.shares.remove_all(record, unpublish=False)
        self.store.delete_file(record.uuid)
        self.storage.remove(record.uuid)
        logger.info(
            'file_removed',
            file_uuid=record.uuid,
            filename=record.filename,
            active_shares=removed,
        )
        return removed

    def list_files(self) -> list[FileSummary]:
        return self.store.list_files()

    def stats(self) -> StoreStats:
        return self.store.stats()
