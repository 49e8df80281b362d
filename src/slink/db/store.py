"""SQLite-backed RecordStore implementation.

Implements the RecordStore protocol with SQLAlchemy over a single SQLite
file.  Each operation runs in its own transaction; every invocation of
the command line opens the store once.

Invariants:
  - (file_uuid, token) is unique in ``shares`` (constraint, not just a check)
  - deleting a file cascades to its shares (foreign keys enabled per connection)
  - SQLAlchemy errors never leak; they surface as PersistenceError
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import PersistenceError, ShareConflictError
from ..model import (
    FileRecord,
    FileSummary,
    ShareRecord,
    ShareStatus,
    StoreStats,
    check_transition,
)
from .schema import Base, FileRow, ShareRow


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def create_sqlite_engine(db_path: str | Path, *, echo: bool = False) -> Engine:
    if str(db_path) == ':memory:':
        url = 'sqlite://'
    else:
        path = Path(db_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(
                f'failed to create database directory {path.parent}: {exc}'
            ) from exc
        url = f'sqlite:///{path}'
    engine = create_engine(url, echo=echo)
    event.listen(engine, 'connect', _enable_foreign_keys)
    return engine


def _file(row: FileRow) -> FileRecord:
    return FileRecord(uuid=row.uuid, filename=row.filename, added_at=row.added_at)


def _share(row: ShareRow) -> ShareRecord:
    return ShareRecord(
        file_uuid=row.file_uuid,
        recipient=row.recipient,
        token=row.token,
        salt=row.salt,
        status=row.status,
        created_at=row.created_at,
        removed_at=row.removed_at,
    )


def _is_unique_violation(exc: IntegrityError) -> bool:
    return 'UNIQUE constraint failed' in str(exc.orig)


class SqlRecordStore:
    """RecordStore backed by SQLite via SQLAlchemy."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f'failed to initialize database: {exc}') from exc

    @classmethod
    def open(cls, db_path: str | Path) -> SqlRecordStore:
        return cls(create_sqlite_engine(db_path))

    def close(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """Yield a session inside one transaction; normalize errors."""
        session = self._sessions()
        try:
            with session.begin():
                yield session
        except (PersistenceError, ValueError):
            raise
        except SQLAlchemyError as exc:
            raise PersistenceError(f'database error: {exc}') from exc
        finally:
            session.close()

    # ── Files ─────────────────────────────────────────────────────────

    def insert_file(self, record: FileRecord) -> FileRecord:
        with self._transaction() as session:
            session.add(FileRow(
                uuid=record.uuid,
                filename=record.filename,
                added_at=record.added_at,
            ))
        return record

    def get_file(self, uuid: str) -> FileRecord | None:
        with self._transaction() as session:
            row = session.get(FileRow, uuid)
            return _file(row) if row is not None else None

    def list_files_by_name(self, filename: str) -> list[FileRecord]:
        stmt = (
            select(FileRow)
            .where(FileRow.filename == filename)
            .order_by(FileRow.added_at, FileRow.uuid)
        )
        with self._transaction() as session:
            return [_file(row) for row in session.scalars(stmt)]

    def list_files(self) -> list[FileSummary]:
        active = func.count(ShareRow.id).filter(
            ShareRow.status == ShareStatus.ACTIVE,
        )
        stmt = (
            select(FileRow, active)
            .outerjoin(ShareRow, ShareRow.file_uuid == FileRow.uuid)
            .group_by(FileRow.uuid)
            .order_by(FileRow.added_at.desc(), FileRow.uuid.desc())
        )
        with self._transaction() as session:
            return [
                FileSummary(record=_file(row), active_shares=count)
                for row, count in session.execute(stmt)
            ]

    def delete_file(self, uuid: str) -> bool:
        with self._transaction() as session:
            row = session.get(FileRow, uuid)
            if row is None:
                return False
            session.delete(row)
        return True

    # ── Shares ────────────────────────────────────────────────────────

    def insert_share(self, share: ShareRecord) -> ShareRecord:
        session = self._sessions()
        try:
            with session.begin():
                session.add(ShareRow(
                    file_uuid=share.file_uuid,
                    recipient=share.recipient,
                    token=share.token,
                    salt=share.salt,
                    status=share.status,
                    created_at=share.created_at,
                    removed_at=share.removed_at,
                ))
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise ShareConflictError(share.file_uuid, share.token) from exc
            raise PersistenceError(f'failed to insert share: {exc.orig}') from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f'database error: {exc}') from exc
        finally:
            session.close()
        return share

    def list_shares_by_file(self, file_uuid: str) -> list[ShareRecord]:
        stmt = (
            select(ShareRow)
            .where(ShareRow.file_uuid == file_uuid)
            .order_by(ShareRow.created_at, ShareRow.token)
        )
        with self._transaction() as session:
            return [_share(row) for row in session.scalars(stmt)]

    def count_shares_for(self, file_uuid: str, recipient: str) -> int:
        stmt = select(func.count(ShareRow.id)).where(
            ShareRow.file_uuid == file_uuid,
            ShareRow.recipient == recipient,
        )
        with self._transaction() as session:
            return session.scalar(stmt) or 0

    def update_share_status(
        self,
        file_uuid: str,
        token: str,
        status: ShareStatus,
        removed_at: datetime | None,
    ) -> ShareRecord | None:
        stmt = select(ShareRow).where(
            ShareRow.file_uuid == file_uuid,
            ShareRow.token == token,
        )
        with self._transaction() as session:
            row = session.scalars(stmt).one_or_none()
            if row is None:
                return None
            check_transition(row.status, status)
            row.status = status
            row.removed_at = removed_at
            session.flush()
            return _share(row)

    def stats(self) -> StoreStats:
        with self._transaction() as session:
            total_files = session.scalar(select(func.count(FileRow.uuid))) or 0
            total_shares = session.scalar(select(func.count(ShareRow.id))) or 0
            active_shares = session.scalar(
                select(func.count(ShareRow.id)).where(
                    ShareRow.status == ShareStatus.ACTIVE,
                )
            ) or 0
            oldest = session.scalar(select(func.min(FileRow.added_at)))
        return StoreStats(
            total_files=total_files,
            total_shares=total_shares,
            active_shares=active_shares,
            oldest_added_at=oldest,
        )
