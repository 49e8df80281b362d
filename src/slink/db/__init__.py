"""SQLite persistence for slink records."""

from .schema import Base, FileRow, ShareRow
from .store import SqlRecordStore, create_sqlite_engine

__all__ = [
    "Base",
    "FileRow",
    "ShareRow",
    "SqlRecordStore",
    "create_sqlite_engine",
]
