"""SQLAlchemy declarative schema for the slink database."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..model import ShareStatus


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError('naive datetime; expected timezone-aware UTC')
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class FileRow(Base):
    __tablename__ = 'files'

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ShareRow(Base):
    __tablename__ = 'shares'
    __table_args__ = (
        UniqueConstraint('file_uuid', 'token', name='uq_shares_file_token'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_uuid: Mapped[str] = mapped_column(
        String(36),
        ForeignKey('files.uuid', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    recipient: Mapped[str] = mapped_column(Text, nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    salt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ShareStatus] = mapped_column(
        Enum(
            ShareStatus,
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        nullable=False,
        default=ShareStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    removed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
