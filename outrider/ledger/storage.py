"""Persistence model for per-record sync state."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from outrider.common.time import utcnow
from outrider.registry.storage import Base, UTCDateTime

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class SyncedRecord(Base):
    """Sync metadata for one record; content itself is stored downstream."""

    __tablename__ = "synced_records"
    __table_args__ = (
        Index("ix_synced_records_last_synced", "deleted_at", "last_synced_at"),
        Index("ix_synced_records_repo", "repo"),
    )

    uri: Mapped[str] = mapped_column(String(1024), primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    collection: Mapped[str] = mapped_column(String(255))
    rkey: Mapped[str] = mapped_column(String(512))
    endpoint: Mapped[str | None] = mapped_column(String(512), default=None)
    cid: Mapped[str | None] = mapped_column(String(255), default=None)
    last_seq: Mapped[int | None] = mapped_column(default=None)
    last_synced_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_checked_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    deleted_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    deletion_provenance: Mapped[str | None] = mapped_column(String(64), default=None)


async def init_ledger_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = ["SyncedRecord", "init_ledger_storage"]
