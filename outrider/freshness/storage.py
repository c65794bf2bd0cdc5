"""Persistence model for the freshness job queue."""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from outrider.common.time import utcnow
from outrider.registry.storage import Base, UTCDateTime

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class JobState(enum.StrEnum):
    """Queue state of a freshness job row."""

    QUEUED = "queued"
    IN_FLIGHT = "in_flight"


class FreshnessJobRecord(Base):
    """At most one row per record identifier; deleted on completion."""

    __tablename__ = "freshness_jobs"
    __table_args__ = (
        Index("ix_freshness_jobs_claim", "state", "priority", "available_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    uri: Mapped[str] = mapped_column(String(1024), unique=True)
    endpoint: Mapped[str] = mapped_column(String(512))
    priority: Mapped[int] = mapped_column(Integer)
    check_type: Mapped[str] = mapped_column(String(16))
    origin: Mapped[str] = mapped_column(String(16))
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    state: Mapped[str] = mapped_column(String(16), default=JobState.QUEUED.value)
    generation: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    available_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    enqueued_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    claimed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)


class JobLeaseRecord(Base):
    """One row per named job; a live ``expires_at`` means the job is held."""

    __tablename__ = "job_leases"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str | None] = mapped_column(String(64), default=None)
    expires_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())


async def init_freshness_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "FreshnessJobRecord",
    "JobLeaseRecord",
    "JobState",
    "init_freshness_storage",
]
