"""Persistence models for the endpoint registry."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from outrider.common.time import utcnow

from .errors import TimezoneAwareRequiredError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

DEFAULT_SCAN_PRIORITY = 100


class Base(DeclarativeBase):
    """Base declarative class for Outrider tables."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError("registry timestamp")
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class EndpointRecord(Base):
    """One row per known endpoint; rows are transitioned, never deleted."""

    __tablename__ = "endpoint_registry"
    __table_args__ = (
        Index("ix_endpoint_registry_due", "status", "next_scan_at"),
        Index("ix_endpoint_registry_priority", "scan_priority"),
    )

    endpoint: Mapped[str] = mapped_column(String(512), primary_key=True)
    discovered_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    discovery_source: Mapped[str] = mapped_column(String(32))
    provenance: Mapped[str | None] = mapped_column(String(512), default=None)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    relay_connected: Mapped[bool] = mapped_column(Boolean(), default=False)
    last_scan_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    next_scan_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    scan_started_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    has_content: Mapped[bool] = mapped_column(Boolean(), default=False)
    content_count: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)
    scan_priority: Mapped[int] = mapped_column(Integer, default=DEFAULT_SCAN_PRIORITY)
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_registry_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "DEFAULT_SCAN_PRIORITY",
    "Base",
    "EndpointRecord",
    "UTCDateTime",
    "init_registry_storage",
]
