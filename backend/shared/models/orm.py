"""
SQLAlchemy 2.0 ORM models for live stream descriptors and stats snapshots.
JSON columns map to JSONB on PostgreSQL and plain JSON elsewhere (SQLite in tests).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class LiveStreamORM(Base):
    __tablename__ = "live_streams"
    __table_args__ = (
        Index("ix_live_streams_event_active", "event_id", "is_active"),
        # At most one active descriptor per event
        Index(
            "uq_live_streams_event_active",
            "event_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    stream_url: Mapped[str] = mapped_column(Text, nullable=False)
    hls_url: Mapped[Optional[str]] = mapped_column(Text)
    fallback_url: Mapped[Optional[str]] = mapped_column(Text)
    title: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    stream_type: Mapped[str] = mapped_column(String(20), nullable=False, default="hls")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    quality: Mapped[str] = mapped_column(String(20), nullable=False, default="720p")
    available_qualities: Mapped[Optional[list[str]]] = mapped_column(JSONType)
    poster_url: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class LiveStreamStatsORM(Base):
    __tablename__ = "live_stream_stats"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_live_stream_stats_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    stats: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    highlights: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSONType)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
