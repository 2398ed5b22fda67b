"""SQLAlchemy-backed live store (PostgreSQL in production)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shared.models.domain import Highlight, LiveStats, LiveStream, StatPair, utcnow
from shared.models.enums import StreamStatus
from shared.models.orm import LiveStreamORM, LiveStreamStatsORM
from shared.storage.base import LiveStore, StreamNotFound, merge_stream
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

_STREAM_COLUMNS = tuple(c.key for c in LiveStreamORM.__table__.columns)
# First key of the two-key advisory lock taken per event on Postgres
_ACTIVE_STREAM_LOCK = 5201


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _stream_from_row(row: LiveStreamORM) -> LiveStream:
    data = {col: getattr(row, col) for col in _STREAM_COLUMNS}
    data["started_at"] = _as_utc(data["started_at"])
    data["ended_at"] = _as_utc(data["ended_at"])
    return LiveStream.model_validate(data)


def _stream_values(stream: LiveStream) -> dict[str, Any]:
    values = stream.model_dump(exclude={"id"})
    values["status"] = stream.status.value
    return values


def _stats_from_row(row: LiveStreamStatsORM) -> LiveStats:
    return LiveStats.model_validate({
        "id": row.id,
        "event_id": row.event_id,
        "stats": row.stats or {},
        "highlights": row.highlights,
        "last_updated": _as_utc(row.last_updated),
    })


class SqlLiveStore(LiveStore):
    name = "sql"

    def __init__(self, db: DatabaseManager, *, create_schema: bool = False) -> None:
        self._db = db
        self._create_schema = create_schema

    async def connect(self) -> None:
        await self._db.connect()
        if self._create_schema:
            await self._db.create_schema()

    async def close(self) -> None:
        await self._db.disconnect()

    async def ping(self) -> bool:
        return await self._db.ping()

    # ── Streams ─────────────────────────────────────────────────────────
    async def get_stream_by_event(self, event_id: int) -> Optional[LiveStream]:
        stmt = (
            select(LiveStreamORM)
            .where(LiveStreamORM.event_id == event_id, LiveStreamORM.is_active.is_(True))
            .order_by(LiveStreamORM.id.desc())
            .limit(1)
        )
        async with self._db.read_session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _stream_from_row(row) if row else None

    async def list_streams(self, event_id: int | None = None) -> list[LiveStream]:
        stmt = select(LiveStreamORM).order_by(LiveStreamORM.id)
        if event_id is not None:
            stmt = stmt.where(LiveStreamORM.event_id == event_id)
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_stream_from_row(r) for r in rows]

    async def create_stream(self, stream: LiveStream) -> LiveStream:
        async with self._db.write_session() as session:
            if stream.is_active:
                await self._lock_event(session, stream.event_id)
                await self._deactivate_others(session, stream.event_id, keep_id=None)
            row = LiveStreamORM(**_stream_values(stream))
            session.add(row)
            await session.flush()
            created = _stream_from_row(row)
        logger.debug("sql_stream_created", stream_id=created.id, event_id=created.event_id)
        return created

    async def update_stream(self, stream_id: int, changes: Mapping[str, Any]) -> LiveStream:
        async with self._db.write_session() as session:
            row = await session.get(LiveStreamORM, stream_id)
            if row is None:
                raise StreamNotFound(stream_id)
            updated = merge_stream(_stream_from_row(row), changes)
            if updated.is_active:
                await self._lock_event(session, updated.event_id)
                await self._deactivate_others(session, updated.event_id, keep_id=stream_id)
            for column, value in _stream_values(updated).items():
                setattr(row, column, value)
            await session.flush()
        return updated

    @property
    def _dialect(self) -> str:
        return self._db.engine.dialect.name

    async def _lock_event(self, session: Any, event_id: int) -> None:
        # Held until commit so concurrent activations for one event run one after
        # another. SQLite already serializes writers.
        if self._dialect == "postgresql":
            await session.execute(select(func.pg_advisory_xact_lock(_ACTIVE_STREAM_LOCK, event_id)))

    @staticmethod
    async def _deactivate_others(session: Any, event_id: int, keep_id: int | None) -> None:
        stmt = (
            update(LiveStreamORM)
            .where(LiveStreamORM.event_id == event_id, LiveStreamORM.is_active.is_(True))
            .values(
                is_active=False,
                status=StreamStatus.ENDED.value,
                ended_at=func.coalesce(LiveStreamORM.ended_at, utcnow()),
            )
            .execution_options(synchronize_session=False)
        )
        if keep_id is not None:
            stmt = stmt.where(LiveStreamORM.id != keep_id)
        await session.execute(stmt)

    # ── Stats ───────────────────────────────────────────────────────────
    async def get_stats_by_event(self, event_id: int) -> Optional[LiveStats]:
        stmt = select(LiveStreamStatsORM).where(LiveStreamStatsORM.event_id == event_id)
        async with self._db.read_session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _stats_from_row(row) if row else None

    async def upsert_stats(
        self,
        event_id: int,
        stats: Mapping[str, StatPair],
        highlights: Sequence[Highlight] | None = None,
    ) -> LiveStats:
        stats_json = {name: pair.model_dump() for name, pair in stats.items()}
        highlights_json = (
            [h.model_dump() for h in highlights] if highlights is not None else None
        )
        now = utcnow()
        # Full overwrite of the map; highlights only when sent
        set_: dict[str, Any] = {"stats": stats_json, "last_updated": now}
        if highlights_json is not None:
            set_["highlights"] = highlights_json
        values = dict(event_id=event_id, stats=stats_json, highlights=highlights_json, last_updated=now)

        if self._dialect == "postgresql":
            stmt = pg_insert(LiveStreamStatsORM).values(**values).on_conflict_do_update(
                constraint="uq_live_stream_stats_event",
                set_=set_,
            )
        else:
            stmt = sqlite_insert(LiveStreamStatsORM).values(**values).on_conflict_do_update(
                index_elements=["event_id"],
                set_=set_,
            )

        async with self._db.write_session() as session:
            result = await session.scalars(
                stmt.returning(LiveStreamStatsORM),
                execution_options={"populate_existing": True},
            )
            snapshot = _stats_from_row(result.one())
        return snapshot
