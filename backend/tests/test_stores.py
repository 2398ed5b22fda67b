"""
Record-store behaviour shared by every backend.

The SQL backend runs on SQLite (aiosqlite). The Redis backend needs a server:
set REDIS_URL (defaults to redis://localhost:6379/15); skipped when unreachable.
"""
from __future__ import annotations

import asyncio
import os
from typing import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from shared.models.domain import Highlight, LiveStream, StatPair
from shared.models.enums import StreamStatus
from shared.models.orm import LiveStreamORM
from shared.storage import LiveStore, MemoryLiveStore, StreamNotFound
from shared.storage.redis_store import RedisLiveStore
from shared.storage.sql import SqlLiveStore
from shared.utils.database import DatabaseManager
from shared.utils.redis_manager import RedisManager

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/15")


@pytest_asyncio.fixture(params=["memory", "sql", "redis"])
async def live_store(request: pytest.FixtureRequest, tmp_path) -> AsyncIterator[LiveStore]:
    if request.param == "memory":
        yield MemoryLiveStore()
        return

    if request.param == "sql":
        db = DatabaseManager(url=f"sqlite+aiosqlite:///{tmp_path}/live.db")
        sql_store = SqlLiveStore(db, create_schema=True)
        await sql_store.connect()
        try:
            yield sql_store
        finally:
            await sql_store.close()
        return

    redis = RedisManager(url=REDIS_URL)
    try:
        await redis.connect()
    except Exception as e:
        pytest.skip(f"Redis not available: {e}")
    redis_store = RedisLiveStore(redis)

    async def _purge() -> None:
        keys = [k async for k in redis.client.scan_iter(match="live:*")]
        if keys:
            await redis.client.delete(*keys)

    await _purge()
    try:
        yield redis_store
    finally:
        await _purge()
        await redis_store.close()


def _stream(event_id: int = 42, **fields: object) -> LiveStream:
    return LiveStream.model_validate({
        "eventId": event_id,
        "streamUrl": f"https://cdn.example/{event_id}.m3u8",
        "status": StreamStatus.ACTIVE,
        **fields,
    })


# ── Streams ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_ping(live_store: LiveStore) -> None:
    assert await live_store.ping() is True


@pytest.mark.asyncio
async def test_create_and_get(live_store: LiveStore) -> None:
    created = await live_store.create_stream(_stream(quality="1080p", availableQualities=["1080p", "720p"]))

    assert created.id is not None
    fetched = await live_store.get_stream_by_event(42)
    assert fetched is not None
    assert fetched.id == created.id
    assert fetched.quality == "1080p"
    assert fetched.available_qualities == ["1080p", "720p"]
    assert fetched.started_at.tzinfo is not None


@pytest.mark.asyncio
async def test_get_unknown_event(live_store: LiveStore) -> None:
    assert await live_store.get_stream_by_event(404) is None


@pytest.mark.asyncio
async def test_single_active_stream_per_event(live_store: LiveStore) -> None:
    first = await live_store.create_stream(_stream())
    other_event = await live_store.create_stream(_stream(event_id=7))
    second = await live_store.create_stream(_stream())

    streams = {s.id: s for s in await live_store.list_streams(42)}
    assert set(streams) == {first.id, second.id}
    assert streams[first.id].is_active is False
    assert streams[first.id].status == StreamStatus.ENDED
    assert streams[first.id].ended_at is not None
    assert streams[second.id].is_active is True
    # Other events are untouched
    assert (await live_store.get_stream_by_event(7)).id == other_event.id


@pytest.mark.asyncio
async def test_list_all_streams_in_id_order(live_store: LiveStore) -> None:
    a = await live_store.create_stream(_stream(event_id=1))
    b = await live_store.create_stream(_stream(event_id=2))
    ids = [s.id for s in await live_store.list_streams()]
    assert ids == [a.id, b.id]


@pytest.mark.asyncio
async def test_update_merges_fields(live_store: LiveStore) -> None:
    created = await live_store.create_stream(_stream(title="Kickoff"))
    updated = await live_store.update_stream(created.id, {"quality": "480p"})

    assert updated.quality == "480p"
    assert updated.title == "Kickoff"
    assert (await live_store.get_stream_by_event(42)).quality == "480p"


@pytest.mark.asyncio
async def test_update_deactivates(live_store: LiveStore) -> None:
    created = await live_store.create_stream(_stream())
    await live_store.update_stream(created.id, {"is_active": False, "status": StreamStatus.ENDED})

    assert await live_store.get_stream_by_event(42) is None
    [stored] = await live_store.list_streams(42)
    assert stored.is_active is False


@pytest.mark.asyncio
async def test_update_reactivation_ends_others(live_store: LiveStore) -> None:
    first = await live_store.create_stream(_stream())
    second = await live_store.create_stream(_stream())

    await live_store.update_stream(first.id, {"is_active": True, "ended_at": None, "status": StreamStatus.ACTIVE})

    assert (await live_store.get_stream_by_event(42)).id == first.id
    streams = {s.id: s for s in await live_store.list_streams(42)}
    assert streams[second.id].is_active is False


@pytest.mark.asyncio
async def test_update_unknown(live_store: LiveStore) -> None:
    with pytest.raises(StreamNotFound):
        await live_store.update_stream(12345, {"quality": "480p"})


# ── Stats ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stats_upsert_and_overwrite(live_store: LiveStore) -> None:
    assert await live_store.get_stats_by_event(42) is None

    first = await live_store.upsert_stats(42, {
        "possession": StatPair(home=60, away=40),
        "shots": StatPair(home=5, away=2),
    })
    second = await live_store.upsert_stats(42, {"possession": StatPair(home=58.5, away=41.5)})

    assert second.id == first.id
    stored = await live_store.get_stats_by_event(42)
    assert stored.stats == {"possession": StatPair(home=58.5, away=41.5)}
    assert stored.last_updated.tzinfo is not None


@pytest.mark.asyncio
async def test_stats_highlights(live_store: LiveStore) -> None:
    goal = Highlight(time=754, title="Goal")
    await live_store.upsert_stats(42, {}, [goal])
    await live_store.upsert_stats(42, {"shots": StatPair(home=1, away=0)})

    stored = await live_store.get_stats_by_event(42)
    assert stored.highlights == [goal]

    await live_store.upsert_stats(42, {}, [])
    assert (await live_store.get_stats_by_event(42)).highlights == []


@pytest.mark.asyncio
async def test_stats_are_per_event(live_store: LiveStore) -> None:
    await live_store.upsert_stats(42, {"shots": StatPair(home=1, away=0)})
    assert await live_store.get_stats_by_event(7) is None


@pytest.mark.asyncio
async def test_concurrent_first_stats_both_land(live_store: LiveStore) -> None:
    home = {"possession": StatPair(home=60, away=40)}
    away = {"shots": StatPair(home=1, away=3)}

    first, second = await asyncio.gather(
        live_store.upsert_stats(5, home),
        live_store.upsert_stats(5, away, [Highlight(time=12, title="Corner")]),
    )

    assert first.id == second.id
    stored = await live_store.get_stats_by_event(5)
    assert stored.stats in (home, away)
    assert stored.highlights == [Highlight(time=12, title="Corner")]


# ── SQL only ────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def sql_store(tmp_path) -> AsyncIterator[SqlLiveStore]:
    store = SqlLiveStore(DatabaseManager(url=f"sqlite+aiosqlite:///{tmp_path}/live.db"), create_schema=True)
    await store.connect()
    try:
        yield store
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_rejects_second_active_row(sql_store: SqlLiveStore) -> None:
    await sql_store.create_stream(_stream())

    with pytest.raises(IntegrityError):
        async with sql_store._db.write_session() as session:
            session.add(LiveStreamORM(event_id=42, stream_url="https://cdn.example/dup.m3u8", is_active=True))

    # Inactive rows for the same event are fine
    await sql_store.create_stream(_stream(isActive=False, status=StreamStatus.ENDED))
    assert len(await sql_store.list_streams(42)) == 2


@pytest.mark.asyncio
async def test_sql_concurrent_creates_leave_one_active(sql_store: SqlLiveStore) -> None:
    await asyncio.gather(*(sql_store.create_stream(_stream()) for _ in range(3)))

    active = [s for s in await sql_store.list_streams(42) if s.is_active]
    assert len(active) == 1
