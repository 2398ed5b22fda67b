"""
Redis-backed live store.

Records are JSON documents under namespaced keys; ids come from INCR counters.
Writes that touch the active-stream pointer run in WATCH/MULTI transactions so
two producers cannot both leave an active stream behind for one event.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from redis.asyncio.client import Pipeline

from shared.models.domain import Highlight, LiveStats, LiveStream, StatPair, utcnow
from shared.storage.base import LiveStore, StreamNotFound, deactivated, merge_stream
from shared.utils.logging import get_logger
from shared.utils.redis_manager import (
    EVENT_ACTIVE_STREAM_KEY,
    EVENT_STATS_KEY,
    EVENT_STREAMS_KEY,
    STATS_SEQ_KEY,
    STREAM_KEY,
    STREAM_SEQ_KEY,
    RedisManager,
    key,
)

logger = get_logger(__name__)


class RedisLiveStore(LiveStore):
    name = "redis"

    def __init__(self, redis: RedisManager) -> None:
        self._redis = redis

    async def connect(self) -> None:
        await self._redis.connect()

    async def close(self) -> None:
        await self._redis.disconnect()

    async def ping(self) -> bool:
        return await self._redis.ping()

    # ── Streams ─────────────────────────────────────────────────────────
    async def _load_stream(self, client: Any, stream_id: int | str) -> Optional[LiveStream]:
        raw = await client.get(key(STREAM_KEY, stream_id=stream_id))
        return LiveStream.model_validate_json(raw) if raw else None

    async def get_stream_by_event(self, event_id: int) -> Optional[LiveStream]:
        client = self._redis.client
        active_id = await client.get(key(EVENT_ACTIVE_STREAM_KEY, event_id=event_id))
        if not active_id:
            return None
        stream = await self._load_stream(client, active_id)
        if stream is None or not stream.is_active:
            return None
        return stream

    async def list_streams(self, event_id: int | None = None) -> list[LiveStream]:
        client = self._redis.client
        if event_id is not None:
            ids = sorted(int(i) for i in await client.smembers(key(EVENT_STREAMS_KEY, event_id=event_id)))
        else:
            last = await client.get(STREAM_SEQ_KEY)
            ids = list(range(1, int(last) + 1)) if last else []
        if not ids:
            return []
        raws = await client.mget([key(STREAM_KEY, stream_id=i) for i in ids])
        return [LiveStream.model_validate_json(r) for r in raws if r]

    async def create_stream(self, stream: LiveStream) -> LiveStream:
        client = self._redis.client
        stream_id = int(await client.incr(STREAM_SEQ_KEY))
        stored = stream.model_copy(update={"id": stream_id})
        active_key = key(EVENT_ACTIVE_STREAM_KEY, event_id=stored.event_id)

        async def write(pipe: Pipeline) -> None:
            previous = await self._previous_active(pipe, active_key, keep_id=stream_id)
            pipe.multi()
            if previous is not None:
                pipe.set(key(STREAM_KEY, stream_id=previous.id), deactivated(previous).model_dump_json())
            pipe.set(key(STREAM_KEY, stream_id=stream_id), stored.model_dump_json())
            pipe.sadd(key(EVENT_STREAMS_KEY, event_id=stored.event_id), stream_id)
            if stored.is_active:
                pipe.set(active_key, stream_id)

        await client.transaction(write, active_key)
        logger.debug("redis_stream_created", stream_id=stream_id, event_id=stored.event_id)
        return stored

    async def update_stream(self, stream_id: int, changes: Mapping[str, Any]) -> LiveStream:
        client = self._redis.client
        stream_key = key(STREAM_KEY, stream_id=stream_id)

        async def write(pipe: Pipeline) -> LiveStream:
            current = await self._load_stream(pipe, stream_id)
            if current is None:
                raise StreamNotFound(stream_id)
            updated = merge_stream(current, changes)
            old_active_key = key(EVENT_ACTIVE_STREAM_KEY, event_id=current.event_id)
            new_active_key = key(EVENT_ACTIVE_STREAM_KEY, event_id=updated.event_id)
            await pipe.watch(old_active_key, new_active_key)
            previous = None
            if updated.is_active:
                previous = await self._previous_active(pipe, new_active_key, keep_id=stream_id)
            old_pointer = await pipe.get(old_active_key)

            pipe.multi()
            if previous is not None:
                pipe.set(key(STREAM_KEY, stream_id=previous.id), deactivated(previous).model_dump_json())
            pipe.set(stream_key, updated.model_dump_json())
            if updated.event_id != current.event_id:
                pipe.srem(key(EVENT_STREAMS_KEY, event_id=current.event_id), stream_id)
                pipe.sadd(key(EVENT_STREAMS_KEY, event_id=updated.event_id), stream_id)
            if old_pointer == str(stream_id) and (
                not updated.is_active or updated.event_id != current.event_id
            ):
                pipe.delete(old_active_key)
            if updated.is_active:
                pipe.set(new_active_key, stream_id)
            return updated

        return await client.transaction(write, stream_key, value_from_callable=True)

    async def _previous_active(
        self, pipe: Pipeline, active_key: str, keep_id: int
    ) -> Optional[LiveStream]:
        active_id = await pipe.get(active_key)
        if not active_id or int(active_id) == keep_id:
            return None
        previous = await self._load_stream(pipe, active_id)
        if previous is None or not previous.is_active:
            return None
        return previous

    # ── Stats ───────────────────────────────────────────────────────────
    async def get_stats_by_event(self, event_id: int) -> Optional[LiveStats]:
        raw = await self._redis.client.get(key(EVENT_STATS_KEY, event_id=event_id))
        return LiveStats.model_validate_json(raw) if raw else None

    async def upsert_stats(
        self,
        event_id: int,
        stats: Mapping[str, StatPair],
        highlights: Sequence[Highlight] | None = None,
    ) -> LiveStats:
        client = self._redis.client
        stats_key = key(EVENT_STATS_KEY, event_id=event_id)

        async def write(pipe: Pipeline) -> LiveStats:
            raw = await pipe.get(stats_key)
            existing = LiveStats.model_validate_json(raw) if raw else None
            if existing is not None:
                snapshot_id = existing.id
                kept = existing.highlights if highlights is None else list(highlights)
            else:
                snapshot_id = int(await pipe.incr(STATS_SEQ_KEY))
                kept = list(highlights) if highlights is not None else None
            snapshot = LiveStats(
                id=snapshot_id,
                event_id=event_id,
                stats=dict(stats),
                highlights=kept,
                last_updated=utcnow(),
            )
            pipe.multi()
            pipe.set(stats_key, snapshot.model_dump_json())
            return snapshot

        return await client.transaction(write, stats_key, value_from_callable=True)
