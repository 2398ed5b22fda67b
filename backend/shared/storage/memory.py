"""In-process live store. Default backend for local runs and tests."""
from __future__ import annotations

import itertools
from typing import Any, Mapping, Optional, Sequence

from shared.models.domain import Highlight, LiveStats, LiveStream, StatPair, utcnow
from shared.storage.base import LiveStore, StreamNotFound, deactivated, merge_stream


class MemoryLiveStore(LiveStore):
    name = "memory"

    def __init__(self) -> None:
        self._streams: dict[int, LiveStream] = {}
        # event_id -> snapshot
        self._stats: dict[int, LiveStats] = {}
        self._stream_ids = itertools.count(1)
        self._stats_ids = itertools.count(1)

    async def get_stream_by_event(self, event_id: int) -> Optional[LiveStream]:
        active = [
            s for s in self._streams.values() if s.event_id == event_id and s.is_active
        ]
        if not active:
            return None
        return max(active, key=lambda s: s.id or 0).model_copy(deep=True)

    async def list_streams(self, event_id: int | None = None) -> list[LiveStream]:
        return [
            s.model_copy(deep=True)
            for _, s in sorted(self._streams.items())
            if event_id is None or s.event_id == event_id
        ]

    async def create_stream(self, stream: LiveStream) -> LiveStream:
        stored = stream.model_copy(update={"id": next(self._stream_ids)}, deep=True)
        if stored.is_active:
            self._deactivate_others(stored.event_id, keep_id=stored.id)
        self._streams[stored.id] = stored
        return stored.model_copy(deep=True)

    async def update_stream(self, stream_id: int, changes: Mapping[str, Any]) -> LiveStream:
        current = self._streams.get(stream_id)
        if current is None:
            raise StreamNotFound(stream_id)
        updated = merge_stream(current, changes)
        if updated.is_active:
            self._deactivate_others(updated.event_id, keep_id=stream_id)
        self._streams[stream_id] = updated
        return updated.model_copy(deep=True)

    def _deactivate_others(self, event_id: int, keep_id: int | None) -> None:
        now = utcnow()
        for sid, s in self._streams.items():
            if sid != keep_id and s.event_id == event_id and s.is_active:
                self._streams[sid] = deactivated(s, now)

    async def get_stats_by_event(self, event_id: int) -> Optional[LiveStats]:
        snapshot = self._stats.get(event_id)
        return snapshot.model_copy(deep=True) if snapshot else None

    async def upsert_stats(
        self,
        event_id: int,
        stats: Mapping[str, StatPair],
        highlights: Sequence[Highlight] | None = None,
    ) -> LiveStats:
        existing = self._stats.get(event_id)
        if highlights is None and existing is not None:
            highlights = existing.highlights
        snapshot = LiveStats(
            id=existing.id if existing else next(self._stats_ids),
            event_id=event_id,
            stats=dict(stats),
            highlights=list(highlights) if highlights is not None else None,
            last_updated=utcnow(),
        )
        self._stats[event_id] = snapshot
        return snapshot.model_copy(deep=True)
