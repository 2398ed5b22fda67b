"""
Update ingest: normalize and persist one inbound stream or stats update.

Transport independent; the WebSocket manager and the REST routes both call it
and broadcast whatever canonical record comes back.
"""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from shared.models.domain import (
    DEFAULT_STREAM_QUALITY,
    Highlight,
    LiveStats,
    LiveStream,
    StatPair,
    StreamPayload,
    utcnow,
)
from shared.models.enums import StreamStatus, StreamType
from shared.storage.base import LiveStore
from shared.utils.logging import get_logger
from shared.utils.metrics import INGEST_LATENCY, track_latency

logger = get_logger(__name__)


def default_stream_title(event_id: int) -> str:
    return f"Event #{event_id} Stream"


def new_stream_from_payload(payload: StreamPayload) -> LiveStream:
    """Build a fresh active descriptor, filling the defaults a producer may omit."""
    return LiveStream(
        event_id=payload.event_id,
        stream_url=payload.stream_url,
        hls_url=payload.hls_url,
        fallback_url=payload.fallback_url,
        title=payload.title or default_stream_title(payload.event_id),
        status=payload.status or StreamStatus.ACTIVE,
        stream_type=payload.stream_type or StreamType.HLS.value,
        quality=payload.quality or DEFAULT_STREAM_QUALITY,
        available_qualities=payload.available_qualities,
        poster_url=payload.poster_url,
        is_active=True,
        started_at=utcnow(),
        ended_at=None,
    )


def normalize_stream_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """
    Fill in the lifecycle fields implied by a partial update.

    Deactivating a stream ends it: ``endedAt`` is stamped and the status
    becomes ``ended`` unless the producer supplied either explicitly.
    Reactivating clears ``endedAt``.
    """
    normalized = dict(changes)
    if normalized.get("is_active") is False:
        if normalized.get("ended_at") is None:
            normalized["ended_at"] = utcnow()
        normalized.setdefault("status", StreamStatus.ENDED)
    elif normalized.get("is_active") is True:
        normalized.setdefault("ended_at", None)
        normalized.setdefault("status", StreamStatus.ACTIVE)
    return normalized


class UpdateIngestHandler:
    """Persists updates and returns the storage-confirmed record."""

    def __init__(self, store: LiveStore) -> None:
        self._store = store

    async def upsert_stream(self, payload: StreamPayload) -> LiveStream:
        """
        Create a stream (no id) or merge a partial update onto one (with id).

        Raises StreamNotFound for an unknown id, pydantic.ValidationError when
        the merged descriptor is invalid, and whatever the store raises on
        persistence failure.
        """
        with track_latency(INGEST_LATENCY, kind="stream"):
            if payload.is_create:
                stream = await self._store.create_stream(new_stream_from_payload(payload))
                logger.info(
                    "stream_created",
                    stream_id=stream.id,
                    event_id=stream.event_id,
                    quality=stream.quality,
                )
            else:
                changes = normalize_stream_changes(payload.changes())
                stream = await self._store.update_stream(payload.id, changes)
                logger.info(
                    "stream_updated",
                    stream_id=stream.id,
                    event_id=stream.event_id,
                    fields=sorted(changes),
                )
        return stream

    async def upsert_stats(
        self,
        event_id: int,
        stats: Mapping[str, StatPair],
        highlights: Sequence[Highlight] | None = None,
    ) -> LiveStats:
        """Replace the event's whole stats map (no per-key merge)."""
        with track_latency(INGEST_LATENCY, kind="stats"):
            snapshot = await self._store.upsert_stats(event_id, stats, highlights)
        logger.debug("stats_upserted", event_id=event_id, metrics=sorted(snapshot.stats))
        return snapshot
