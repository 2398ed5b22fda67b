"""
Record-store interface for live stream descriptors and stats snapshots.

Every implementation keeps at most one active stream per event: activating a
descriptor deactivates any other active descriptor of the same event.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from shared.models.domain import Highlight, LiveStats, LiveStream, StatPair, utcnow
from shared.models.enums import StreamStatus


class StreamNotFound(LookupError):
    """Raised when an update names a stream id that does not exist."""

    def __init__(self, stream_id: int) -> None:
        self.stream_id = stream_id
        super().__init__(f"Live stream {stream_id} not found")


def deactivated(stream: LiveStream, now: datetime | None = None) -> LiveStream:
    """Copy of ``stream`` marked inactive and ended."""
    return stream.model_copy(update={
        "is_active": False,
        "status": StreamStatus.ENDED,
        "ended_at": stream.ended_at or now or utcnow(),
    })


def merge_stream(current: LiveStream, changes: Mapping[str, Any]) -> LiveStream:
    """Apply a partial update and re-validate the result."""
    merged = {**current.model_dump(), **changes, "id": current.id}
    return LiveStream.model_validate(merged)


class LiveStore(ABC):
    """Async record store consumed by the ingest handler and snapshot loader."""

    name: str = "abstract"

    async def connect(self) -> None:
        """Open connections / create schema. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    async def ping(self) -> bool:
        return True

    # ── Streams ─────────────────────────────────────────────────────────
    @abstractmethod
    async def get_stream_by_event(self, event_id: int) -> Optional[LiveStream]:
        """The active stream of an event, if any."""

    @abstractmethod
    async def list_streams(self, event_id: int | None = None) -> list[LiveStream]:
        """All stored streams, active or not, oldest first."""

    @abstractmethod
    async def create_stream(self, stream: LiveStream) -> LiveStream:
        """Persist a new descriptor, assign its id and return it."""

    @abstractmethod
    async def update_stream(self, stream_id: int, changes: Mapping[str, Any]) -> LiveStream:
        """Merge ``changes`` onto a stored descriptor. Raises StreamNotFound."""

    # ── Stats ───────────────────────────────────────────────────────────
    @abstractmethod
    async def get_stats_by_event(self, event_id: int) -> Optional[LiveStats]:
        ...

    @abstractmethod
    async def upsert_stats(
        self,
        event_id: int,
        stats: Mapping[str, StatPair],
        highlights: Sequence[Highlight] | None = None,
    ) -> LiveStats:
        """
        Replace the whole stats map of an event, creating the row if needed.

        Highlights are replaced only when given; otherwise the stored ones stay.
        """
