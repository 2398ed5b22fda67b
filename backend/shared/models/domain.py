"""
Pydantic v2 domain models for the live broadcast service.
These are the canonical wire/internal representations, NOT ORM models.

Wire field names are camelCase (``eventId``, ``streamUrl``); Python attributes
are snake_case. Dump with ``by_alias=True`` for anything that leaves the process.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StringConstraints,
    TypeAdapter,
    model_validator,
)
from pydantic.alias_generators import to_camel

from shared.models.enums import StreamStatus, StreamType

DEFAULT_STREAM_QUALITY = "720p"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


EventId = Annotated[int, Field(gt=0)]
Number = Union[int, float]
# Stat values are taken as sent: no bool or numeric-string coercion, finite only
StatNumber = Union[StrictInt, Annotated[StrictFloat, Field(allow_inf_nan=False)]]
MetricName = Annotated[str, StringConstraints(min_length=1, max_length=64)]


# ── Stats ───────────────────────────────────────────────────────────────
class StatPair(DomainModel):
    """One metric split by side, e.g. possession 60/40."""
    home: StatNumber
    away: StatNumber


# Sport-agnostic: absent keys mean "unknown", never zero.
StatsMap = dict[MetricName, StatPair]


class Highlight(DomainModel):
    """A key moment marker, offset in seconds from stream start."""
    time: Number = Field(ge=0)
    title: str
    description: Optional[str] = None


class LiveStats(DomainModel):
    """Latest statistics snapshot for one event (one row per event)."""
    id: Optional[int] = None
    event_id: EventId
    stats: StatsMap = Field(default_factory=dict)
    highlights: Optional[list[Highlight]] = None
    last_updated: datetime = Field(default_factory=utcnow)


# ── Streams ─────────────────────────────────────────────────────────────
class LiveStream(DomainModel):
    """Stored live stream descriptor. Never deleted, only deactivated."""
    id: Optional[int] = None
    event_id: EventId
    stream_url: str = Field(min_length=1)
    hls_url: Optional[str] = None
    fallback_url: Optional[str] = None
    title: Optional[str] = None
    status: StreamStatus = StreamStatus.PENDING
    stream_type: str = StreamType.HLS.value
    is_active: bool = True
    quality: str = DEFAULT_STREAM_QUALITY
    available_qualities: Optional[list[str]] = None
    poster_url: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None


class StreamPayload(DomainModel):
    """
    Inbound stream descriptor, full or partial.

    Without ``id`` it describes a new stream and must carry ``eventId`` and
    ``streamUrl``. With ``id`` only the supplied fields are merged onto the
    stored descriptor.
    """
    id: Optional[int] = Field(default=None, gt=0)
    event_id: Optional[EventId] = None
    stream_url: Optional[str] = None
    hls_url: Optional[str] = None
    fallback_url: Optional[str] = None
    title: Optional[str] = None
    status: Optional[StreamStatus] = None
    stream_type: Optional[str] = None
    is_active: Optional[bool] = None
    quality: Optional[str] = None
    available_qualities: Optional[list[str]] = None
    poster_url: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @model_validator(mode="after")
    def require_creation_fields(self) -> "StreamPayload":
        if self.id is None and (self.event_id is None or not self.stream_url):
            raise ValueError("eventId and streamUrl are required to create a stream")
        return self

    @property
    def is_create(self) -> bool:
        return self.id is None

    def changes(self) -> dict[str, Any]:
        """Fields the producer actually sent, minus the id."""
        return self.model_dump(exclude_unset=True, exclude={"id"})


# ── WebSocket inbound messages ──────────────────────────────────────────
class SubscribeMessage(DomainModel):
    type: Literal["subscribe"]
    event_id: EventId


class StreamUpdateMessage(DomainModel):
    type: Literal["stream_update"]
    stream: StreamPayload


class StatsMessage(DomainModel):
    type: Literal["stats"]
    event_id: EventId
    stats: StatsMap
    highlights: Optional[list[Highlight]] = None


ClientMessage = Annotated[
    Union[SubscribeMessage, StreamUpdateMessage, StatsMessage],
    Field(discriminator="type"),
]
CLIENT_MESSAGE_ADAPTER: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """
    Decode one inbound frame.

    Raises pydantic.ValidationError for invalid JSON, a missing or unknown
    ``type`` and any payload schema failure.
    """
    return CLIENT_MESSAGE_ADAPTER.validate_json(raw)


# ── WebSocket outbound messages ─────────────────────────────────────────
class StreamInfoMessage(DomainModel):
    type: Literal["stream_info"] = "stream_info"
    stream: LiveStream


class StatsUpdateMessage(DomainModel):
    type: Literal["stats"] = "stats"
    stats: LiveStats

