"""
Live stream and stats REST endpoints.

GET   /api/events/{eventId}/stream - Active stream descriptor for an event.
GET   /api/events/{eventId}/stats  - Latest stats snapshot for an event.
GET   /api/streams                 - All stream descriptors, optionally by event.
POST  /api/streams                 - Start a stream; broadcast to the event's viewers.
PATCH /api/streams/{streamId}      - Partial update; broadcast to the event's viewers.

Writes go through the same ingest + broadcast path as WebSocket producers,
but REST callers get status codes back.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from api.dependencies import get_store, get_ws_manager
from api.ws.manager import WebSocketManager
from shared.models.domain import LiveStats, LiveStream, StreamPayload
from shared.storage.base import LiveStore
from shared.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["live"])


@router.get("/events/{event_id}/stream", response_model=LiveStream)
async def get_event_stream(
    event_id: int,
    store: LiveStore = Depends(get_store),
) -> LiveStream:
    stream = await store.get_stream_by_event(event_id)
    if stream is None:
        raise HTTPException(status_code=404, detail="No active stream found for this event")
    return stream


@router.get("/events/{event_id}/stats", response_model=LiveStats)
async def get_event_stats(
    event_id: int,
    store: LiveStore = Depends(get_store),
) -> LiveStats:
    stats = await store.get_stats_by_event(event_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Stats not found for this event")
    return stats


@router.get("/streams", response_model=list[LiveStream])
async def list_streams(
    event_id: Optional[int] = Query(default=None, alias="eventId"),
    store: LiveStore = Depends(get_store),
) -> list[LiveStream]:
    return await store.list_streams(event_id)


@router.post("/streams", response_model=LiveStream, status_code=status.HTTP_201_CREATED)
async def create_stream(
    payload: StreamPayload,
    manager: WebSocketManager = Depends(get_ws_manager),
) -> LiveStream:
    """Create a new active stream. Any other active stream of the event is ended."""
    if not payload.is_create:
        raise HTTPException(status_code=422, detail="id must not be set when creating a stream")
    stream = await manager.publish_stream(payload)
    logger.info("api_stream_created", stream_id=stream.id, event_id=stream.event_id)
    return stream


@router.patch("/streams/{stream_id}", response_model=LiveStream)
async def update_stream(
    stream_id: int,
    changes: dict[str, Any] = Body(...),
    manager: WebSocketManager = Depends(get_ws_manager),
) -> LiveStream:
    """Merge the supplied fields onto a stored stream. 404 if the id is unknown."""
    try:
        payload = StreamPayload.model_validate({**changes, "id": stream_id})
        return await manager.publish_stream(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False, include_context=False)) from exc
