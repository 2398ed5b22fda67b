"""
WebSocket connection manager for live event broadcasts.

Manages client WebSocket connections with:
- One event subscription per connection (a new subscribe replaces the old one)
- Replay-on-subscribe: the current stream and stats are sent to the new subscriber
- Producer updates (stream_update, stats) persisted, then fanned out to the event
- Fire-and-forget inbound handling: bad frames and failed updates are logged,
  never answered, and never close the connection
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping, Optional, Sequence

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.live.ingest import UpdateIngestHandler
from api.live.snapshot import SnapshotLoader
from api.ws.broadcaster import Broadcaster
from api.ws.registry import SubscriptionRegistry
from api.ws.session import ConnectionSession
from shared.config import Settings, get_settings
from shared.models.domain import (
    Highlight,
    LiveStats,
    LiveStream,
    StatPair,
    StatsMessage,
    StatsUpdateMessage,
    StreamInfoMessage,
    StreamPayload,
    StreamUpdateMessage,
    SubscribeMessage,
    parse_client_message,
)
from shared.storage.base import StreamNotFound
from shared.utils.logging import connection_log_context, get_logger
from shared.utils.metrics import (
    INGEST_FAILURES,
    WS_CONNECTIONS,
    WS_MALFORMED_FRAMES,
    WS_MESSAGES,
)

logger = get_logger(__name__)


def _error_summary(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['type']}"
        for err in exc.errors()[:3]
    ]


class WebSocketManager:
    """
    Manages all WebSocket connections for this API instance.

    The registry, ingest handler, snapshot loader and broadcaster are built by
    the hosting app and injected, so independent managers can coexist in tests.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        ingest: UpdateIngestHandler,
        snapshots: SnapshotLoader,
        broadcaster: Broadcaster | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._ingest = ingest
        self._snapshots = snapshots
        self._broadcaster = broadcaster or Broadcaster(registry)
        self._settings = settings or get_settings()
        self._sessions: dict[str, ConnectionSession] = {}

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def connection_count(self) -> int:
        """Current number of open connections."""
        return len(self._sessions)

    async def stop(self) -> None:
        """Close every connection; their receive loops clean up after themselves."""
        sessions = list(self._sessions.values())
        for session in sessions:
            await session.close(code=1001, reason="server_shutdown")
            self._cleanup_connection(session)
        logger.info("ws_manager_stopped", closed_connections=len(sessions))

    # ── Connection lifecycle ────────────────────────────────────────────
    async def handle_connection(self, ws: WebSocket) -> None:
        """
        Handle one WebSocket from accept to disconnect.

        Frames are handled one at a time, in arrival order, so a single
        connection's messages never interleave with each other.
        """
        await ws.accept()

        session = ConnectionSession(
            ws=ws,
            remote_addr=f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown",
        )
        self._sessions[session.connection_id] = session
        WS_CONNECTIONS.inc()

        with connection_log_context(session.connection_id):
            logger.info("ws_connected", remote_addr=session.remote_addr)
            try:
                while True:
                    raw = await self._receive(session)
                    if raw is None:
                        break
                    WS_MESSAGES.labels(direction="in").inc()
                    await self.handle_frame(session, raw)
            except WebSocketDisconnect:
                pass
            except Exception as exc:
                logger.warning("ws_connection_error", error=str(exc))
            finally:
                self._cleanup_connection(session)

    async def _receive(self, session: ConnectionSession) -> Optional[str | bytes]:
        """Next inbound frame, or None once the connection is over."""
        timeout = self._settings.ws_idle_timeout_s or None
        try:
            message = await asyncio.wait_for(session.ws.receive(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("ws_idle_timeout", idle_s=timeout)
            await session.close(code=1000, reason="idle_timeout")
            return None

        if message["type"] == "websocket.disconnect":
            return None
        session.last_frame_at = time.monotonic()
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    def _cleanup_connection(self, session: ConnectionSession) -> None:
        """Deregister and forget a connection. Safe to call twice."""
        session.closed = True
        if self._sessions.pop(session.connection_id, None) is None:
            return
        WS_CONNECTIONS.dec()
        former_event = self._registry.deregister(session)
        logger.info(
            "ws_disconnected",
            connection_id=session.connection_id,
            event_id=former_event,
            alive_seconds=round(session.alive_seconds, 1),
        )

    # ── Inbound dispatch ────────────────────────────────────────────────
    async def handle_frame(self, session: ConnectionSession, raw: str | bytes) -> None:
        """Parse and dispatch one client frame. Malformed frames are dropped."""
        try:
            msg = parse_client_message(raw)
        except ValidationError as exc:
            WS_MALFORMED_FRAMES.inc()
            logger.warning("ws_malformed_frame", errors=_error_summary(exc))
            return

        if isinstance(msg, SubscribeMessage):
            await self._handle_subscribe(session, msg)
        elif isinstance(msg, StreamUpdateMessage):
            await self._handle_stream_update(msg)
        elif isinstance(msg, StatsMessage):
            await self._handle_stats(msg)

    async def _handle_subscribe(self, session: ConnectionSession, msg: SubscribeMessage) -> None:
        previous = session.event_id
        session.event_id = msg.event_id
        self._registry.register(session, msg.event_id)
        logger.info("ws_subscribed", event_id=msg.event_id, previous_event_id=previous)
        await self._snapshots.load_and_send(session, msg.event_id)

    async def _handle_stream_update(self, msg: StreamUpdateMessage) -> None:
        payload = msg.stream
        try:
            await self.publish_stream(payload)
        except StreamNotFound as exc:
            INGEST_FAILURES.labels(kind="stream", reason="not_found").inc()
            logger.warning("ws_stream_not_found", stream_id=exc.stream_id)
        except ValidationError as exc:
            INGEST_FAILURES.labels(kind="stream", reason="invalid").inc()
            logger.warning(
                "ws_stream_update_invalid",
                stream_id=payload.id,
                errors=_error_summary(exc),
            )
        except Exception as exc:
            INGEST_FAILURES.labels(kind="stream", reason="storage").inc()
            logger.error(
                "ws_stream_update_failed",
                stream_id=payload.id,
                event_id=payload.event_id,
                error=str(exc),
                exc_info=True,
            )

    async def _handle_stats(self, msg: StatsMessage) -> None:
        try:
            await self.publish_stats(msg.event_id, msg.stats, msg.highlights)
        except Exception as exc:
            INGEST_FAILURES.labels(kind="stats", reason="storage").inc()
            logger.error(
                "ws_stats_update_failed",
                event_id=msg.event_id,
                error=str(exc),
                exc_info=True,
            )

    # ── Publish (ingest, then fan out) ──────────────────────────────────
    async def publish_stream(self, payload: StreamPayload) -> LiveStream:
        """
        Persist a stream update and broadcast the canonical descriptor.

        Nothing is broadcast if persistence raises; the exception propagates.
        """
        stream = await self._ingest.upsert_stream(payload)
        await self._broadcaster.broadcast(stream.event_id, StreamInfoMessage(stream=stream))
        return stream

    async def publish_stats(
        self,
        event_id: int,
        stats: Mapping[str, StatPair],
        highlights: Sequence[Highlight] | None = None,
    ) -> LiveStats:
        """Persist a full stats overwrite and broadcast the stored snapshot."""
        snapshot = await self._ingest.upsert_stats(event_id, stats, highlights)
        await self._broadcaster.broadcast(event_id, StatsUpdateMessage(stats=snapshot))
        return snapshot

    def stats(self) -> dict[str, Any]:
        return {
            "connections": self.connection_count,
            "subscribed_connections": self._registry.connection_count,
            "watched_events": self._registry.event_count,
        }
