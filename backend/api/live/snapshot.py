"""Replay-on-subscribe: send the latest stream and stats to one new subscriber."""
from __future__ import annotations

from api.ws.session import ConnectionSession
from shared.models.domain import StatsUpdateMessage, StreamInfoMessage
from shared.storage.base import LiveStore
from shared.utils.logging import get_logger
from shared.utils.metrics import SNAPSHOTS_SENT

logger = get_logger(__name__)


class SnapshotLoader:
    """
    Reads current state from the store and sends it to the requesting
    session only, never broadcast.

    Stream and stats are loaded and sent independently: a missing or failing
    one does not stop the other. Nothing stored is not an error, the client
    just waits for the next broadcast.
    """

    def __init__(self, store: LiveStore) -> None:
        self._store = store

    async def load_and_send(self, session: ConnectionSession, event_id: int) -> int:
        """Returns the number of snapshot frames sent (0-2)."""
        sent = 0

        try:
            stream = await self._store.get_stream_by_event(event_id)
        except Exception as exc:
            logger.warning("ws_snapshot_error", event_id=event_id, part="stream", error=str(exc))
            stream = None
        if stream is not None and self._still_wanted(session, event_id):
            message = StreamInfoMessage(stream=stream)
            if await session.send(message):
                SNAPSHOTS_SENT.labels(msg_type=message.type).inc()
                sent += 1

        try:
            stats = await self._store.get_stats_by_event(event_id)
        except Exception as exc:
            logger.warning("ws_snapshot_error", event_id=event_id, part="stats", error=str(exc))
            stats = None
        if stats is not None and self._still_wanted(session, event_id):
            message = StatsUpdateMessage(stats=stats)
            if await session.send(message):
                SNAPSHOTS_SENT.labels(msg_type=message.type).inc()
                sent += 1

        logger.debug("ws_snapshot_sent", event_id=event_id, frames=sent)
        return sent

    @staticmethod
    def _still_wanted(session: ConnectionSession, event_id: int) -> bool:
        # The client may have re-subscribed elsewhere while the store was read
        return session.event_id == event_id
