"""Fan-out of one payload to every session subscribed to an event."""
from __future__ import annotations

import asyncio
from typing import Any

from pydantic import BaseModel

from api.ws.registry import SubscriptionRegistry
from api.ws.session import encode_message
from shared.utils.logging import get_logger
from shared.utils.metrics import BROADCAST_DELIVERIES, BROADCASTS

logger = get_logger(__name__)


class Broadcaster:
    """
    Best-effort, at-most-once delivery per subscriber per call.

    Sessions that are not open are skipped; a failed write to one session
    never affects the others and is not retried.
    """

    def __init__(self, registry: SubscriptionRegistry) -> None:
        self._registry = registry

    async def broadcast(self, event_id: int, message: BaseModel | dict[str, Any]) -> int:
        """Send ``message`` to all open subscribers of ``event_id``. Returns deliveries."""
        msg_type = _message_type(message)
        BROADCASTS.labels(msg_type=msg_type).inc()

        recipients = [s for s in self._registry.subscribers_of(event_id) if s.is_open]
        if not recipients:
            logger.debug("broadcast_no_subscribers", event_id=event_id, msg_type=msg_type)
            return 0

        raw = encode_message(message)
        results = await asyncio.gather(
            *(session.send_text(raw) for session in recipients),
            return_exceptions=True,
        )
        delivered = sum(1 for r in results if r is True)
        BROADCAST_DELIVERIES.labels(msg_type=msg_type).inc(delivered)

        logger.debug(
            "broadcast_sent",
            event_id=event_id,
            msg_type=msg_type,
            recipients=len(recipients),
            delivered=delivered,
        )
        return delivered


def _message_type(message: BaseModel | dict[str, Any]) -> str:
    if isinstance(message, BaseModel):
        return str(getattr(message, "type", "unknown"))
    return str(message.get("type", "unknown"))
