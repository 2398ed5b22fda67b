"""One client WebSocket: its subscription back-reference and outbound writes."""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from shared.utils.logging import get_logger
from shared.utils.metrics import WS_MESSAGES

logger = get_logger(__name__)


def encode_message(message: BaseModel | dict[str, Any]) -> str:
    """Serialize an outbound message to JSON text with camelCase keys."""
    if isinstance(message, BaseModel):
        return message.model_dump_json(by_alias=True)
    return json.dumps(message, default=str)


@dataclass(eq=False)
class ConnectionSession:
    """
    Represents a single WebSocket client connection.

    ``event_id`` is only a back-reference for bookkeeping; the subscription
    registry owns the event -> sessions mapping.
    """

    ws: WebSocket
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    event_id: Optional[int] = None
    created_at: float = field(default_factory=time.monotonic)
    last_frame_at: float = field(default_factory=time.monotonic)
    remote_addr: str = ""
    closed: bool = False
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def alive_seconds(self) -> float:
        return time.monotonic() - self.created_at

    @property
    def is_open(self) -> bool:
        return (
            not self.closed
            and self.ws.client_state == WebSocketState.CONNECTED
            and self.ws.application_state == WebSocketState.CONNECTED
        )

    async def send(self, message: BaseModel | dict[str, Any]) -> bool:
        """Serialize and send one message. See send_text."""
        return await self.send_text(encode_message(message))

    async def send_text(self, raw: str) -> bool:
        """
        Write one text frame.

        Returns False without raising when the socket is not open or the
        write fails; a slow or closing peer must not break the caller.
        """
        if not self.is_open:
            return False
        async with self._send_lock:
            # Re-check: the peer may have gone while we waited for the lock
            if not self.is_open:
                return False
            try:
                await self.ws.send_text(raw)
            except Exception as exc:
                logger.debug(
                    "ws_send_error",
                    connection_id=self.connection_id,
                    error=str(exc),
                )
                return False
        WS_MESSAGES.labels(direction="out").inc()
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the socket if still open. Never raises."""
        was_open = self.is_open
        self.closed = True
        if not was_open:
            return
        try:
            await self.ws.close(code=code, reason=reason)
        except Exception as exc:
            logger.debug("ws_close_error", connection_id=self.connection_id, error=str(exc))
