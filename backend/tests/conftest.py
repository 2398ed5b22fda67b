"""Shared fixtures: in-memory store, fake sockets and a wired WebSocketManager."""
from __future__ import annotations

import json
import os
from typing import Any, Iterable, Optional

# Before any settings are read: no side-port metrics server, memory backend
os.environ.setdefault("SBL_METRICS_ENABLED", "false")
os.environ.setdefault("SBL_STORAGE_BACKEND", "memory")

import pytest
from starlette.websockets import WebSocketState

from api.live.ingest import UpdateIngestHandler
from api.live.snapshot import SnapshotLoader
from api.ws.broadcaster import Broadcaster
from api.ws.manager import WebSocketManager
from api.ws.registry import SubscriptionRegistry
from api.ws.session import ConnectionSession
from shared.storage import MemoryLiveStore


class FakeWebSocket:
    """
    Enough of starlette's WebSocket for the manager and sessions.

    ``incoming`` frames are handed out by receive(); once exhausted the peer
    disconnects.
    """

    def __init__(self, incoming: Iterable[str] = (), *, fail_sends: bool = False) -> None:
        self.client = None
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.accepted = False
        self.close_code: Optional[int] = None
        self.fail_sends = fail_sends
        self._incoming = list(incoming)

    async def accept(self) -> None:
        self.accepted = True

    async def receive(self) -> dict[str, Any]:
        if not self._incoming:
            self.client_state = WebSocketState.DISCONNECTED
            return {"type": "websocket.disconnect", "code": 1000}
        return {"type": "websocket.receive", "text": self._incoming.pop(0)}

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError("peer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]


def make_session(**ws_kwargs: Any) -> ConnectionSession:
    return ConnectionSession(ws=FakeWebSocket(**ws_kwargs))


def frames_of(session: ConnectionSession) -> list[dict[str, Any]]:
    return session.ws.frames()


@pytest.fixture
def store() -> MemoryLiveStore:
    return MemoryLiveStore()


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def manager(store: MemoryLiveStore, registry: SubscriptionRegistry) -> WebSocketManager:
    return WebSocketManager(
        registry=registry,
        ingest=UpdateIngestHandler(store),
        snapshots=SnapshotLoader(store),
        broadcaster=Broadcaster(registry),
    )
