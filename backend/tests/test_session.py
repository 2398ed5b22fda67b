"""Per-connection writes: open checks, failure isolation, ordering."""
from __future__ import annotations

import asyncio
import json

import pytest
from starlette.websockets import WebSocketState

from api.ws.session import ConnectionSession, encode_message
from conftest import FakeWebSocket, make_session
from shared.models.domain import LiveStream, StreamInfoMessage


class SlowWebSocket(FakeWebSocket):
    """Yields to the loop inside every write so concurrent sends could interleave."""

    async def send_text(self, data: str) -> None:
        await asyncio.sleep(0)
        await super().send_text(data)


def test_encode_model_uses_wire_names() -> None:
    stream = LiveStream(id=1, event_id=42, stream_url="https://x/a.m3u8")
    payload = json.loads(encode_message(StreamInfoMessage(stream=stream)))
    assert payload["stream"]["streamUrl"] == "https://x/a.m3u8"


def test_encode_dict() -> None:
    assert json.loads(encode_message({"type": "stats", "n": 1})) == {"type": "stats", "n": 1}


@pytest.mark.asyncio
async def test_send_when_open() -> None:
    session = make_session()
    assert await session.send({"type": "stats"}) is True
    assert session.ws.sent == ['{"type": "stats"}']


@pytest.mark.asyncio
async def test_send_after_close_is_skipped() -> None:
    session = make_session()
    await session.close()

    assert not session.is_open
    assert await session.send_text("x") is False
    assert session.ws.sent == []
    assert session.ws.close_code == 1000


@pytest.mark.asyncio
async def test_send_when_peer_gone() -> None:
    session = make_session()
    session.ws.client_state = WebSocketState.DISCONNECTED
    assert await session.send_text("x") is False


@pytest.mark.asyncio
async def test_send_failure_does_not_raise() -> None:
    session = make_session(fail_sends=True)
    assert await session.send_text("x") is False


@pytest.mark.asyncio
async def test_concurrent_sends_keep_issue_order() -> None:
    session = ConnectionSession(ws=SlowWebSocket())
    results = await asyncio.gather(*(session.send_text(str(i)) for i in range(20)))

    assert all(results)
    assert session.ws.sent == [str(i) for i in range(20)]


@pytest.mark.asyncio
async def test_close_twice() -> None:
    session = make_session()
    await session.close(code=1001, reason="server_shutdown")
    await session.close()
    assert session.ws.close_code == 1001
