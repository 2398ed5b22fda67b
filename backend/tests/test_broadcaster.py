"""Fan-out to an event's subscribers."""
from __future__ import annotations

import pytest

from api.ws.broadcaster import Broadcaster
from api.ws.registry import SubscriptionRegistry
from conftest import frames_of, make_session
from shared.models.domain import LiveStats, StatPair, StatsUpdateMessage


def _stats_message(event_id: int = 42) -> StatsUpdateMessage:
    return StatsUpdateMessage(
        stats=LiveStats(event_id=event_id, stats={"possession": StatPair(home=60, away=40)})
    )


@pytest.mark.asyncio
async def test_delivers_to_every_subscriber(registry: SubscriptionRegistry) -> None:
    a, b = make_session(), make_session()
    registry.register(a, 42)
    registry.register(b, 42)

    delivered = await Broadcaster(registry).broadcast(42, _stats_message())

    assert delivered == 2
    # Serialized once, identical text for everyone
    assert a.ws.sent == b.ws.sent
    assert frames_of(a)[0]["stats"]["stats"]["possession"] == {"home": 60, "away": 40}


@pytest.mark.asyncio
async def test_only_the_events_subscribers(registry: SubscriptionRegistry) -> None:
    watching, elsewhere, idle = make_session(), make_session(), make_session()
    registry.register(watching, 42)
    registry.register(elsewhere, 7)

    delivered = await Broadcaster(registry).broadcast(42, _stats_message())

    assert delivered == 1
    assert len(watching.ws.sent) == 1
    assert elsewhere.ws.sent == []
    assert idle.ws.sent == []


@pytest.mark.asyncio
async def test_no_subscribers(registry: SubscriptionRegistry) -> None:
    assert await Broadcaster(registry).broadcast(42, _stats_message()) == 0


@pytest.mark.asyncio
async def test_failed_write_does_not_affect_others(registry: SubscriptionRegistry) -> None:
    healthy, broken = make_session(), make_session(fail_sends=True)
    registry.register(healthy, 42)
    registry.register(broken, 42)

    delivered = await Broadcaster(registry).broadcast(42, _stats_message())

    assert delivered == 1
    assert len(healthy.ws.sent) == 1
    # Still subscribed: cleanup happens on disconnect, not on a failed write
    assert broken in registry


@pytest.mark.asyncio
async def test_closed_sessions_are_skipped(registry: SubscriptionRegistry) -> None:
    open_session, closed_session = make_session(), make_session()
    registry.register(open_session, 42)
    registry.register(closed_session, 42)
    await closed_session.close()

    delivered = await Broadcaster(registry).broadcast(42, {"type": "stats", "stats": {}})

    assert delivered == 1
    assert closed_session.ws.sent == []
