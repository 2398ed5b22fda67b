"""Subscription registry bookkeeping."""
from __future__ import annotations

from api.ws.registry import SubscriptionRegistry
from conftest import make_session


def test_register_and_lookup(registry: SubscriptionRegistry) -> None:
    a, b = make_session(), make_session()
    registry.register(a, 42)
    registry.register(b, 42)

    assert registry.subscribers_of(42) == frozenset({a, b})
    assert registry.event_of(a) == 42
    assert len(registry) == 2
    assert registry.event_count == 1
    assert a in registry


def test_register_moves_session(registry: SubscriptionRegistry) -> None:
    """A connection watches at most one event."""
    s = make_session()
    registry.register(s, 42)
    registry.register(s, 7)

    assert registry.subscribers_of(42) == frozenset()
    assert registry.subscribers_of(7) == frozenset({s})
    assert registry.event_of(s) == 7
    # Empty sets are dropped
    assert registry.event_count == 1


def test_register_same_pair_is_idempotent(registry: SubscriptionRegistry) -> None:
    s = make_session()
    registry.register(s, 42)
    registry.register(s, 42)

    assert registry.subscribers_of(42) == frozenset({s})
    assert registry.connection_count == 1


def test_deregister_returns_former_event(registry: SubscriptionRegistry) -> None:
    s, other = make_session(), make_session()
    registry.register(s, 42)
    registry.register(other, 42)

    assert registry.deregister(s) == 42
    assert registry.subscribers_of(42) == frozenset({other})
    assert s not in registry


def test_deregister_unknown_session(registry: SubscriptionRegistry) -> None:
    assert registry.deregister(make_session()) is None
    assert len(registry) == 0


def test_subscribers_of_is_a_snapshot(registry: SubscriptionRegistry) -> None:
    s = make_session()
    registry.register(s, 42)
    snapshot = registry.subscribers_of(42)

    registry.deregister(s)

    assert snapshot == frozenset({s})
    assert registry.subscribers_of(42) == frozenset()


def test_unknown_event_has_no_subscribers(registry: SubscriptionRegistry) -> None:
    assert registry.subscribers_of(999) == frozenset()
    assert registry.event_count == 0
