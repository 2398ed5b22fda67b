"""
Subscription registry: which sessions watch which event.

Owned by the hosting app and injected into the manager and broadcaster.
State lives for the process lifetime only; clients re-subscribe after a restart.
All access happens on the event loop thread and no method awaits, so each
call is atomic with respect to other connections.
"""
from __future__ import annotations

from typing import Optional

from api.ws.session import ConnectionSession
from shared.utils.metrics import WS_SUBSCRIPTIONS


class SubscriptionRegistry:
    """Maps event id -> set of sessions; a session is in at most one set."""

    def __init__(self) -> None:
        self._subscribers: dict[int, set[ConnectionSession]] = {}
        # session -> event id it is currently bound to
        self._bindings: dict[ConnectionSession, int] = {}

    def register(self, session: ConnectionSession, event_id: int) -> None:
        """
        Bind ``session`` to ``event_id``, dropping any previous binding.

        Re-registering the same pair is a no-op.
        """
        previous = self._bindings.get(session)
        if previous == event_id:
            return
        if previous is not None:
            self._discard(session, previous)
        self._subscribers.setdefault(event_id, set()).add(session)
        self._bindings[session] = event_id
        WS_SUBSCRIPTIONS.set(len(self._bindings))

    def deregister(self, session: ConnectionSession) -> Optional[int]:
        """Remove ``session`` from whatever event it watches. Returns that event id."""
        previous = self._bindings.pop(session, None)
        if previous is not None:
            self._discard(session, previous)
            WS_SUBSCRIPTIONS.set(len(self._bindings))
        return previous

    def subscribers_of(self, event_id: int) -> frozenset[ConnectionSession]:
        """Snapshot of the sessions watching ``event_id``; safe to iterate across awaits."""
        return frozenset(self._subscribers.get(event_id, ()))

    def event_of(self, session: ConnectionSession) -> Optional[int]:
        return self._bindings.get(session)

    def _discard(self, session: ConnectionSession, event_id: int) -> None:
        members = self._subscribers.get(event_id)
        if members is None:
            return
        members.discard(session)
        if not members:
            del self._subscribers[event_id]

    @property
    def connection_count(self) -> int:
        return len(self._bindings)

    @property
    def event_count(self) -> int:
        return len(self._subscribers)

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, session: object) -> bool:
        return session in self._bindings
