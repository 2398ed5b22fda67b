"""
Dependency injection for the API service.
The store and WebSocket manager are built in the app lifespan and kept on
``app.state``; these helpers hand them to route handlers.
"""
from __future__ import annotations

from starlette.requests import HTTPConnection

from api.ws.manager import WebSocketManager
from shared.storage.base import LiveStore


def get_store(conn: HTTPConnection) -> LiveStore:
    """FastAPI dependency: returns the app's LiveStore."""
    store = getattr(conn.app.state, "store", None)
    if store is None:
        raise RuntimeError("LiveStore not initialized; app lifespan has not run")
    return store


def get_ws_manager(conn: HTTPConnection) -> WebSocketManager:
    """FastAPI dependency: returns the app's WebSocketManager."""
    manager = getattr(conn.app.state, "ws_manager", None)
    if manager is None:
        raise RuntimeError("WebSocketManager not initialized; app lifespan has not run")
    return manager
