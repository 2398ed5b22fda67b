"""
FastAPI application factory for the live broadcast service.

Creates the app with:
- REST routes (stream descriptors, stats snapshots)
- WebSocket endpoint (subscribe / stream_update / stats)
- Middleware stack
- Health check endpoints
- Lifespan management (connect the store, build the WS manager, shut down)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable

from fastapi import FastAPI, WebSocket

from api.live.ingest import UpdateIngestHandler
from api.live.snapshot import SnapshotLoader
from api.middleware import setup_middleware
from api.routes.streams import router as streams_router
from api.ws.broadcaster import Broadcaster
from api.ws.manager import WebSocketManager
from api.ws.registry import SubscriptionRegistry
from shared.config import Settings, get_settings
from shared.storage import LiveStore, create_store
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

logger = get_logger(__name__)

_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


def build_ws_manager(store: LiveStore, settings: Settings | None = None) -> WebSocketManager:
    """Wire a fresh registry, ingest handler, snapshot loader and broadcaster around a store."""
    registry = SubscriptionRegistry()
    return WebSocketManager(
        registry=registry,
        ingest=UpdateIngestHandler(store),
        snapshots=SnapshotLoader(store),
        broadcaster=Broadcaster(registry),
        settings=settings,
    )


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without a store."""
    yield


def _make_lifespan(
    injected_store: LiveStore | None,
) -> Callable[[FastAPI], Any]:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.
        Startup connects the store and builds the WS manager; shutdown closes
        every connection before releasing the store.
        """
        settings = get_settings()
        setup_logging("api", settings=settings)
        start_metrics_server()

        store = injected_store or create_store(settings)
        await _connect_with_retry(store.connect, store.name)

        manager = build_ws_manager(store, settings)
        app.state.store = store
        app.state.ws_manager = manager
        app.state.registry = manager.registry

        logger.info(
            "api_service_started",
            host=settings.api_host,
            port=settings.api_port,
            storage=store.name,
            ws_path=settings.ws_path,
        )

        try:
            yield
        finally:
            await manager.stop()
            await store.close()
            app.state.ws_manager = None
            app.state.store = None
            logger.info("api_service_stopped")

    return lifespan


def create_app(*, store: LiveStore | None = None, use_lifespan: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Pass ``store`` to run against a pre-built store instead of the configured
    backend. Set use_lifespan=False for testing routes without a store.
    """
    settings = get_settings()

    app = FastAPI(
        title="Sportsbet Live API",
        description="Live stream descriptors and match stats for sporting events",
        version="1.0.0",
        lifespan=_make_lifespan(store) if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(streams_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> dict[str, Any]:
        """Readiness probe: checks the store and reports connection counts."""
        live_store: LiveStore | None = getattr(app.state, "store", None)
        manager: WebSocketManager | None = getattr(app.state, "ws_manager", None)

        store_ok = False
        if live_store is not None:
            try:
                store_ok = await live_store.ping()
            except Exception as exc:
                logger.warning("readiness_store_error", error=str(exc))

        return {
            "status": "ok" if store_ok else "degraded",
            "storage": live_store.name if live_store is not None else None,
            "store": store_ok,
            "websocket": manager.stats() if manager is not None else None,
        }

    # WebSocket endpoint
    @app.websocket(settings.ws_path)
    async def websocket_endpoint(ws: WebSocket) -> None:
        """
        WebSocket endpoint for live event updates.

        Client messages:
        - subscribe: {"type": "subscribe", "eventId": 42}
        - stream_update: {"type": "stream_update", "stream": {...}}
        - stats: {"type": "stats", "eventId": 42, "stats": {...}, "highlights": [...]}

        Server messages:
        - stream_info: Current stream descriptor of the subscribed event
        - stats: Current stats snapshot of the subscribed event

        Nothing is ever sent back in reply to a bad or failed message.
        """
        manager: WebSocketManager | None = getattr(app.state, "ws_manager", None)
        if manager is None:
            await ws.close(code=1013, reason="service_unavailable")
            return
        await manager.handle_connection(ws)

    return app


# For running with uvicorn directly
app = create_app()
