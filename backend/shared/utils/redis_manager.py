"""
Redis connection manager for the Redis-backed live store.
Provides the async connection pool and key namespace utilities.

Redis is used as a record store only. Fan-out stays in-process.
"""
from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings, redact_url
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
STREAM_KEY = "live:stream:{stream_id}"
EVENT_STREAMS_KEY = "live:event:{event_id}:streams"
EVENT_ACTIVE_STREAM_KEY = "live:event:{event_id}:active_stream"
EVENT_STATS_KEY = "live:event:{event_id}:stats"
STREAM_SEQ_KEY = "live:seq:stream"
STATS_SEQ_KEY = "live:seq:stats"


def key(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages the async Redis connection pool."""

    def __init__(self, settings: Settings | None = None, *, url: str | None = None) -> None:
        self._settings = settings or get_settings()
        self._url = url or self._settings.redis_url_str
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool and verify it answers."""
        self._pool = aioredis.from_url(
            self._url,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=redact_url(self._url))

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception:
            return False

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool
