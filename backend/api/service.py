"""
API service entrypoint.
Runs the FastAPI application via uvicorn with production settings.
PORT overrides the configured port when the platform assigns one.
"""
from __future__ import annotations

import os

import uvicorn

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    """Start the API service."""
    settings = get_settings()
    setup_logging("api", settings=settings)
    port = int(os.environ.get("PORT", settings.api_port))

    workers = settings.api_workers
    if workers > 1:
        # Subscriptions live in process memory; a broadcast only reaches its own worker
        logger.warning("api_workers_forced_single", requested=workers)
        workers = 1

    uvicorn.run(
        "api.app:app",
        host=settings.api_host,
        port=port,
        workers=workers,
        log_level=settings.log_level.lower(),
        access_log=False,  # We handle logging via middleware
        ws_ping_interval=30.0,
        ws_ping_timeout=10.0,
        timeout_keep_alive=30,
        limit_concurrency=1000,
    )


if __name__ == "__main__":
    main()
