"""
Reconciler service for matchsync.
Runs the live and full passes against the store until SIGINT/SIGTERM.
"""
from __future__ import annotations

import asyncio
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from shared.config import Settings, get_settings
from shared.errors import ConfigurationError
from shared.store.sql import SQLMatchStore
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from ingest.feeds.betsapi import BetsAPIFeed
from reconciler.engine import ReconciliationEngine

logger = get_logger(__name__)


@dataclass
class Runtime:
    db: DatabaseManager
    redis: RedisManager
    store: SQLMatchStore
    feed: BetsAPIFeed


@asynccontextmanager
async def reconciler_runtime(settings: Settings, require_feed: bool = True) -> AsyncIterator[Runtime]:
    """
    Connect the store, Redis and the feed client; release them on exit.

    Raises:
        ConfigurationError: missing feed token or unreachable store/Redis.
    """
    if require_feed and not settings.feed_token:
        raise ConfigurationError("MS_FEED_TOKEN is not set")

    db = DatabaseManager(settings)
    redis = RedisManager(settings)
    try:
        await db.connect()
        await db.create_schema()
    except Exception as exc:
        raise ConfigurationError(f"store unreachable: {settings.database_url_safe_log}") from exc
    try:
        await redis.connect()
    except Exception as exc:
        await db.disconnect()
        raise ConfigurationError(f"redis unreachable: {settings.redis_url_str}") from exc

    feed = BetsAPIFeed(settings)
    await feed.start()
    try:
        yield Runtime(db=db, redis=redis, store=SQLMatchStore(db), feed=feed)
    finally:
        await feed.close()
        await redis.disconnect()
        await db.disconnect()


async def main() -> None:
    """Reconciler service entrypoint."""
    settings = get_settings()
    setup_logging("reconciler")
    start_metrics_server(settings.reconciler_metrics_port)

    async with reconciler_runtime(settings) as rt:
        engine = ReconciliationEngine(rt.feed, rt.store, redis=rt.redis, settings=settings)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, engine.request_shutdown)

        logger.info(
            "reconciler_service_started",
            live_interval_s=settings.live_pass_interval_s,
            full_interval_s=settings.full_pass_interval_s,
        )
        await engine.run()

    logger.info("reconciler_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
