"""
FastAPI application factory for the matchsync read API.

Creates the app with:
- REST routes (matches, leagues)
- WebSocket push channel
- Middleware stack
- Health check endpoints
- Lifespan management (startup/shutdown)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional, Union

from fastapi import FastAPI, WebSocket
from sqlalchemy import text

from shared.config import get_settings
from shared.store.sql import SQLMatchStore
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.dependencies import get_db, get_redis, init_dependencies
from api.middleware import setup_middleware
from api.routes.leagues import router as leagues_router
from api.routes.matches import router as matches_router
from api.ws.manager import WebSocketManager
from ingest.feeds.betsapi import BetsAPIFeed

logger = get_logger(__name__)

_ws_manager: Optional[WebSocketManager] = None

_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn, name: str) -> None:
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


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without DB/Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Connects Redis, Postgres and the feed client, starts the push channel,
    and tears everything down on shutdown.
    """
    global _ws_manager

    settings = get_settings()
    setup_logging("api")
    start_metrics_server(settings.metrics_port)

    redis = RedisManager(settings)
    db = DatabaseManager(settings)
    await _connect_with_retry(redis.connect, "Redis")
    await _connect_with_retry(db.connect, "Database")
    await db.create_schema()

    feed = BetsAPIFeed(settings)
    await feed.start()
    if not settings.feed_token:
        logger.warning("feed_token_missing", detail="enrichment and odds lookups will fail upstream")

    store = SQLMatchStore(db)
    init_dependencies(redis, db, store, feed)

    _ws_manager = WebSocketManager(store, redis, settings)
    await _ws_manager.start()

    logger.info("api_service_started", host=settings.api_host, port=settings.api_port)

    yield

    await _ws_manager.stop()
    await feed.close()
    await redis.disconnect()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without DB/Redis."""
    app = FastAPI(
        title="matchsync API",
        description="Reconciled football fixtures, scores and odds",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)

    app.include_router(matches_router)
    app.include_router(leagues_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> Dict[str, Union[str, bool]]:
        """Readiness probe: checks Redis and Postgres."""
        redis_ok = False
        db_ok = False

        try:
            await get_redis().client.ping()
            redis_ok = True
        except Exception as exc:
            logger.warning("readiness_redis_failed", error=str(exc))

        try:
            async with get_db().read_session() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except Exception as exc:
            logger.warning("readiness_database_failed", error=str(exc))

        return {
            "status": "ok" if (redis_ok and db_ok) else "degraded",
            "redis": redis_ok,
            "database": db_ok,
        }

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        """
        Push channel.

        Server messages:
        - snapshot: full deduplicated match list, on connect and after every pass
        - pong: response to {"op": "ping"}
        - error: invalid client message
        """
        if _ws_manager is None:
            await ws.close(code=1013, reason="Service not ready")
            return
        await _ws_manager.handle_connection(ws)

    return app


# For running with uvicorn directly
app = create_app()
