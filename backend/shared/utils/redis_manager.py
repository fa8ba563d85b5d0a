"""
Redis connection manager for matchsync.
Holds the per-match odds cache and the snapshot notice channel that links
the reconciler process to the API's push channel.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.asyncio.client import PubSub

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
ODDS_CACHE_KEY = "odds:match:{match_key}"
SNAPSHOT_CHANNEL = "matches:snapshot"
LAST_PASS_KEY = "reconciler:last_pass:{kind}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Odds cache ──────────────────────────────────────────────────────
    async def get_cached_odds(self, match_key: str) -> Optional[dict[str, Any]]:
        raw = await self.client.get(_fmt(ODDS_CACHE_KEY, match_key=match_key))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("odds_cache_corrupt", match_key=match_key)
            return None

    async def set_cached_odds(self, match_key: str, payload: dict[str, Any], ttl_s: int | None = None) -> None:
        await self.client.set(
            _fmt(ODDS_CACHE_KEY, match_key=match_key),
            json.dumps(payload),
            ex=ttl_s or self._settings.odds_cache_ttl_s,
        )

    # ── Snapshot notices ────────────────────────────────────────────────
    async def publish_snapshot_notice(self, kind: str, stats: dict[str, Any]) -> int:
        """Tell API instances that a pass finished and the store changed."""
        payload = json.dumps({"kind": kind, **stats})
        await self.client.set(_fmt(LAST_PASS_KEY, kind=kind), payload)
        return await self.client.publish(SNAPSHOT_CHANNEL, payload)

    async def get_last_pass(self, kind: str) -> Optional[dict[str, Any]]:
        raw = await self.client.get(_fmt(LAST_PASS_KEY, kind=kind))
        return json.loads(raw) if raw else None

    async def subscribe_snapshots(self) -> PubSub:
        """Create a PubSub subscription on the snapshot notice channel."""
        pubsub = self.client.pubsub()
        await pubsub.subscribe(SNAPSHOT_CHANNEL)
        return pubsub
