"""
Dependency injection for the API service.
Provides the store, the feed, Redis, the database and the read service to
route handlers.
"""
from __future__ import annotations

from typing import Optional

from shared.store.base import MatchStore
from shared.utils.database import DatabaseManager
from shared.utils.redis_manager import RedisManager

from api.read_service import MatchReadService
from ingest.feeds.base import FeedProvider

# Module-level singletons, initialized at startup
_redis: Optional[RedisManager] = None
_db: Optional[DatabaseManager] = None
_store: Optional[MatchStore] = None
_feed: Optional[FeedProvider] = None
_read_service: Optional[MatchReadService] = None


def init_dependencies(
    redis: RedisManager,
    db: Optional[DatabaseManager],
    store: MatchStore,
    feed: FeedProvider,
) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _redis, _db, _store, _feed, _read_service
    _redis = redis
    _db = db
    _store = store
    _feed = feed
    _read_service = MatchReadService(store, feed, redis)


def get_redis() -> RedisManager:
    """FastAPI dependency: returns the shared RedisManager."""
    if _redis is None:
        raise RuntimeError("RedisManager not initialized; call init_dependencies first")
    return _redis


def get_db() -> DatabaseManager:
    """FastAPI dependency: returns the shared DatabaseManager."""
    if _db is None:
        raise RuntimeError("DatabaseManager not initialized; call init_dependencies first")
    return _db


def get_store() -> MatchStore:
    """FastAPI dependency: returns the shared MatchStore."""
    if _store is None:
        raise RuntimeError("MatchStore not initialized; call init_dependencies first")
    return _store


def get_feed() -> FeedProvider:
    if _feed is None:
        raise RuntimeError("FeedProvider not initialized; call init_dependencies first")
    return _feed


def get_read_service() -> MatchReadService:
    if _read_service is None:
        raise RuntimeError("MatchReadService not initialized; call init_dependencies first")
    return _read_service
