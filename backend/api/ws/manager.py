"""
WebSocket push channel.

Every client receives the full deduplicated match list on connect and again
after each reconciliation pass. Pass completion is signalled by the
reconciler on a Redis channel, so any number of API instances can fan out.
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from shared.config import Settings, get_settings
from shared.models.enums import WSServerMsgType
from shared.store.base import MatchStore
from shared.utils.logging import get_logger
from shared.utils.metrics import WS_CONNECTIONS, WS_MESSAGES
from shared.utils.redis_manager import RedisManager

from reconciler.dedupe import dedupe

logger = get_logger(__name__)

RECEIVE_TIMEOUT_S = 60.0


@dataclass
class WSConnection:
    """Represents a single WebSocket client connection."""

    ws: WebSocket
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.monotonic)
    remote_addr: str = ""

    @property
    def alive_seconds(self) -> float:
        return time.monotonic() - self.created_at


class WebSocketManager:
    """Tracks the connections of this API instance and pushes snapshots to them."""

    def __init__(self, store: MatchStore, redis: RedisManager, settings: Settings | None = None) -> None:
        self._store = store
        self._redis = redis
        self._settings = settings or get_settings()
        self._connections: dict[str, WSConnection] = {}
        self._pubsub_task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        self._pubsub_task = asyncio.create_task(self._run_pubsub_bridge())
        logger.info("ws_manager_started")

    async def stop(self) -> None:
        self._shutdown.set()
        if self._pubsub_task:
            self._pubsub_task.cancel()
        for conn in list(self._connections.values()):
            await self._close_connection(conn, code=1001, reason="server_shutdown")
        logger.info("ws_manager_stopped")

    async def snapshot_message(self) -> dict[str, Any]:
        records = dedupe(await self._store.list_all(), self._settings.fuzzy_window_s)
        return {
            "type": WSServerMsgType.SNAPSHOT.value,
            "data": [r.model_dump(mode="json") for r in records],
            "timestamp": time.time(),
        }

    async def handle_connection(self, ws: WebSocket) -> None:
        """
        Accept a client, send it the current snapshot, then answer pings until
        it disconnects.
        """
        await ws.accept()
        conn = WSConnection(
            ws=ws,
            remote_addr=f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown",
        )
        self._connections[conn.connection_id] = conn
        WS_CONNECTIONS.inc()
        logger.info("ws_connected", connection_id=conn.connection_id, remote_addr=conn.remote_addr)

        try:
            await self._send(conn, await self.snapshot_message())
            while not self._shutdown.is_set():
                try:
                    raw = await asyncio.wait_for(ws.receive_text(), timeout=RECEIVE_TIMEOUT_S)
                except asyncio.TimeoutError:
                    continue
                WS_MESSAGES.labels(direction="in").inc()
                await self._handle_message(conn, raw)
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            logger.warning("ws_connection_error", connection_id=conn.connection_id, error=str(exc))
        finally:
            self._cleanup_connection(conn)

    async def _handle_message(self, conn: WSConnection, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            await self._send_error(conn, "invalid_json", "Message must be valid JSON")
            return

        op = msg.get("op") if isinstance(msg, dict) else None
        if op == "ping":
            await self._send(conn, {"type": WSServerMsgType.PONG.value, "timestamp": time.time()})
        elif op == "snapshot":
            await self._send(conn, await self.snapshot_message())
        else:
            await self._send_error(conn, "unknown_op", f"Unknown operation: {op}")

    async def broadcast_snapshot(self) -> int:
        """Build one snapshot and send it to every connection."""
        if not self._connections:
            return 0
        message = await self.snapshot_message()
        tasks = [self._send(conn, message) for conn in list(self._connections.values())]
        await asyncio.gather(*tasks, return_exceptions=True)
        WS_MESSAGES.labels(direction="out").inc(len(tasks))
        return len(tasks)

    async def _run_pubsub_bridge(self) -> None:
        pubsub = await self._redis.subscribe_snapshots()
        logger.info("ws_pubsub_bridge_started")
        try:
            while not self._shutdown.is_set():
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
                if message and message["type"] == "message":
                    try:
                        sent = await self.broadcast_snapshot()
                    except Exception as exc:
                        logger.error("ws_broadcast_failed", error=str(exc), exc_info=True)
                        continue
                    logger.debug("ws_snapshot_broadcast", connections=sent, notice=message["data"])
                else:
                    await asyncio.sleep(0.05)
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()

    async def _send(self, conn: WSConnection, message: dict[str, Any]) -> None:
        try:
            if conn.ws.client_state == WebSocketState.CONNECTED:
                await conn.ws.send_text(json.dumps(message, default=str))
        except Exception as exc:
            logger.debug("ws_send_error", connection_id=conn.connection_id, error=str(exc))

    async def _send_error(self, conn: WSConnection, code: str, message: str) -> None:
        await self._send(conn, {
            "type": WSServerMsgType.ERROR.value,
            "error": {"code": code, "message": message},
        })

    async def _close_connection(self, conn: WSConnection, code: int = 1000, reason: str = "") -> None:
        try:
            if conn.ws.client_state == WebSocketState.CONNECTED:
                await conn.ws.close(code=code, reason=reason)
        except RuntimeError as exc:
            logger.debug("ws_close_error", connection_id=conn.connection_id, error=str(exc))
        self._cleanup_connection(conn)

    def _cleanup_connection(self, conn: WSConnection) -> None:
        """Release the handle; a disconnect never touches match data."""
        if self._connections.pop(conn.connection_id, None) is None:
            return
        WS_CONNECTIONS.dec()
        logger.info(
            "ws_disconnected",
            connection_id=conn.connection_id,
            alive_seconds=round(conn.alive_seconds, 1),
        )
