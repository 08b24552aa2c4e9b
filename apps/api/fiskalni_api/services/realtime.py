from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket
from redis.asyncio import Redis

from fiskalni_api.core.config import settings
from fiskalni_api.schemas.sync import ChangeEvent

logger = logging.getLogger("fiskalni.api.realtime")


class RealtimeHub:
    """In-process registry of connected sockets, grouped by user."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.setdefault(user_id, set()).add(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        bucket = self._connections.get(user_id)
        if not bucket:
            return
        bucket.discard(websocket)
        if not bucket:
            self._connections.pop(user_id, None)

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    async def broadcast(self, user_id: str, payload: dict[str, Any]) -> int:
        bucket = list(self._connections.get(user_id, set()))
        delivered = 0
        stale: list[WebSocket] = []
        for ws in bucket:
            try:
                await ws.send_json(payload)
            except Exception:
                stale.append(ws)
            else:
                delivered += 1
        for ws in stale:
            self.disconnect(user_id, ws)
        return delivered


def user_channel(user_id: str, prefix: str | None = None) -> str:
    return f"{prefix or settings.realtime_channel_prefix}:user:{user_id}"


def _message(changes: list[ChangeEvent]) -> dict[str, Any]:
    return {"type": "sync.changes", "changes": [change.model_dump(mode="json") for change in changes]}


async def publish_changes(
    user_id: str,
    changes: list[ChangeEvent],
    *,
    hub: RealtimeHub,
    redis: Redis | None = None,
) -> None:
    """Notify the user's other connected clients. At-most-once; never raises."""
    if not changes:
        return
    payload = _message(changes)
    try:
        if redis is not None:
            await redis.publish(user_channel(user_id), json.dumps(payload))
        else:
            await hub.broadcast(user_id, payload)
    except Exception:
        logger.exception("realtime.publish.failed", extra={"user_id": user_id})
        return
    logger.info("realtime.published", extra={"user_id": user_id, "result": len(changes)})


async def relay_redis_changes(redis: Redis, hub: RealtimeHub, *, prefix: str | None = None) -> None:
    """Forward messages published on any user channel to sockets held by this process."""
    channel_prefix = user_channel("", prefix)
    pubsub = redis.pubsub()
    await pubsub.psubscribe(f"{channel_prefix}*")
    logger.info("realtime.relay.started")
    try:
        async for message in pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            channel = message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode("utf-8")
            user_id = channel[len(channel_prefix):]
            try:
                payload = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("realtime.relay.bad_message", extra={"route": channel})
                continue
            await hub.broadcast(user_id, payload)
    finally:
        await pubsub.aclose()


async def run_relay(redis: Redis, hub: RealtimeHub) -> None:
    try:
        await relay_redis_changes(redis, hub)
    except asyncio.CancelledError:
        raise
    except Exception:
        # Local broadcast keeps working; only cross-process fan-out is lost.
        logger.exception("realtime.relay.failed")
