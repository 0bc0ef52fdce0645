"""
Realtime channel: WebSocket connections grouped into rooms.

Every connection joins ``user:<id>``; staff also join ``department:<id>``.
Delivery is best-effort. With Redis fan-out enabled, every emit is also
published so that connections held by other worker processes receive it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Optional, Set
from uuid import UUID

from fastapi import WebSocket
from redis.asyncio import Redis

from civictrack.core.config import settings

logger = logging.getLogger(__name__)


def user_room(user_id: UUID) -> str:
    return f"user:{user_id}"


def department_room(department_id: UUID) -> str:
    return f"department:{department_id}"


class RealtimeChannel:
    """Room-addressed push channel."""

    def __init__(self, redis: Optional[Redis] = None, channel: Optional[str] = None):
        self.redis = redis
        self.channel = channel or settings.REALTIME_REDIS_CHANNEL
        self.origin = uuid.uuid4().hex
        self._connections: Dict[str, WebSocket] = {}
        self._rooms: Dict[str, Set[str]] = defaultdict(set)
        self._memberships: Dict[str, Set[str]] = defaultdict(set)

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = websocket
        return connection_id

    def join_room(self, connection_id: str, room_key: str) -> None:
        if connection_id not in self._connections:
            raise KeyError(f"unknown connection {connection_id}")
        self._rooms[room_key].add(connection_id)
        self._memberships[connection_id].add(room_key)

    def disconnect(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        for room_key in self._memberships.pop(connection_id, set()):
            members = self._rooms.get(room_key)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._rooms[room_key]

    def room_size(self, room_key: str) -> int:
        return len(self._rooms.get(room_key, ()))

    async def emit_to_room(self, room_key: str, event_name: str, payload: Dict[str, Any]) -> int:
        """Push to local members and, if configured, to other workers."""
        delivered = await self._deliver_local(room_key, event_name, payload)
        if self.redis is not None:
            message = json.dumps(
                {"origin": self.origin, "room": room_key, "event": event_name, "payload": payload},
                default=str,
            )
            await self.redis.publish(self.channel, message)
        return delivered

    async def _deliver_local(self, room_key: str, event_name: str, payload: Dict[str, Any]) -> int:
        delivered = 0
        for connection_id in list(self._rooms.get(room_key, ())):
            websocket = self._connections.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_json({"event": event_name, "data": payload})
                delivered += 1
            except Exception as exc:
                logger.info("Dropping realtime connection %s: %s", connection_id, exc)
                self.disconnect(connection_id)
        return delivered

    async def listen(self) -> None:
        """Relay messages published by other workers to local connections."""
        if self.redis is None:
            return
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                    origin = envelope.get("origin")
                    room_key = envelope["room"]
                    event_name = envelope["event"]
                    payload = envelope["payload"]
                except (TypeError, ValueError, KeyError, AttributeError):
                    logger.warning("Ignoring malformed realtime message")
                    continue
                if origin == self.origin:
                    continue
                try:
                    await self._deliver_local(room_key, event_name, payload)
                except Exception:
                    logger.exception("Realtime relay to %s failed", room_key)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def listen_forever(self, retry_seconds: Optional[float] = None) -> None:
        """Run :meth:`listen`, resubscribing after Redis failures until cancelled."""
        delay = settings.REALTIME_RECONNECT_SECONDS if retry_seconds is None else retry_seconds
        while True:
            try:
                await self.listen()
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime listener failed; resubscribing in %.1fs", delay)
            await asyncio.sleep(delay)


_channel: Optional[RealtimeChannel] = None


def configure_realtime(redis: Optional[Redis] = None) -> RealtimeChannel:
    global _channel
    _channel = RealtimeChannel(redis=redis)
    return _channel


def get_realtime_channel() -> RealtimeChannel:
    """Dependency returning the process-wide realtime channel."""
    global _channel
    if _channel is None:
        _channel = RealtimeChannel()
    return _channel
