"""
Live Update Relay

Fans session change notifications out to WebSocket clients and in-process
listeners. API instances share notifications through Redis pub/sub
(``notathome:pubsub:<channel>``); without Redis each instance only reaches
its own sockets.

Delivery is at-most-once with no replay: a client that reconnects re-fetches
the session to reconcile.
"""

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from fastapi import WebSocket

from notathome.core.cache import get_redis, ping_redis

logger = logging.getLogger(__name__)

REDIS_PREFIX = "notathome:pubsub:"


class MessageType(str, Enum):
    EVENT = "event"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


@dataclass
class WebSocketMessage:
    """One frame on the wire, and the unit carried over Redis."""

    type: MessageType
    channel: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return json.dumps(
            {
                "type": self.type.value,
                "channel": self.channel,
                "data": self.data,
                "timestamp": self.timestamp.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "WebSocketMessage":
        payload = json.loads(raw)
        return cls(
            type=MessageType(payload["type"]),
            channel=payload["channel"],
            data=payload["data"],
            timestamp=datetime.fromisoformat(payload["timestamp"]),
        )


ChannelListener = Callable[[WebSocketMessage], Awaitable[None] | None]

# What services publish through: a manager's broadcast, or publish_to_redis in the worker
Publisher = Callable[[str, WebSocketMessage], Awaitable[None]]


def session_channel(session_id: UUID | str) -> str:
    """Changes to one session and the addresses recorded in it."""
    return f"session:{session_id}"


def congregation_channel(congregation_id: UUID | str) -> str:
    """Sessions created and ended in a congregation, for list views."""
    return f"congregation:{congregation_id}"


def backoff_delay(attempt: int, initial: float, maximum: float) -> float:
    """Delay before reconnect ``attempt`` (1-based): doubles from ``initial``, capped."""
    return min(initial * (2 ** max(attempt - 1, 0)), maximum)


async def _publish(channel: str, message: WebSocketMessage) -> None:
    redis = await get_redis()
    await redis.publish(f"{REDIS_PREFIX}{channel}", message.to_json())


@dataclass
class ConnectionInfo:
    websocket: WebSocket
    user_id: UUID
    channels: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class ConnectionManager:
    """
    WebSocket connections and in-process listeners for one API instance.

    ``broadcast`` goes through Redis while the relay is up, so every
    instance (this one included) delivers it from its pub/sub listener.
    While Redis is down it delivers locally.
    """

    PUBSUB_CHANNEL_PREFIX = REDIS_PREFIX

    def __init__(
        self,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        reconnect_max_attempts: int = 8,
    ) -> None:
        self._connections: dict[str, ConnectionInfo] = {}
        self._listeners: dict[str, dict[str, ChannelListener]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._pubsub_task: asyncio.Task[None] | None = None
        self._redis_enabled = False
        self._reconnect_initial_delay = reconnect_initial_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._reconnect_max_attempts = reconnect_max_attempts

    @property
    def redis_enabled(self) -> bool:
        """Whether broadcasts currently go through Redis."""
        return self._redis_enabled

    # ------------------------------------------------------------------
    # Redis relay
    # ------------------------------------------------------------------

    async def start_pubsub(self) -> None:
        """Start the Redis listener; stays local-only when Redis does not answer."""
        if self._pubsub_task is not None:
            return

        if not await ping_redis():
            logger.warning("Redis pub/sub not available, using local-only mode")
            self._redis_enabled = False
            return

        self._redis_enabled = True
        self._pubsub_task = asyncio.create_task(self._listen_pubsub())
        logger.info("Session pub/sub started")

    async def stop_pubsub(self) -> None:
        task, self._pubsub_task = self._pubsub_task, None
        self._redis_enabled = False
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session pub/sub stopped")

    async def _listen_pubsub(self) -> None:
        """
        Deliver Redis messages locally until cancelled.

        Reconnects with bounded exponential backoff and publishes locally
        while disconnected. After ``reconnect_max_attempts`` failures in a
        row it gives up and the manager stays local-only.
        """
        failures = 0
        while True:
            try:
                redis = await get_redis()
                pubsub = redis.pubsub()
                try:
                    await pubsub.psubscribe(f"{REDIS_PREFIX}*")
                    if failures:
                        logger.info(f"Redis pub/sub reconnected after {failures} attempt(s)")
                    failures = 0
                    self._redis_enabled = True

                    async for message in pubsub.listen():
                        if message["type"] == "pmessage":
                            await self._handle_pubsub_message(message)
                finally:
                    await pubsub.aclose()
                raise ConnectionError("Redis pub/sub stream closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._redis_enabled = False
                failures += 1
                if failures > self._reconnect_max_attempts:
                    logger.error(
                        f"Redis pub/sub listener giving up after {failures - 1} attempt(s), "
                        f"falling back to local-only mode: {e}"
                    )
                    return

                delay = backoff_delay(
                    failures, self._reconnect_initial_delay, self._reconnect_max_delay
                )
                logger.warning(
                    f"Redis pub/sub listener error, reconnecting in {delay:.1f}s "
                    f"(attempt {failures}/{self._reconnect_max_attempts}): {e}"
                )
                await asyncio.sleep(delay)

    async def _handle_pubsub_message(self, message: dict[str, Any]) -> None:
        channel = message["channel"]
        if isinstance(channel, bytes):
            channel = channel.decode()

        try:
            decoded = WebSocketMessage.from_json(message["data"])
        except (ValueError, KeyError) as e:
            logger.error(f"Dropping malformed pub/sub message on {channel}: {e}")
            return

        await self._broadcast_local(channel.removeprefix(REDIS_PREFIX), decoded)

    # ------------------------------------------------------------------
    # WebSocket connections
    # ------------------------------------------------------------------

    async def connect(
        self,
        websocket: WebSocket,
        connection_id: str,
        user_id: UUID,
        channels: list[str],
    ) -> None:
        """Accept the socket and subscribe it to ``channels`` (already authorised)."""
        await websocket.accept()
        async with self._lock:
            self._connections[connection_id] = ConnectionInfo(
                websocket=websocket, user_id=user_id, channels=set(channels)
            )

        logger.info(
            f"WebSocket connected: {connection_id} (user: {user_id}, channels: {channels})"
        )

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection. Safe to call more than once."""
        async with self._lock:
            removed = self._connections.pop(connection_id, None)
        if removed is not None:
            logger.info(f"WebSocket disconnected: {connection_id}")

    async def subscribe(self, connection_id: str, channel: str) -> None:
        async with self._lock:
            info = self._connections.get(connection_id)
            if info is not None:
                info.channels.add(channel)

    async def unsubscribe(self, connection_id: str, channel: str) -> None:
        async with self._lock:
            info = self._connections.get(connection_id)
            if info is not None:
                info.channels.discard(channel)

    # ------------------------------------------------------------------
    # In-process listeners
    # ------------------------------------------------------------------

    def add_listener(self, channel: str, callback: ChannelListener) -> str:
        """
        Call ``callback`` (sync or async) with every message on ``channel``.

        Returns:
            Listener ID for ``remove_listener``
        """
        listener_id = str(uuid4())
        self._listeners[channel][listener_id] = callback
        return listener_id

    def remove_listener(self, channel: str, listener_id: str) -> bool:
        """Remove a listener; unknown IDs return False."""
        listeners = self._listeners.get(channel)
        if not listeners or listeners.pop(listener_id, None) is None:
            return False
        if not listeners:
            del self._listeners[channel]
        return True

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def broadcast(self, channel: str, message: WebSocketMessage) -> None:
        if self._redis_enabled:
            try:
                await _publish(channel, message)
                return
            except Exception as e:
                logger.warning(f"Redis publish failed, falling back to local: {e}")

        await self._broadcast_local(channel, message)

    async def _broadcast_local(self, channel: str, message: WebSocketMessage) -> None:
        async with self._lock:
            targets = [
                (connection_id, info.websocket)
                for connection_id, info in self._connections.items()
                if channel in info.channels
            ]
        listeners = list(self._listeners.get(channel, {}).items())

        if targets:
            frame = message.to_json()
            results = await asyncio.gather(
                *(websocket.send_text(frame) for _, websocket in targets),
                return_exceptions=True,
            )
            for (connection_id, _), result in zip(targets, results, strict=True):
                if isinstance(result, Exception):
                    logger.warning(f"Dropping connection {connection_id}, send failed: {result}")
                    await self.disconnect(connection_id)

        for listener_id, callback in listeners:
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Listener {listener_id} on {channel} failed: {e}")

    def get_connection_count(self) -> int:
        return len(self._connections)

    def get_channel_subscriber_count(self, channel: str) -> int:
        """WebSocket connections plus in-process listeners on a channel."""
        sockets = sum(1 for info in self._connections.values() if channel in info.channels)
        return sockets + len(self._listeners.get(channel, {}))


_connection_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Process-wide manager, configured from settings on first use."""
    global _connection_manager
    if _connection_manager is None:
        from notathome.config import get_settings

        settings = get_settings()
        _connection_manager = ConnectionManager(
            reconnect_initial_delay=settings.realtime_reconnect_initial_delay,
            reconnect_max_delay=settings.realtime_reconnect_max_delay,
            reconnect_max_attempts=settings.realtime_reconnect_max_attempts,
        )
    return _connection_manager


async def publish_to_redis(channel: str, message: WebSocketMessage) -> None:
    """
    Publish straight to Redis, for processes without sockets (the worker).

    Failures are logged, never raised.
    """
    try:
        await _publish(channel, message)
    except Exception as e:
        logger.error(f"Failed to publish to Redis channel {channel}: {e}")
