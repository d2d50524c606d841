"""
Live Update Channel

Publishes session and address change notifications onto the pub/sub
channels, and lets in-process code subscribe to one session's changes.

Events are best-effort: a publishing failure is logged and never fails the
mutation that caused it. When the channel is bound to a database session,
events are held until that session commits and dropped if it rolls back.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from notathome.core.database import after_commit
from notathome.core.pubsub import (
    ConnectionManager,
    MessageType,
    Publisher,
    WebSocketMessage,
    congregation_channel,
    session_channel,
)
from notathome.models.contracts.address import AddressPublic
from notathome.models.contracts.session import SessionPublic
from notathome.models.enums import SessionEvent
from notathome.models.orm.address import NotAtHomeAddress
from notathome.models.orm.outreach_session import OutreachSession

logger = logging.getLogger(__name__)

# Receives the updated session as a JSON-safe dict
SessionChangeCallback = Callable[[dict[str, Any]], Awaitable[None] | None]

SESSION_EVENTS = frozenset(
    {
        SessionEvent.SESSION_CREATED.value,
        SessionEvent.SESSION_UPDATED.value,
        SessionEvent.SESSION_DELETED.value,
    }
)


def session_payload(session: OutreachSession) -> dict[str, Any]:
    """Serialize a session for an event body."""
    return SessionPublic.model_validate(session).model_dump(mode="json")


class Subscription:
    """Handle returned by LiveUpdateChannel.subscribe."""

    def __init__(self, manager: ConnectionManager, channel: str, listener_id: str):
        self._manager = manager
        self.channel = channel
        self.listener_id = listener_id
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Stop receiving changes. Safe to call any number of times."""
        if not self._active:
            return
        self._active = False
        self._manager.remove_listener(self.channel, self.listener_id)


class LiveUpdateChannel:
    """Publishes change events and hands out per-session subscriptions."""

    def __init__(
        self,
        publish: Publisher,
        manager: ConnectionManager | None = None,
        db: AsyncSession | None = None,
    ):
        """
        Args:
            publish: Coroutine used to send a message to a channel
                (ConnectionManager.broadcast in the API, publish_to_redis in the worker)
            manager: Connection manager delivering messages in this process;
                required only for subscribe()
            db: Transaction to defer events to; None publishes immediately
        """
        self._publish = publish
        self._manager = manager
        self._db = db

    async def _deliver(self, channel: str, message: WebSocketMessage) -> None:
        try:
            await self._publish(channel, message)
        except Exception as e:
            event = message.data.get("event")
            logger.warning(
                f"Failed to publish {event} on {channel}: {e}",
                extra={"channel": channel, "event": event},
            )

    async def _send(self, channel: str, event: SessionEvent, data: dict[str, Any]) -> None:
        message = WebSocketMessage(
            type=MessageType.EVENT,
            channel=channel,
            data={"event": event.value, **data},
        )
        if self._db is not None:
            after_commit(self._db, partial(self._deliver, channel, message))
            return
        await self._deliver(channel, message)

    async def publish_session_change(self, session: OutreachSession, event: SessionEvent) -> None:
        """
        Notify viewers of a session and of its congregation's session list.

        Args:
            session: Session in its new state
            event: SESSION_CREATED, SESSION_UPDATED or SESSION_DELETED
        """
        data = {"session": session_payload(session)}
        await self._send(session_channel(session.id), event, data)
        await self._send(congregation_channel(session.congregation_id), event, data)

    async def publish_address_recorded(self, address: NotAtHomeAddress) -> None:
        """Notify viewers of a session that an address was recorded."""
        data = {"address": AddressPublic.model_validate(address).model_dump(mode="json")}
        await self._send(session_channel(address.session_id), SessionEvent.ADDRESS_RECORDED, data)

    def subscribe(self, session_id: UUID, on_change: SessionChangeCallback) -> Subscription:
        """
        Call ``on_change`` with the updated session whenever it changes.

        Delivery is at-most-once; missed changes are not replayed, so a
        subscriber that was disconnected should re-fetch the session.

        Args:
            session_id: Session to watch
            on_change: Sync or async callback taking the session dict

        Returns:
            Subscription whose unsubscribe() stops delivery
        """
        if self._manager is None:
            raise RuntimeError("LiveUpdateChannel has no connection manager to subscribe on")

        async def listener(message: WebSocketMessage) -> None:
            if message.data.get("event") not in SESSION_EVENTS:
                return
            session = message.data.get("session")
            if session is None:
                return
            result = on_change(session)
            if inspect.isawaitable(result):
                await result

        channel = session_channel(session_id)
        listener_id = self._manager.add_listener(channel, listener)
        return Subscription(self._manager, channel, listener_id)
