"""
WebSocket Router

Server-push endpoint for live session updates. Clients subscribe to
``session:{id}`` to follow one session and to ``congregation:{id}`` to keep
a joinable-session list current.

Incoming frames:
    {"action": "subscribe" | "unsubscribe" | "pong", "channel": "session:<uuid>"}

Outgoing frames:
    {
        "type": "event" | "subscribed" | "unsubscribed" | "error" | "ping",
        "channel": "session:<uuid>" | "system",
        "data": {"event": "session_updated", "session": {...}},
        "timestamp": "ISO8601 timestamp"
    }

Delivery is best-effort with no replay; after reconnecting, clients
re-fetch the session.
"""

import asyncio
import json
import logging
import re
from uuid import UUID, uuid4

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from notathome.core.auth import UserPrincipal, principal_from_token
from notathome.core.database import get_db_context
from notathome.core.pubsub import (
    ConnectionManager,
    MessageType,
    WebSocketMessage,
    get_connection_manager,
)
from notathome.repositories.outreach_session import OutreachSessionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])

PING_INTERVAL = 15

# Close code for a missing or invalid token
UNAUTHORIZED_CLOSE_CODE = 4001

CHANNEL_RE = re.compile(
    r"^(?P<kind>session|congregation):"
    r"(?P<id>[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$"
)


def parse_channel(channel: str) -> tuple[str, UUID] | None:
    """Split ``kind:uuid``; None for anything that is not a known channel."""
    match = CHANNEL_RE.match(channel)
    if match is None:
        return None
    return match["kind"], UUID(match["id"])


def validate_channel(channel: str) -> bool:
    return parse_channel(channel) is not None


async def authenticate_websocket(websocket: WebSocket) -> UserPrincipal | None:
    """Read the access token from the ``access_token`` cookie, else ``?token=``."""
    token = websocket.cookies.get("access_token") or websocket.query_params.get("token")
    if not token:
        return None
    return principal_from_token(token)


async def session_congregation_id(session_id: UUID) -> UUID | None:
    """Which congregation a session belongs to, if it exists."""
    async with get_db_context() as db:
        session = await OutreachSessionRepository(db).get_by_id(session_id)
    return session.congregation_id if session is not None else None


async def can_subscribe_to_channel(user: UserPrincipal, channel: str) -> bool:
    """
    Channel access rules:

    - congregation:{id}: members of that congregation
    - session:{id}: members of the session's congregation
    - system admins: any well-formed channel
    """
    parsed = parse_channel(channel)
    if parsed is None:
        return False
    if user.is_system_admin:
        return True

    kind, target_id = parsed
    if kind == "congregation":
        return user.is_member_of(target_id)

    congregation_id = await session_congregation_id(target_id)
    return congregation_id is not None and user.is_member_of(congregation_id)


def system_message(message_type: MessageType, **data: object) -> str:
    return WebSocketMessage(type=message_type, channel="system", data=dict(data)).to_json()


async def ping_loop(websocket: WebSocket, connection_id: str) -> None:
    """Send a keepalive ping every PING_INTERVAL seconds until the socket closes."""
    ping = WebSocketMessage(type=MessageType.PING, channel="system", data={})
    while websocket.client_state == WebSocketState.CONNECTED:
        await asyncio.sleep(PING_INTERVAL)
        try:
            await websocket.send_text(ping.to_json())
        except Exception as e:
            logger.debug(f"Ping failed for {connection_id}: {e}")
            return


async def handle_frame(
    websocket: WebSocket,
    connection_id: str,
    manager: ConnectionManager,
    user: UserPrincipal,
    frame: dict,
) -> None:
    """Apply one client frame and send the reply, if the action has one."""
    action = frame.get("action")
    channel = frame.get("channel")

    if action == "pong":
        return

    if action == "subscribe":
        if isinstance(channel, str) and await can_subscribe_to_channel(user, channel):
            await manager.subscribe(connection_id, channel)
            await websocket.send_text(system_message(MessageType.SUBSCRIBED, subscribed=channel))
        else:
            logger.warning(f"User {user.user_id} denied access to channel {channel}")
            await websocket.send_text(
                system_message(MessageType.ERROR, error=f"Cannot subscribe to channel: {channel}")
            )
        return

    if action == "unsubscribe" and isinstance(channel, str):
        await manager.unsubscribe(connection_id, channel)
        await websocket.send_text(system_message(MessageType.UNSUBSCRIBED, unsubscribed=channel))
        return

    await websocket.send_text(system_message(MessageType.ERROR, error=f"Unknown action: {action}"))


async def receive_loop(
    websocket: WebSocket,
    connection_id: str,
    manager: ConnectionManager,
    user: UserPrincipal,
) -> None:
    """Read client frames until the socket disconnects."""
    while True:
        raw = await websocket.receive_text()
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = None
        if not isinstance(frame, dict):
            await websocket.send_text(system_message(MessageType.ERROR, error="Malformed frame"))
            continue

        await handle_frame(websocket, connection_id, manager, user, frame)


@router.websocket("/connect")
async def websocket_connect(
    websocket: WebSocket,
    channels: list[str] = Query(default=[]),
) -> None:
    """
    Authenticate, subscribe to the permitted ``channels`` and stream events.

    Channels the user may not see are dropped; the rest of the connection
    proceeds.
    """
    user = await authenticate_websocket(websocket)
    if user is None:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="Unauthorized")
        return

    permitted = []
    for channel in channels:
        if await can_subscribe_to_channel(user, channel):
            permitted.append(channel)
        else:
            logger.warning(f"User {user.user_id} denied access to channel {channel}")

    manager = get_connection_manager()
    connection_id = str(uuid4())
    await manager.connect(websocket, connection_id, user.user_id, permitted)
    ping_task = asyncio.create_task(ping_loop(websocket, connection_id))

    try:
        await receive_loop(websocket, connection_id, manager, user)
    except WebSocketDisconnect:
        logger.info(f"WebSocket {connection_id} disconnected normally")
    except Exception as e:
        logger.error(f"WebSocket error for {connection_id}: {e}")
    finally:
        ping_task.cancel()
        await manager.disconnect(connection_id)
