"""Tests for the live update WebSocket endpoint and its channel rules."""

import json
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from notathome.core.auth import UserPrincipal
from notathome.core.pubsub import ConnectionManager
from notathome.core.security import create_access_token
from notathome.main import app
from notathome.models.enums import UserRole
from notathome.routers.websocket import (
    authenticate_websocket,
    can_subscribe_to_channel,
    handle_frame,
    validate_channel,
)


@pytest.mark.integration
class TestChannelRules:
    def test_valid_channels(self):
        assert validate_channel(f"session:{uuid4()}")
        assert validate_channel(f"congregation:{uuid4()}")
        assert not validate_channel("session:not-a-uuid")
        assert not validate_channel(f"user:{uuid4()}")

    async def test_member_can_follow_congregation(self):
        congregation_id = uuid4()
        user = UserPrincipal(user_id=uuid4(), congregation_id=congregation_id)

        assert await can_subscribe_to_channel(user, f"congregation:{congregation_id}")
        assert not await can_subscribe_to_channel(user, f"congregation:{uuid4()}")

    async def test_session_channel_checks_session_congregation(self):
        congregation_id = uuid4()
        user = UserPrincipal(user_id=uuid4(), congregation_id=congregation_id)

        with patch(
            "notathome.routers.websocket.session_congregation_id",
            AsyncMock(return_value=congregation_id),
        ):
            assert await can_subscribe_to_channel(user, f"session:{uuid4()}")

        with patch(
            "notathome.routers.websocket.session_congregation_id",
            AsyncMock(return_value=None),
        ):
            assert not await can_subscribe_to_channel(user, f"session:{uuid4()}")

    async def test_system_admin_follows_anything_valid(self):
        user = UserPrincipal(user_id=uuid4(), role=UserRole.SYSTEM_ADMIN)

        assert await can_subscribe_to_channel(user, f"session:{uuid4()}")
        assert not await can_subscribe_to_channel(user, "session:*")

    async def test_authenticate_from_query_token(self):
        user_id = uuid4()
        websocket = MagicMock()
        websocket.cookies = {}
        websocket.query_params = {"token": create_access_token({"sub": str(user_id)})}

        user = await authenticate_websocket(websocket)

        assert user is not None
        assert user.user_id == user_id

    async def test_authenticate_without_token(self):
        websocket = MagicMock()
        websocket.cookies = {}
        websocket.query_params = {}

        assert await authenticate_websocket(websocket) is None


@pytest.mark.integration
class TestClientFrames:
    async def _send(self, frame, user):
        websocket = MagicMock()
        websocket.send_text = AsyncMock()
        manager = ConnectionManager()
        manager.subscribe = AsyncMock()
        await handle_frame(websocket, "conn-1", manager, user, frame)
        sent = [json.loads(call.args[0]) for call in websocket.send_text.await_args_list]
        return sent, manager

    async def test_subscribe_to_own_congregation(self):
        congregation_id = uuid4()
        user = UserPrincipal(user_id=uuid4(), congregation_id=congregation_id)
        channel = f"congregation:{congregation_id}"

        sent, manager = await self._send({"action": "subscribe", "channel": channel}, user)

        manager.subscribe.assert_awaited_once_with("conn-1", channel)
        assert sent[0]["type"] == "subscribed"
        assert sent[0]["data"] == {"subscribed": channel}

    async def test_subscribe_denied(self):
        user = UserPrincipal(user_id=uuid4(), congregation_id=uuid4())

        sent, manager = await self._send(
            {"action": "subscribe", "channel": f"congregation:{uuid4()}"}, user
        )

        manager.subscribe.assert_not_awaited()
        assert sent[0]["type"] == "error"

    async def test_pong_has_no_reply(self):
        user = UserPrincipal(user_id=uuid4())

        sent, _ = await self._send({"action": "pong"}, user)

        assert sent == []

    async def test_unknown_action(self):
        user = UserPrincipal(user_id=uuid4())

        sent, _ = await self._send({"action": "dance"}, user)

        assert sent[0]["data"] == {"error": "Unknown action: dance"}


@pytest.mark.integration
def test_unauthenticated_connection_is_closed():
    client = TestClient(app)

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/connect") as websocket:
            websocket.receive_text()

    assert exc_info.value.code == 4001
