"""
Fixtures for HTTP-level tests.

Routes run through the real ASGI app with the service dependencies
overridden to use the in-memory fakes from the root conftest.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from notathome.core.auth import UserPrincipal, get_current_active_user, get_current_user_optional
from notathome.core.database import get_db
from notathome.main import app
from notathome.models.enums import UserRole
from notathome.routers.congregations import territory_map_repository
from notathome.routers.sessions import (
    address_recording,
    congregation_repository,
    join_resolver,
    session_lifecycle,
)


def create_mock_user(role=UserRole.PUBLISHER, congregation_id=None, user_id=None):
    """Create a UserPrincipal."""
    return UserPrincipal(
        user_id=user_id or uuid4(),
        email="test@example.com",
        name="Test User",
        role=role,
        congregation_id=congregation_id,
        is_active=True,
    )


@pytest.fixture
def map_repo():
    from unittest.mock import AsyncMock

    return AsyncMock()


@pytest_asyncio.fixture
async def client(lifecycle, resolver, recording, congregation_repo, map_repo):
    """Unauthenticated client with service dependencies on fakes."""

    async def no_db():
        yield None

    app.dependency_overrides[get_db] = no_db
    app.dependency_overrides[session_lifecycle] = lambda: lifecycle
    app.dependency_overrides[join_resolver] = lambda: resolver
    app.dependency_overrides[address_recording] = lambda: recording
    app.dependency_overrides[congregation_repository] = lambda: congregation_repo
    app.dependency_overrides[territory_map_repository] = lambda: map_repo

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Authenticate subsequent requests as the given user."""

    def _login(user: UserPrincipal) -> UserPrincipal:
        app.dependency_overrides[get_current_active_user] = lambda: user
        app.dependency_overrides[get_current_user_optional] = lambda: user
        return user

    return _login


@pytest.fixture
def admin(login, congregation):
    return login(create_mock_user(UserRole.CONGREGATION_ADMIN, congregation.id))


@pytest.fixture
def publisher(login, congregation):
    return login(create_mock_user(UserRole.PUBLISHER, congregation.id))


@pytest.fixture
def outsider(login):
    return login(create_mock_user(UserRole.CONGREGATION_ADMIN, uuid4()))


@pytest.fixture
def system_admin(login):
    return login(create_mock_user(UserRole.SYSTEM_ADMIN))
