"""
Authentication and Authorization

FastAPI dependencies that turn the bearer token issued by the auth provider
into a UserPrincipal, plus the congregation-scoped permission checks used by
the routers. Credentials themselves are never verified here.
"""

import logging
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from notathome.core.security import read_access_token
from notathome.models.enums import UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class UserPrincipal:
    """The caller, as described by token claims (no database lookup)."""

    user_id: UUID
    email: str = ""
    name: str = ""
    role: UserRole = UserRole.PUBLISHER
    congregation_id: UUID | None = None
    is_active: bool = True

    @property
    def is_system_admin(self) -> bool:
        return self.role == UserRole.SYSTEM_ADMIN

    def is_member_of(self, congregation_id: UUID) -> bool:
        """Members of a congregation, and system admins, can see its sessions."""
        return self.is_system_admin or self.congregation_id == congregation_id

    def can_manage(self, congregation_id: UUID) -> bool:
        """Congregation admins of the congregation, and system admins, can run its sessions."""
        if self.is_system_admin:
            return True
        return self.role == UserRole.CONGREGATION_ADMIN and self.congregation_id == congregation_id


def principal_from_token(token: str) -> UserPrincipal | None:
    """UserPrincipal for a valid access token, None otherwise."""
    claims = read_access_token(token)
    if claims is None:
        return None

    # Unknown roles degrade to the least privileged one
    try:
        role = UserRole(claims.role)
    except ValueError:
        logger.warning(f"Token for user {claims.sub} has unknown role {claims.role!r}")
        role = UserRole.PUBLISHER

    return UserPrincipal(
        user_id=claims.sub,
        email=claims.email,
        name=claims.name,
        role=role,
        congregation_id=claims.congregation_id,
    )


async def get_current_user_optional(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> UserPrincipal | None:
    """Caller from the Authorization header, else the access_token cookie; None if absent."""
    token = credentials.credentials if credentials else request.cookies.get("access_token")
    if not token:
        return None
    return principal_from_token(token)


async def get_current_user(
    user: Annotated[UserPrincipal | None, Depends(get_current_user_optional)],
) -> UserPrincipal:
    """
    Require an authenticated caller.

    Raises:
        HTTPException: 401 if there is no valid token
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(
    user: Annotated[UserPrincipal, Depends(get_current_user)],
) -> UserPrincipal:
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


async def get_current_system_admin(
    user: Annotated[UserPrincipal, Depends(get_current_active_user)],
) -> UserPrincipal:
    """
    Require the system admin role.

    Raises:
        HTTPException: 403 for any other role
    """
    if not user.is_system_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System administrator privileges required",
        )
    return user


def ensure_member(user: UserPrincipal, congregation_id: UUID) -> None:
    """403 unless the user belongs to the congregation."""
    if not user.is_member_of(congregation_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this congregation",
        )


def ensure_manager(user: UserPrincipal, congregation_id: UUID) -> None:
    """403 unless the user administers the congregation."""
    if not user.can_manage(congregation_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Congregation administrator privileges required",
        )


CurrentUser = Annotated[UserPrincipal, Depends(get_current_user)]
CurrentActiveUser = Annotated[UserPrincipal, Depends(get_current_active_user)]
CurrentSystemAdmin = Annotated[UserPrincipal, Depends(get_current_system_admin)]
OptionalUser = Annotated[UserPrincipal | None, Depends(get_current_user_optional)]
