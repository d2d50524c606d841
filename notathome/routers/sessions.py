"""
Sessions Router

Endpoints for creating, joining, ending, deleting and sweeping outreach
sessions, plus the system-wide overview of running ones.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from notathome.config import get_settings
from notathome.core.auth import (
    CurrentActiveUser,
    CurrentSystemAdmin,
    OptionalUser,
    UserPrincipal,
    ensure_manager,
    ensure_member,
)
from notathome.core.database import DbSession
from notathome.core.security import verify_api_key
from notathome.models.contracts.session import (
    ActiveSessionSummary,
    ParticipantPublic,
    SessionCreate,
    SessionJoinRequest,
    SessionJoinResult,
    SessionMapAssign,
    SessionPublic,
    SweepResult,
)
from notathome.models.orm.outreach_session import OutreachSession
from notathome.repositories.congregation import CongregationRepository
from notathome.services.address_recording import AddressRecordingService, get_address_recording
from notathome.services.join_resolver import JoinResolver, JoinResult, get_join_resolver
from notathome.services.session_lifecycle import SessionLifecycleManager, get_session_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


async def session_lifecycle(db: DbSession) -> SessionLifecycleManager:
    return get_session_lifecycle(db)


async def join_resolver(db: DbSession) -> JoinResolver:
    return get_join_resolver(db)


async def address_recording(db: DbSession) -> AddressRecordingService:
    return get_address_recording(db)


async def congregation_repository(db: DbSession) -> CongregationRepository:
    return CongregationRepository(db)


Lifecycle = Annotated[SessionLifecycleManager, Depends(session_lifecycle)]
Resolver = Annotated[JoinResolver, Depends(join_resolver)]
Recording = Annotated[AddressRecordingService, Depends(address_recording)]
Congregations = Annotated[CongregationRepository, Depends(congregation_repository)]


def _to_join_result(result: JoinResult) -> SessionJoinResult:
    return SessionJoinResult(
        session_id=result.session_id,
        code=result.code,
        map_number=result.map_number,
        congregation_id=result.congregation_id,
        congregation_name=result.congregation_name,
        is_active=result.is_active,
        expires_at=result.expires_at,
        participant_recorded=result.participant_recorded,
    )


def _to_summary(session: OutreachSession) -> ActiveSessionSummary:
    congregation = session.congregation
    return ActiveSessionSummary(
        **SessionPublic.model_validate(session).model_dump(),
        congregation_name=congregation.name if congregation is not None else None,
    )


def _resolve_congregation_id(user: UserPrincipal, congregation_id: UUID | None) -> UUID:
    """Default to the caller's own congregation."""
    resolved = congregation_id or user.congregation_id
    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="congregation_id is required for users without a congregation",
        )
    return resolved


@router.post("", response_model=SessionPublic, status_code=status.HTTP_201_CREATED)
async def create_session(
    data: SessionCreate,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    congregations: Congregations,
) -> SessionPublic:
    """
    Start a new outreach session for a congregation.

    Args:
        data: Session creation data
        current_user: Current authenticated user
        lifecycle: Session lifecycle manager
        congregations: Congregation repository

    Returns:
        Created session, including its join code
    """
    congregation_id = _resolve_congregation_id(current_user, data.congregation_id)
    ensure_manager(current_user, congregation_id)

    congregation = await congregations.get_by_id(congregation_id)
    if congregation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Congregation not found")
    if not congregation.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Congregation has not been approved",
        )

    session = await lifecycle.create_session(
        congregation_id, current_user.user_id, map_number=data.map_number
    )
    return SessionPublic.model_validate(session)


@router.get("/joinable", response_model=list[SessionPublic])
async def list_joinable_sessions(
    current_user: CurrentActiveUser,
    resolver: Resolver,
    congregation_id: UUID | None = Query(None, description="Defaults to your congregation"),
) -> list[SessionPublic]:
    """
    List the active sessions of a congregation, newest first.
    """
    congregation_id = _resolve_congregation_id(current_user, congregation_id)
    ensure_member(current_user, congregation_id)

    sessions = await resolver.list_joinable_sessions(congregation_id)
    return [SessionPublic.model_validate(s) for s in sessions]


@router.post("/join", response_model=SessionJoinResult)
async def join_session_by_code(
    data: SessionJoinRequest,
    current_user: CurrentActiveUser,
    resolver: Resolver,
) -> SessionJoinResult:
    """
    Join a session with its code.

    Only members of the session's congregation can join; the check runs
    before any participant is recorded.
    """
    result = await resolver.resolve_and_join(
        data.code,
        current_user.user_id,
        authorize=lambda session: ensure_member(current_user, session.congregation_id),
    )
    return _to_join_result(result)


@router.get("/active", response_model=list[ActiveSessionSummary])
async def list_active_sessions(
    current_user: CurrentSystemAdmin,
    lifecycle: Lifecycle,
) -> list[ActiveSessionSummary]:
    """Running sessions across every congregation, newest first."""
    sessions = await lifecycle.list_active_sessions()
    return [_to_summary(s) for s in sessions]


@router.post("/sweep", response_model=SweepResult)
async def sweep_expired_sessions(
    current_user: OptionalUser,
    lifecycle: Lifecycle,
    x_api_key: Annotated[str | None, Header()] = None,
) -> SweepResult:
    """
    End every expired session now.

    Accepts either the configured sweep API key in ``X-API-Key`` (for
    external schedulers) or a system administrator token.
    """
    if not verify_api_key(x_api_key, get_settings().sweep_api_key):
        if current_user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not current_user.is_system_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="System administrator privileges required",
            )
    logger.info(
        "Manual expiration sweep triggered",
        extra={"user_id": str(current_user.user_id) if current_user else "api_key"},
    )

    ended = await lifecycle.sweep_expired_sessions()
    return SweepResult(ended_count=ended, message=f"Ended {ended} expired session(s)")


@router.get("/{session_id}", response_model=SessionPublic)
async def get_session(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
) -> SessionPublic:
    """
    Get the current state of a session.

    Clients re-fetch this after a live update connection drops.
    """
    session = await lifecycle.get_session(session_id)
    ensure_member(current_user, session.congregation_id)
    return SessionPublic.model_validate(session)


@router.post("/{session_id}/end", response_model=SessionPublic)
async def end_session(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
) -> SessionPublic:
    """
    End a session. Ending an already-ended session is not an error.
    """
    session = await lifecycle.get_session(session_id)
    ensure_manager(current_user, session.congregation_id)

    session = await lifecycle.end_session(session_id)
    return SessionPublic.model_validate(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
) -> None:
    """
    Delete a session along with its participants and recorded addresses.

    Raises:
        HTTPException: 403 unless the caller administers the session's congregation
    """
    session = await lifecycle.get_session(session_id)
    ensure_manager(current_user, session.congregation_id)

    await lifecycle.delete_session(session_id)


@router.put("/{session_id}/map", response_model=SessionPublic)
async def assign_map(
    session_id: UUID,
    data: SessionMapAssign,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
) -> SessionPublic:
    """Assign a territory map number to a session."""
    session = await lifecycle.get_session(session_id)
    ensure_manager(current_user, session.congregation_id)

    session = await lifecycle.assign_map(session_id, data.map_number)
    return SessionPublic.model_validate(session)


@router.post("/{session_id}/join", response_model=SessionJoinResult)
async def join_session(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    resolver: Resolver,
) -> SessionJoinResult:
    """Join a session picked from the congregation's list."""
    session = await lifecycle.get_session(session_id)
    ensure_member(current_user, session.congregation_id)

    result = await resolver.join_by_id(session_id, current_user.user_id)
    return _to_join_result(result)


@router.get("/{session_id}/participants", response_model=list[ParticipantPublic])
async def list_participants(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    resolver: Resolver,
) -> list[ParticipantPublic]:
    """List who joined a session, oldest first."""
    session = await lifecycle.get_session(session_id)
    ensure_manager(current_user, session.congregation_id)

    participants = await resolver.list_participants(session_id)
    return [ParticipantPublic.model_validate(p) for p in participants]


@router.get("/{session_id}/export", response_class=PlainTextResponse)
async def export_session(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    recording: Recording,
) -> PlainTextResponse:
    """Plain-text report of a session's recorded addresses, grouped by block."""
    session = await lifecycle.get_session(session_id)
    ensure_member(current_user, session.congregation_id)

    report = await recording.export_session(session_id)
    return PlainTextResponse(report)
