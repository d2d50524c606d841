"""
Join Resolver

Resolves a participant's join request (by code, or by picking a session from
the congregation's list) into a session, enforcing that only active,
unexpired sessions can be joined, and records the participant.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from notathome.config import get_settings
from notathome.core.errors import (
    InvalidCode,
    NotFound,
    ParticipantRecordFailed,
    SessionEnded,
    SessionExpired,
    storage_guard,
)
from notathome.models.orm.outreach_session import OutreachSession
from notathome.models.orm.session_participant import SessionParticipant
from notathome.repositories.outreach_session import OutreachSessionRepository
from notathome.repositories.participant import SessionParticipantRepository
from notathome.services.session_lifecycle import Clock, utcnow

logger = logging.getLogger(__name__)

# Raises (typically a 403) when the caller may not join the session
JoinCheck = Callable[[OutreachSession], None]


@dataclass
class JoinResult:
    """Outcome of a successful join."""

    session_id: UUID
    code: str
    map_number: int | None
    congregation_id: UUID
    congregation_name: str | None
    is_active: bool
    expires_at: datetime
    participant_recorded: bool


class JoinResolver:
    """Gatekeeper for joining sessions."""

    def __init__(
        self,
        sessions: OutreachSessionRepository,
        participants: SessionParticipantRepository,
        *,
        participant_recording_required: bool = False,
        code_length: int | None = None,
        clock: Clock = utcnow,
    ):
        self.sessions = sessions
        self.participants = participants
        self.participant_recording_required = participant_recording_required
        self.code_length = code_length
        self.clock = clock

    def _ensure_joinable(self, session: OutreachSession) -> None:
        if not session.is_active:
            raise SessionEnded(session_id=session.id)
        if session.is_expired(self.clock()):
            raise SessionExpired(session_id=session.id)

    async def _record_participant(self, session: OutreachSession, user_id: UUID) -> bool:
        try:
            async with self.participants.savepoint():
                await self.participants.create(
                    SessionParticipant(session_id=session.id, user_id=user_id, joined_at=self.clock())
                )
        except Exception as e:
            logger.warning(
                f"Failed to record participant {user_id} for session {session.id}: {e!r}",
                extra={"session_id": str(session.id), "user_id": str(user_id)},
            )
            if self.participant_recording_required:
                raise ParticipantRecordFailed(session_id=session.id, user_id=user_id) from e
            return False
        return True

    async def _join(
        self, session: OutreachSession, user_id: UUID, authorize: JoinCheck | None
    ) -> JoinResult:
        if authorize is not None:
            authorize(session)
        self._ensure_joinable(session)
        recorded = await self._record_participant(session, user_id)

        logger.info(
            f"User {user_id} joined session {session.id}",
            extra={"session_id": str(session.id), "user_id": str(user_id)},
        )
        congregation = session.congregation
        return JoinResult(
            session_id=session.id,
            code=session.code,
            map_number=session.map_number,
            congregation_id=session.congregation_id,
            congregation_name=congregation.name if congregation is not None else None,
            is_active=session.is_active,
            expires_at=session.expires_at,
            participant_recorded=recorded,
        )

    async def resolve_and_join(
        self, code: str, user_id: UUID, authorize: JoinCheck | None = None
    ) -> JoinResult:
        """
        Join the session a code refers to.

        Args:
            code: Join code as typed
            user_id: Joining user
            authorize: Called with the session before it is joined

        Raises:
            InvalidCode: No session has ever used the code, or it has the wrong length
            SessionEnded: The session has been ended
            SessionExpired: The session is active but past its expiry
            ParticipantRecordFailed: Only when participant recording is required
        """
        code = code.strip()
        if self.code_length is not None and len(code) != self.code_length:
            raise InvalidCode(code=code)

        async with storage_guard("resolve_and_join"):
            session = await self.sessions.get_by_code(code)
            if session is None:
                raise InvalidCode(code=code)
            return await self._join(session, user_id, authorize)

    async def join_by_id(
        self, session_id: UUID, user_id: UUID, authorize: JoinCheck | None = None
    ) -> JoinResult:
        """
        Join a session picked from the joinable list.

        Raises:
            NotFound: The session does not exist
            SessionEnded: The session has been ended
            SessionExpired: The session is active but past its expiry
        """
        async with storage_guard("join_by_id"):
            session = await self.sessions.get_with_congregation(session_id)
            if session is None:
                raise NotFound("Session not found", session_id=session_id)
            return await self._join(session, user_id, authorize)

    async def list_joinable_sessions(self, congregation_id: UUID) -> list[OutreachSession]:
        """Active, unexpired sessions of a congregation, newest first."""
        async with storage_guard("list_joinable_sessions"):
            return await self.sessions.list_joinable_for_congregation(
                congregation_id, self.clock()
            )

    async def list_participants(self, session_id: UUID) -> list[SessionParticipant]:
        """
        Join records of a session, oldest first.

        Raises:
            NotFound: The session does not exist
        """
        async with storage_guard("list_participants"):
            if await self.sessions.get_by_id(session_id) is None:
                raise NotFound("Session not found", session_id=session_id)
            return await self.participants.list_for_session(session_id)


def get_join_resolver(db: AsyncSession) -> JoinResolver:
    """Build a JoinResolver for a database session."""
    settings = get_settings()
    return JoinResolver(
        OutreachSessionRepository(db),
        SessionParticipantRepository(db),
        participant_recording_required=settings.participant_recording_required,
        code_length=settings.session_code_length,
    )
