"""
Session Lifecycle Manager

Creates outreach sessions with unique join codes, ends them (explicitly or
through the expiration sweep), assigns territory maps and deletes sessions.

Every field change is a single-column UPDATE so that ending a session and
assigning its map can race without clobbering each other.
"""

import asyncio
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notathome.config import get_settings
from notathome.core.errors import CodeSpaceExhausted, NotFound, StorageUnavailable, storage_guard
from notathome.core.pubsub import Publisher, get_connection_manager
from notathome.models.enums import SessionEvent
from notathome.models.orm.outreach_session import OutreachSession
from notathome.repositories.outreach_session import OutreachSessionRepository
from notathome.services.live_updates import LiveUpdateChannel

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_session_code(length: int = 4) -> str:
    """
    Generate a numeric join code of exactly ``length`` digits.

    The first digit is never zero so codes read the same with or without
    leading-zero trimming.
    """
    lowest = 10 ** (length - 1)
    return str(lowest + secrets.randbelow(9 * lowest))


class SessionLifecycleManager:
    """Owns the is_active/expires_at state of outreach sessions."""

    def __init__(
        self,
        sessions: OutreachSessionRepository,
        live_updates: LiveUpdateChannel,
        *,
        code_length: int = 4,
        max_code_attempts: int = 20,
        lifetime: timedelta = timedelta(hours=24),
        sweep_query_timeout: float = 30.0,
        sweep_row_timeout: float = 10.0,
        clock: Clock = utcnow,
    ):
        self.sessions = sessions
        self.live_updates = live_updates
        self.code_length = code_length
        self.max_code_attempts = max_code_attempts
        self.lifetime = lifetime
        self.sweep_query_timeout = sweep_query_timeout
        self.sweep_row_timeout = sweep_row_timeout
        self.clock = clock

    async def get_session(self, session_id: UUID) -> OutreachSession:
        """
        Get a session by ID.

        Raises:
            NotFound: If the session does not exist
        """
        async with storage_guard("get_session"):
            session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise NotFound("Session not found", session_id=session_id)
        return session

    async def create_session(
        self,
        congregation_id: UUID,
        user_id: UUID,
        map_number: int | None = None,
    ) -> OutreachSession:
        """
        Create a session with a join code no active session is using.

        Args:
            congregation_id: Owning congregation
            user_id: Creating admin
            map_number: Optional territory map number

        Returns:
            The new, active session

        Raises:
            CodeSpaceExhausted: If no free code was found within the attempt limit
            StorageUnavailable: If the session store cannot be reached
        """
        session: OutreachSession | None = None

        async with storage_guard("create_session"):
            for attempt in range(1, self.max_code_attempts + 1):
                code = generate_session_code(self.code_length)
                if await self.sessions.code_in_use(code):
                    logger.debug(f"Session code collision on attempt {attempt}")
                    continue

                now = self.clock()
                candidate = OutreachSession(
                    code=code,
                    congregation_id=congregation_id,
                    created_by=user_id,
                    created_at=now,
                    expires_at=now + self.lifetime,
                    is_active=True,
                    map_number=map_number,
                )
                try:
                    async with self.sessions.savepoint():
                        session = await self.sessions.create(candidate)
                except IntegrityError:
                    # Another creator took the code between the check and the insert
                    logger.info(f"Session code insert race on attempt {attempt}, retrying")
                    continue
                break

        if session is None:
            logger.critical(
                f"Could not allocate a {self.code_length}-digit session code after "
                f"{self.max_code_attempts} attempts; the code space is too small for current load",
                extra={"congregation_id": str(congregation_id)},
            )
            raise CodeSpaceExhausted(
                congregation_id=congregation_id, attempts=self.max_code_attempts
            )

        logger.info(
            f"Session created: {session.id} (code {session.code})",
            extra={
                "session_id": str(session.id),
                "congregation_id": str(congregation_id),
                "user_id": str(user_id),
            },
        )
        await self.live_updates.publish_session_change(session, SessionEvent.SESSION_CREATED)
        return session

    async def end_session(self, session_id: UUID) -> OutreachSession:
        """
        Mark a session inactive. Ending an already-ended session succeeds
        without publishing a second event.

        Raises:
            NotFound: If the session does not exist
        """
        async with storage_guard("end_session"):
            session = await self.sessions.deactivate(session_id)
            if session is None:
                existing = await self.sessions.get_by_id(session_id)
                if existing is None:
                    raise NotFound("Session not found", session_id=session_id)
                return existing

        logger.info(f"Session ended: {session_id}", extra={"session_id": str(session_id)})
        await self.live_updates.publish_session_change(session, SessionEvent.SESSION_UPDATED)
        return session

    async def assign_map(self, session_id: UUID, map_number: int) -> OutreachSession:
        """
        Set the territory map number of a session.

        Raises:
            NotFound: If the session does not exist
        """
        async with storage_guard("assign_map"):
            session = await self.sessions.set_map_number(session_id, map_number)
        if session is None:
            raise NotFound("Session not found", session_id=session_id)

        logger.info(
            f"Map {map_number} assigned to session {session_id}",
            extra={"session_id": str(session_id)},
        )
        await self.live_updates.publish_session_change(session, SessionEvent.SESSION_UPDATED)
        return session

    async def sweep_expired_sessions(self) -> int:
        """
        End every active session whose expiry time has passed.

        Each session is ended and committed on its own under a timeout, and
        its event goes out only after that commit. A failure on one row is
        rolled back and logged and the sweep moves on.

        Returns:
            Number of sessions actually ended and committed

        Raises:
            StorageUnavailable: If the candidate query fails or times out
        """
        now = self.clock()
        try:
            async with asyncio.timeout(self.sweep_query_timeout):
                async with storage_guard("sweep_query"):
                    candidates = await self.sessions.list_expired_active_ids(now)
        except TimeoutError as e:
            logger.error(f"Sweep query timed out after {self.sweep_query_timeout}s")
            raise StorageUnavailable("Sweep query timed out", operation="sweep_query") from e

        ended = 0
        for session_id in candidates:
            try:
                async with asyncio.timeout(self.sweep_row_timeout):
                    session = await self.sessions.deactivate(session_id)
                    if session is not None:
                        await self.live_updates.publish_session_change(
                            session, SessionEvent.SESSION_UPDATED
                        )
                    await self.sessions.commit()
            except Exception as e:
                logger.error(
                    f"Failed to end expired session {session_id}: {e!r}",
                    extra={"session_id": str(session_id)},
                )
                await self._rollback_row(session_id)
                continue

            # Ended by someone else since the query ran
            if session is not None:
                ended += 1

        logger.info(f"Expiration sweep ended {ended} of {len(candidates)} expired session(s)")
        return ended

    async def _rollback_row(self, session_id: UUID) -> None:
        try:
            await self.sessions.rollback()
        except Exception as e:
            logger.error(f"Rollback after failing to end session {session_id} failed: {e!r}")

    async def delete_session(self, session_id: UUID) -> OutreachSession:
        """
        Delete a session together with its participants and addresses.

        Viewers get a SESSION_DELETED event carrying the session's last state.

        Raises:
            NotFound: If the session does not exist
        """
        async with storage_guard("delete_session"):
            session = await self.sessions.delete_by_id(session_id)
        if session is None:
            raise NotFound("Session not found", session_id=session_id)

        logger.info(f"Session deleted: {session_id}", extra={"session_id": str(session_id)})
        await self.live_updates.publish_session_change(session, SessionEvent.SESSION_DELETED)
        return session

    async def list_active_sessions(self) -> list[OutreachSession]:
        """Active, unexpired sessions across every congregation, newest first."""
        async with storage_guard("list_active_sessions"):
            return await self.sessions.list_active_with_congregation(self.clock())


def get_session_lifecycle(
    db: AsyncSession, publish: Publisher | None = None
) -> SessionLifecycleManager:
    """
    Build a SessionLifecycleManager for a database session.

    Args:
        db: Database session
        publish: Event publisher; defaults to the process connection manager
    """
    settings = get_settings()
    manager = get_connection_manager()
    return SessionLifecycleManager(
        OutreachSessionRepository(db),
        LiveUpdateChannel(publish or manager.broadcast, manager, db=db),
        code_length=settings.session_code_length,
        max_code_attempts=settings.session_code_max_attempts,
        lifetime=settings.session_lifetime,
        sweep_query_timeout=settings.sweep_query_timeout_seconds,
        sweep_row_timeout=settings.sweep_row_timeout_seconds,
    )
