"""
Outreach Session Repository

Session store access. Mutations are single-column UPDATE statements so
concurrent changes to different fields (ending a session while a map number
is being assigned) never overwrite each other.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, exists, select, update
from sqlalchemy.orm import selectinload

from notathome.models.orm.outreach_session import OutreachSession
from notathome.repositories.base import BaseRepository


class OutreachSessionRepository(BaseRepository[OutreachSession]):
    """Repository for OutreachSession operations."""

    model = OutreachSession

    async def get_with_congregation(self, session_id: UUID) -> OutreachSession | None:
        """
        Get a session with its congregation loaded.

        Args:
            session_id: Session UUID

        Returns:
            OutreachSession or None if not found
        """
        result = await self.session.execute(
            select(OutreachSession)
            .options(selectinload(OutreachSession.congregation))
            .where(OutreachSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def code_in_use(self, code: str) -> bool:
        """
        Check whether an active session already holds a join code.

        Args:
            code: Numeric join code

        Returns:
            True if an active session uses the code
        """
        result = await self.session.execute(
            select(
                exists().where(
                    OutreachSession.code == code,
                    OutreachSession.is_active.is_(True),
                )
            )
        )
        return bool(result.scalar())

    async def get_by_code(self, code: str) -> OutreachSession | None:
        """
        Find the session a participant means by a join code.

        Codes are reused after sessions end, so the newest active session
        wins, then the newest ended one.

        Args:
            code: Numeric join code

        Returns:
            OutreachSession (with congregation loaded) or None
        """
        result = await self.session.execute(
            select(OutreachSession)
            .options(selectinload(OutreachSession.congregation))
            .where(OutreachSession.code == code)
            .order_by(OutreachSession.is_active.desc(), OutreachSession.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_joinable_for_congregation(
        self, congregation_id: UUID, now: datetime
    ) -> list[OutreachSession]:
        """
        List active, unexpired sessions of a congregation, newest first.

        Args:
            congregation_id: Congregation UUID
            now: Current time

        Returns:
            List of sessions
        """
        result = await self.session.execute(
            select(OutreachSession)
            .where(
                OutreachSession.congregation_id == congregation_id,
                OutreachSession.is_active.is_(True),
                OutreachSession.expires_at > now,
            )
            .order_by(OutreachSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_expired_active_ids(self, now: datetime) -> list[UUID]:
        """
        IDs of sessions still flagged active whose expiry has passed.

        Args:
            now: Current time

        Returns:
            List of session UUIDs, oldest expiry first
        """
        result = await self.session.execute(
            select(OutreachSession.id)
            .where(
                OutreachSession.is_active.is_(True),
                OutreachSession.expires_at < now,
            )
            .order_by(OutreachSession.expires_at)
        )
        return list(result.scalars().all())

    async def deactivate(self, session_id: UUID) -> OutreachSession | None:
        """
        Flip is_active to false if it is currently true.

        Args:
            session_id: Session UUID

        Returns:
            The updated session, or None if it was missing or already ended
        """
        result = await self.session.execute(
            update(OutreachSession)
            .where(OutreachSession.id == session_id, OutreachSession.is_active.is_(True))
            .values(is_active=False)
            .returning(OutreachSession)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def set_map_number(self, session_id: UUID, map_number: int) -> OutreachSession | None:
        """
        Set the territory map number of a session.

        Args:
            session_id: Session UUID
            map_number: Territory map number

        Returns:
            The updated session, or None if not found
        """
        result = await self.session.execute(
            update(OutreachSession)
            .where(OutreachSession.id == session_id)
            .values(map_number=map_number)
            .returning(OutreachSession)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def list_active_with_congregation(self, now: datetime) -> list[OutreachSession]:
        """
        Active, unexpired sessions of every congregation, newest first.

        Args:
            now: Current time

        Returns:
            List of sessions with their congregation loaded
        """
        result = await self.session.execute(
            select(OutreachSession)
            .options(selectinload(OutreachSession.congregation))
            .where(
                OutreachSession.is_active.is_(True),
                OutreachSession.expires_at > now,
            )
            .order_by(OutreachSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_by_id(self, session_id: UUID) -> OutreachSession | None:
        """
        Delete a session; its participants and addresses go with it
        (``ON DELETE CASCADE``).

        Args:
            session_id: Session UUID

        Returns:
            The deleted session, or None if not found
        """
        result = await self.session.execute(
            delete(OutreachSession)
            .where(OutreachSession.id == session_id)
            .returning(OutreachSession)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()
