"""
Session Participant Repository
"""

from uuid import UUID

from sqlalchemy import select

from notathome.models.orm.session_participant import SessionParticipant
from notathome.repositories.base import BaseRepository


class SessionParticipantRepository(BaseRepository[SessionParticipant]):
    """Repository for append-only participant records."""

    model = SessionParticipant

    async def list_for_session(self, session_id: UUID) -> list[SessionParticipant]:
        """
        List join records of a session, oldest first.

        Args:
            session_id: Session UUID

        Returns:
            List of participant records
        """
        result = await self.session.execute(
            select(SessionParticipant)
            .where(SessionParticipant.session_id == session_id)
            .order_by(SessionParticipant.joined_at)
        )
        return list(result.scalars().all())
