"""
Recorded Address Repository
"""

from uuid import UUID

from sqlalchemy import select

from notathome.models.orm.address import NotAtHomeAddress
from notathome.repositories.base import BaseRepository


class AddressRepository(BaseRepository[NotAtHomeAddress]):
    """Repository for not-at-home address records."""

    model = NotAtHomeAddress

    async def list_for_session(self, session_id: UUID) -> list[NotAtHomeAddress]:
        """
        List addresses of a session ordered by block, then recording time.

        Args:
            session_id: Session UUID

        Returns:
            List of addresses
        """
        result = await self.session.execute(
            select(NotAtHomeAddress)
            .where(NotAtHomeAddress.session_id == session_id)
            .order_by(NotAtHomeAddress.block_number, NotAtHomeAddress.created_at)
        )
        return list(result.scalars().all())
