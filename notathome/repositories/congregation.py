"""
Congregation Repository
"""

from uuid import UUID

from sqlalchemy import func, select

from notathome.models.orm.congregation import Congregation
from notathome.models.orm.territory_map import TerritoryMap
from notathome.repositories.base import BaseRepository


class CongregationRepository(BaseRepository[Congregation]):
    """Repository for Congregation operations."""

    model = Congregation

    async def get_by_name(self, name: str) -> Congregation | None:
        """
        Get a congregation by name, ignoring case.

        Args:
            name: Congregation name

        Returns:
            Congregation or None if not found
        """
        result = await self.session.execute(
            select(Congregation).where(func.lower(Congregation.name) == name.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: str | None = None) -> list[Congregation]:
        """
        List congregations, optionally filtered by registration status.

        Args:
            status: Status filter (None = all)

        Returns:
            List of congregations ordered by name
        """
        query = select(Congregation).order_by(Congregation.name)
        if status is not None:
            query = query.where(Congregation.status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class TerritoryMapRepository(BaseRepository[TerritoryMap]):
    """Repository for TerritoryMap operations."""

    model = TerritoryMap

    async def list_for_congregation(self, congregation_id: UUID) -> list[TerritoryMap]:
        """
        List a congregation's maps ordered by map number.

        Args:
            congregation_id: Congregation UUID

        Returns:
            List of territory maps
        """
        result = await self.session.execute(
            select(TerritoryMap)
            .where(TerritoryMap.congregation_id == congregation_id)
            .order_by(TerritoryMap.map_number)
        )
        return list(result.scalars().all())

    async def get_by_number(self, congregation_id: UUID, map_number: int) -> TerritoryMap | None:
        """
        Get a congregation's map by its number.

        Args:
            congregation_id: Congregation UUID
            map_number: Map number

        Returns:
            TerritoryMap or None if not found
        """
        result = await self.session.execute(
            select(TerritoryMap).where(
                TerritoryMap.congregation_id == congregation_id,
                TerritoryMap.map_number == map_number,
            )
        )
        return result.scalar_one_or_none()
