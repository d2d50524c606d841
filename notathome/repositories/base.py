"""
Base Repository

Generic persistence for one ORM model over an AsyncSession. Repositories
flush but do not commit on their own; the transaction belongs to the request
or worker task that opened the session. Batch jobs that persist item by item
call ``commit`` explicitly.
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from notathome.core.database import commit_session, rollback_session
from notathome.models.orm.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """CRUD shared by every aggregate repository."""

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    def savepoint(self) -> AbstractAsyncContextManager[Any]:
        """
        Nested transaction for a step that may fail on its own.

        A failure inside rolls back to the savepoint and leaves the outer
        transaction usable.

        Usage:
            async with repo.savepoint():
                ...
        """
        return self.session.begin_nested()

    async def commit(self) -> None:
        """Commit the transaction so far and release its after-commit work."""
        await commit_session(self.session)

    async def rollback(self) -> None:
        await rollback_session(self.session)

    async def get_by_id(self, id: UUID) -> ModelT | None:
        return await self.session.get(self.model, id)

    async def create(self, entity: ModelT) -> ModelT:
        """Insert and reload so server defaults (timestamps) are populated."""
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def update(self, entity: ModelT) -> ModelT:
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def delete(self, entity: ModelT) -> None:
        await self.session.delete(entity)
        await self.session.flush()
