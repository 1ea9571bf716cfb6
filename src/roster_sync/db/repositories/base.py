"""Shared plumbing for the roster_sync repositories.

Repositories never commit: the caller owns the session and decides where
a transaction ends (per batch for incremental syncs, once for a whole
reconciliation).
"""

from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roster_sync.db.models import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Session holder with primary-key and natural-key lookups.

    Subclasses name their table with the `model` class attribute:

        class DistrictRepository(BaseRepository[District]):
            model = District
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, id: int) -> ModelT | None:
        """Row by primary key, or None."""
        return await self._session.get(self.model, id)

    async def _get_by_field(self, field_name: str, value: object) -> ModelT | None:
        stmt = select(self.model).where(getattr(self.model, field_name) == value)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    def add(self, entity: ModelT) -> ModelT:
        """Stage a new row; it gets an id on the next flush."""
        self._session.add(entity)
        return entity

    async def flush(self) -> None:
        await self._session.flush()
