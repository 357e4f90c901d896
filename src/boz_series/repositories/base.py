"""Base repository with common database operations."""

from typing import Any, Generic, Iterable, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Lookups and deletes shared by the cache repositories."""

    def __init__(self, model: Type[T], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy ORM model class
            session: Database session
        """
        self.model = model
        self.session = session

    async def get(self, key: str) -> Optional[T]:
        """Get a record by primary key."""
        return await self.session.get(self.model, key)

    async def find(self, *criteria: Any, options: Iterable[Any] = ()) -> list[T]:
        """
        Get the records matching all criteria.

        Args:
            criteria: SQLAlchemy where-clauses
            options: Loader options such as selectinload()
        """
        statement = select(self.model)
        if criteria:
            statement = statement.where(*criteria)
        options = tuple(options)
        if options:
            statement = statement.options(*options)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def delete_all(self, instances: list[T]) -> int:
        """Delete records (ORM cascades apply) and return how many."""
        for instance in instances:
            await self.session.delete(instance)
        await self.session.flush()
        return len(instances)
