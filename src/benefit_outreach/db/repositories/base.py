"""Base Repository Pattern.

Provides generic async CRUD operations. Specialized repositories add
the domain queries the services need.
"""
from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.core.exceptions import RecordNotFoundError
from benefit_outreach.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


def as_uuid(value: UUID | str) -> UUID:
    """Accept either a UUID or its string form."""
    return value if isinstance(value, UUID) else UUID(str(value))


class BaseRepository(Generic[ModelT]):
    """Generic base repository with async CRUD operations.

    Usage:
        class PracticeRepository(BaseRepository[PracticeModel]):
            def __init__(self, session: AsyncSession):
                super().__init__(PracticeModel, session)
    """

    def __init__(self, model: type[ModelT], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current database session."""
        return self._session

    # ========================================================================
    # Basic CRUD Operations
    # ========================================================================

    async def get(self, id: UUID | str) -> ModelT | None:
        """Get a single record by ID."""
        stmt = select(self._model).where(self._model.id == as_uuid(id))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, id: UUID | str) -> ModelT:
        """Get a single record by ID.

        Raises:
            RecordNotFoundError: If record not found
        """
        obj = await self.get(id)
        if obj is None:
            raise RecordNotFoundError(
                f"{self._model.__name__} with id {id} not found",
                details={"id": str(id)},
            )
        return obj

    async def create(self, obj_in: ModelT) -> ModelT:
        """Add a new record and flush to obtain defaults."""
        self._session.add(obj_in)
        await self._session.flush()
        return obj_in

    # ========================================================================
    # Query Helpers
    # ========================================================================

    async def count(self, **filters: Any) -> int:
        """Count records matching equality filters."""
        stmt = select(func.count()).select_from(self._model)
        for field, value in filters.items():
            stmt = stmt.where(getattr(self._model, field) == value)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def find_one(self, **filters: Any) -> ModelT | None:
        """Find the first record matching equality filters."""
        stmt = select(self._model)
        for field, value in filters.items():
            stmt = stmt.where(getattr(self._model, field) == value)
        result = await self._session.execute(stmt.limit(1))
        return result.scalars().first()

    async def find_many(self, *, limit: int = 1000, **filters: Any) -> Sequence[ModelT]:
        """Find records matching equality filters."""
        stmt = select(self._model)
        for field, value in filters.items():
            stmt = stmt.where(getattr(self._model, field) == value)
        result = await self._session.execute(stmt.limit(limit))
        return result.scalars().all()

    # ========================================================================
    # Transaction Helpers
    # ========================================================================

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._session.commit()

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        await self._session.rollback()
