"""
Base Repository Pattern

Purpose
-------
Provides a type-safe, generic repository abstraction for database operations
following SQLAlchemy 2.0 async patterns. Repositories encapsulate data access
and give services one consistent interface for reads, locked reads and
inserts.

Design Notes
------------
This base repository provides:
- Type-safe lookups by primary key or conditions
- Pessimistic locking support (``for_update=True``), always with
  ``populate_existing`` so a locked read never returns a stale identity-map
  copy
- Existence/counting utilities
- Structured debug logging

What this class does NOT do:
- Manage transactions (services use ``DatabaseService.get_transaction()``)
- Contain business logic
- Perform validation beyond type safety

Usage
-----
    class QuestInstanceRepository(BaseRepository[QuestInstance]):
        async def find_active(self, session, user_id, quest_id):
            return await self.find_one_where(
                session,
                QuestInstance.user_id == user_id,
                QuestInstance.quest_id == quest_id,
                QuestInstance.status == "active",
                for_update=True,
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository for type-safe database operations.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """Get a single record by primary key (no lock)."""
        instance = await session.get(self.model_class, id_value)
        self.log.debug(
            f"Repository.get: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": id_value,
                "found": instance is not None,
            },
        )
        return instance

    def _select(
        self,
        conditions: Sequence[ColumnElement[bool]],
        *,
        for_update: bool,
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ):
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return stmt

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        """
        Find a single record matching conditions.

        With ``order_by`` the first row wins; without it more than one match
        raises ``MultipleResultsFound``.
        """
        stmt = self._select(
            conditions,
            for_update=for_update,
            order_by=order_by,
            limit=1 if order_by else None,
        )
        result = await session.execute(stmt)
        instance = result.scalars().first() if order_by else result.scalar_one_or_none()

        self.log.debug(
            f"Repository.find_one_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found": instance is not None,
                "locked": for_update,
            },
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        """Find multiple records matching conditions."""
        stmt = self._select(conditions, for_update=for_update, order_by=order_by, limit=limit)
        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found_count": len(instances),
                "locked": for_update,
                "limit": limit,
            },
        )
        return instances

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        """Count records matching conditions."""
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        count = result.scalar_one()

        self.log.debug(
            f"Repository.count: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "count": count},
        )
        return count

    def add(self, session: AsyncSession, instance: T) -> T:
        """Add a new instance to the session (INSERT on flush/commit)."""
        session.add(instance)
        self.log.debug(
            f"Repository.add: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__},
        )
        return instance

    async def flush(self, session: AsyncSession) -> None:
        """Flush pending changes so constraint violations surface here."""
        await session.flush()
