"""Generic base DAO — filtered reads, inserts and checked updates."""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from depsentinel.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)

_IMMUTABLE = frozenset({"id", "created_at", "updated_at"})


class BaseDAO(Generic[ModelT]):
    """Base data-access object. Subclasses set ``model`` class attribute.

    Methods flush but never commit; the caller owns the transaction.
    """

    model: type[ModelT]

    def _where(self, stmt: Any, filters: dict[str, Any]) -> Any:
        for key, val in filters.items():
            column = getattr(self.model, key, None)
            if column is None:
                raise AttributeError(f"{self.model.__name__} has no column '{key}'")
            stmt = stmt.where(column == val)
        return stmt

    async def find_one(self, session: AsyncSession, **filters: Any) -> ModelT | None:
        """First row matching every filter, or None. At least one filter is required."""
        if not filters:
            raise ValueError("find_one() requires at least one filter")
        result = await session.execute(self._where(select(self.model), filters))
        return result.scalars().first()

    async def find_all(
        self, session: AsyncSession, *order_by: Any, **filters: Any
    ) -> list[ModelT]:
        stmt: Select = self._where(select(self.model), filters)
        if order_by:
            stmt = stmt.order_by(*order_by)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def add(self, session: AsyncSession, **values: Any) -> ModelT:
        obj = self.model(**values)
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
        return obj

    async def add_many(self, session: AsyncSession, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        session.add_all([self.model(**row) for row in rows])
        await session.flush()
        return len(rows)

    async def delete_where(self, session: AsyncSession, **filters: Any) -> None:
        if not filters:
            raise ValueError("delete_where() requires at least one filter")
        await session.execute(self._where(delete(self.model), filters))
        await session.flush()

    async def update(self, session: AsyncSession, obj: ModelT, **values: Any) -> ModelT:
        """Set columns on an already-loaded row.

        Raises ``AttributeError`` for key or timestamp columns and unknown names.
        """
        columns = set(self.model.__mapper__.column_attrs.keys())
        for key in values:
            if key in _IMMUTABLE:
                raise AttributeError(f"'{key}' is immutable and cannot be updated")
            if key not in columns:
                raise AttributeError(f"{self.model.__name__} has no column '{key}'")
        for key, val in values.items():
            setattr(obj, key, val)
        await session.flush()
        await session.refresh(obj)
        return obj
