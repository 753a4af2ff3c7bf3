"""DependencyCacheKeyDAO — dependency_cache_keys table operations."""

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from depsentinel.dao.base import BaseDAO
from depsentinel.models.dependency_cache_key import DependencyCacheKey


class DependencyCacheKeyDAO(BaseDAO[DependencyCacheKey]):
    model = DependencyCacheKey

    async def list_by_repository(
        self,
        session: AsyncSession,
        repository_state_id: uuid.UUID,
    ) -> list[DependencyCacheKey]:
        return await self.find_all(
            session,
            DependencyCacheKey.manifest_path,
            DependencyCacheKey.ecosystem,
            DependencyCacheKey.name,
            repository_state_id=repository_state_id,
        )

    async def replace_for_repository(
        self,
        session: AsyncSession,
        repository_state_id: uuid.UUID,
        rows: list[dict[str, Any]],
    ) -> int:
        """Replace all cache keys of a repository with *rows*.

        Returns the number of rows written.
        """
        await self.delete_where(session, repository_state_id=repository_state_id)
        return await self.add_many(
            session, [{**row, "repository_state_id": repository_state_id} for row in rows]
        )
