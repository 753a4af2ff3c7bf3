"""RepositoryStateDAO — repository_states table operations."""

from sqlalchemy.ext.asyncio import AsyncSession

from depsentinel.dao.base import BaseDAO
from depsentinel.models.repository_state import RepositoryState


class RepositoryStateDAO(BaseDAO[RepositoryState]):
    model = RepositoryState

    async def get_by_repository(
        self, session: AsyncSession, repository: str
    ) -> RepositoryState | None:
        return await self.find_one(session, repository=repository)

    async def list_all(self, session: AsyncSession) -> list[RepositoryState]:
        return await self.find_all(session, RepositoryState.repository)
