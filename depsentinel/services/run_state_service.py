"""RunStateService — persisted onboarding state and per-run bookkeeping."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from depsentinel.dao.dependency_cache_key_dao import DependencyCacheKeyDAO
from depsentinel.dao.repository_state_dao import RepositoryStateDAO
from depsentinel.models.dependency_cache_key import DependencyCacheKey
from depsentinel.models.repository_state import OnboardingStatus, RepositoryState
from depsentinel.services import NotFoundError, StateTransitionError

log = structlog.get_logger("depsentinel.service")

_TRANSITIONS: dict[OnboardingStatus, set[OnboardingStatus]] = {
    OnboardingStatus.UNSCANNED: {
        OnboardingStatus.ONBOARDING,
        OnboardingStatus.ACTIVE,
        OnboardingStatus.DISABLED,
    },
    OnboardingStatus.ONBOARDING: {OnboardingStatus.ACTIVE, OnboardingStatus.DISABLED},
    OnboardingStatus.ACTIVE: {OnboardingStatus.DISABLED},
    OnboardingStatus.DISABLED: {OnboardingStatus.UNSCANNED},
}


class RunStateService:
    """Stateless service: all state lives in the session it is handed."""

    def __init__(
        self,
        repository_state_dao: RepositoryStateDAO,
        cache_key_dao: DependencyCacheKeyDAO,
    ) -> None:
        self._state_dao = repository_state_dao
        self._cache_dao = cache_key_dao

    async def get(self, session: AsyncSession, repository: str) -> RepositoryState | None:
        return await self._state_dao.get_by_repository(session, repository)

    async def get_or_create(
        self,
        session: AsyncSession,
        repository: str,
        platform: str = "github",
    ) -> RepositoryState:
        """Return the state row for *repository*, creating it as ``unscanned``."""
        state = await self._state_dao.get_by_repository(session, repository)
        if state is not None:
            return state
        state = await self._state_dao.add(
            session,
            repository=repository,
            platform=platform,
            status=OnboardingStatus.UNSCANNED,
        )
        log.info("state.created", repository=repository)
        return state

    async def list_all(self, session: AsyncSession) -> list[RepositoryState]:
        return await self._state_dao.list_all(session)

    async def transition(
        self,
        session: AsyncSession,
        repository: str,
        new_status: OnboardingStatus,
        **values: Any,
    ) -> RepositoryState:
        """Move *repository* to *new_status*.

        Extra column *values* (e.g. ``onboarding_branch``) are written in the
        same update. Raises :class:`StateTransitionError` for illegal moves.
        """
        state = await self._require(session, repository)
        if new_status not in _TRANSITIONS[state.status]:
            raise StateTransitionError(
                f"{repository}: cannot move from {state.status.value} to {new_status.value}"
            )
        old = state.status
        updated = await self._state_dao.update(session, state, status=new_status, **values)
        log.info(
            "state.transition",
            repository=repository,
            old=old.value,
            new=new_status.value,
        )
        return updated

    async def record_run(
        self,
        session: AsyncSession,
        repository: str,
        status: str,
        error: str | None = None,
        at: datetime | None = None,
    ) -> RepositoryState:
        """Store the outcome of the latest run."""
        state = await self._require(session, repository)
        return await self._state_dao.update(
            session,
            state,
            last_run_at=at or datetime.now(timezone.utc),
            last_run_status=status,
            last_error=error,
        )

    async def sync_cache_keys(
        self,
        session: AsyncSession,
        repository: str,
        rows: list[dict[str, Any]],
    ) -> int:
        """Replace the per-dependency cache keys recorded for *repository*."""
        state = await self._require(session, repository)
        written = await self._cache_dao.replace_for_repository(session, state.id, rows)
        log.debug("state.cache_keys_synced", repository=repository, count=written)
        return written

    async def list_cache_keys(
        self, session: AsyncSession, repository: str
    ) -> list[DependencyCacheKey]:
        state = await self._require(session, repository)
        return await self._cache_dao.list_by_repository(session, state.id)

    async def _require(self, session: AsyncSession, repository: str) -> RepositoryState:
        state = await self._state_dao.get_by_repository(session, repository)
        if state is None:
            raise NotFoundError(f"repository state for {repository} not found")
        return state
