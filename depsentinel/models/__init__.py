"""ORM models — import all so Base.metadata sees every table."""

from depsentinel.models.dependency_cache_key import DependencyCacheKey
from depsentinel.models.repository_state import OnboardingStatus, RepositoryState

__all__ = ["DependencyCacheKey", "OnboardingStatus", "RepositoryState"]
