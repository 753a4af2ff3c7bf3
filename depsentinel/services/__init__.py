"""Service layer — run-state bookkeeping on top of the DAOs."""

from depsentinel.errors import DepSentinelError


class ServiceError(DepSentinelError):
    """Base service exception."""


class NotFoundError(ServiceError):
    """Resource not found."""


class StateTransitionError(ServiceError):
    """Illegal onboarding state transition."""
