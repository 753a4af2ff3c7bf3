"""Update policy engine — version ordering and rule evaluation."""

from depsentinel.engines.update_policy.engine import PolicyEngine, changelog_reference
from depsentinel.engines.update_policy.models import (
    Candidate,
    PolicyOutcome,
    PolicyReport,
    PolicySkip,
)

__all__ = [
    "Candidate",
    "PolicyEngine",
    "PolicyOutcome",
    "PolicyReport",
    "PolicySkip",
    "changelog_reference",
]
