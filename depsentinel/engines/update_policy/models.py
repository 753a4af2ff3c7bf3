"""Data models for the update policy engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from depsentinel.core.config import ScheduleWindow
from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.update_policy.versioning import UpdateType


@dataclass
class Candidate:
    """A proposed version bump for one dependency. Never persisted."""

    dependency: Dependency
    target_version: str
    new_text: str
    update_type: UpdateType
    registry_host: str
    changelog_url: str | None
    authorized_by: str
    matched_rules: list[str] = field(default_factory=list)
    group_name: str | None = None
    schedule: list[ScheduleWindow] | None = None
    in_schedule: bool = True

    @property
    def edit_key(self) -> tuple[str, int]:
        """The manifest line this candidate rewrites."""
        return (self.dependency.manifest_path, self.dependency.line)

    @property
    def label(self) -> str:
        dep = self.dependency
        return f"{dep.name} {dep.current_version} -> {self.target_version}"


@dataclass
class PolicySkip:
    """A dependency (or one of its updates) the policy engine declined."""

    dependency: Dependency
    reason: str


@dataclass
class PolicyOutcome:
    """Decision for a single dependency."""

    dependency: Dependency
    eligible: list[str] = field(default_factory=list)
    candidates: list[Candidate] = field(default_factory=list)
    skipped: list[PolicySkip] = field(default_factory=list)


@dataclass
class PolicyReport:
    """Decisions for every dependency of one repository run."""

    outcomes: list[PolicyOutcome] = field(default_factory=list)

    @property
    def candidates(self) -> list[Candidate]:
        return [c for o in self.outcomes for c in o.candidates]

    @property
    def skipped(self) -> list[PolicySkip]:
        return [s for o in self.outcomes for s in o.skipped]
