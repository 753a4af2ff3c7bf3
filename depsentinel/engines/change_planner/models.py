"""Data models for the change planner engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from depsentinel.engines.update_policy.models import Candidate
from depsentinel.errors import ConflictError


@dataclass(frozen=True)
class ManifestEdit:
    """Replace ``old_text`` with ``new_text`` on one manifest line (1-based)."""

    manifest_path: str
    line: int
    old_text: str
    new_text: str
    anchor: str = ""


@dataclass
class ChangeSet:
    """Candidates that share one update branch, with their manifest edits."""

    branch: str
    title: str
    candidates: list[Candidate] = field(default_factory=list)
    edits: list[ManifestEdit] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    diff: str = ""
    group_name: str | None = None

    @property
    def dependency_names(self) -> list[str]:
        return [c.dependency.name for c in self.candidates]

    @property
    def commit_message(self) -> str:
        lines = [self.title, ""]
        lines.extend(f"- {c.label} ({c.dependency.manifest_path})" for c in self.candidates)
        return "\n".join(lines)


@dataclass
class Superseded:
    """A candidate dropped because another change set owns its manifest line."""

    candidate: Candidate
    winner: Candidate
    winner_branch: str

    @property
    def reason(self) -> str:
        return (
            f"superseded by {self.winner.label} on branch {self.winner_branch} "
            f"({self.candidate.dependency.manifest_path}:{self.candidate.dependency.line})"
        )


@dataclass
class DeferredChangeSet:
    """A grouped change set held back because a member's schedule window is closed."""

    branch: str
    candidates: list[Candidate]

    @property
    def reason(self) -> str:
        closed = [c.dependency.name for c in self.candidates if not c.in_schedule]
        return f"outside schedule window for {', '.join(closed)}"


@dataclass
class Plan:
    """Everything the publisher needs, plus what was left out and why."""

    change_sets: list[ChangeSet] = field(default_factory=list)
    conflicts: list[ConflictError] = field(default_factory=list)
    superseded: list[Superseded] = field(default_factory=list)
    deferred: list[DeferredChangeSet] = field(default_factory=list)
