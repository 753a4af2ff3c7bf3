"""VCS host abstraction — branches and proposals (pull requests)."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class ProposalState(str, enum.Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


@dataclass
class Proposal:
    """A published change request on the VCS host."""

    number: int
    branch: str
    title: str
    url: str
    state: ProposalState = ProposalState.OPEN
    body: str = ""


@dataclass
class GitAuthor:
    name: str
    email: str


@dataclass
class BranchWrite:
    """Outcome of a branch write; ``changed`` is False when nothing was rewritten."""

    branch: str
    commit_sha: str
    changed: bool


@runtime_checkable
class VcsHost(Protocol):
    """Operations the publisher and orchestrator need from a VCS host."""

    async def get_default_branch(self, repository: str) -> str: ...

    def clone_url(self, repository: str) -> str: ...

    async def get_file(self, repository: str, path: str, ref: str) -> str | None: ...

    async def create_or_update_branch(
        self,
        repository: str,
        branch: str,
        base_branch: str,
        files: dict[str, str],
        message: str,
        author: GitAuthor,
    ) -> BranchWrite: ...

    async def create_or_update_proposal(
        self,
        repository: str,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        labels: list[str],
    ) -> Proposal: ...

    async def list_open_proposals(self, repository: str) -> list[Proposal]: ...

    async def find_proposal(self, repository: str, branch: str) -> Proposal | None: ...
