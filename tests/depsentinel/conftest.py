"""Shared fixtures for depsentinel tests.

Nothing here touches the network: registries and the VCS host are replaced
by in-memory fakes, and the state store is a throwaway SQLite file.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

import pytest
import pytest_asyncio

from depsentinel.core.config import Config, config_from_mapping
from depsentinel.core.database import create_engine, create_session_factory, init_db
from depsentinel.dao.dependency_cache_key_dao import DependencyCacheKeyDAO
from depsentinel.dao.repository_state_dao import RepositoryStateDAO
from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.proposal_publisher.vcs import (
    BranchWrite,
    GitAuthor,
    Proposal,
    ProposalState,
)
from depsentinel.engines.registry_resolver.clients import PackageNotFound, PackageReleases
from depsentinel.errors import TransientNetworkError
from depsentinel.services.run_state_service import RunStateService

# ── config / dependency factories ────────────────────────────────────────


@pytest.fixture
def make_config():
    """Build a validated Config from camelCase overrides."""

    def _make(environ: dict[str, str] | None = None, **data) -> Config:
        raw = {"gitAuthor": "Dep Bot <bot@example.com>", **data}
        return config_from_mapping(raw, environ or {})

    return _make


@pytest.fixture
def make_dep():
    def _make(
        name: str = "lodash",
        current: str = "4.17.20",
        *,
        ecosystem: str = "npm",
        manager: str = "npm",
        manifest_path: str = "package.json",
        line: int = 3,
        version_text: str | None = None,
        **kwargs,
    ) -> Dependency:
        return Dependency(
            name=name,
            ecosystem=ecosystem,
            manager=manager,
            constraint=kwargs.pop("constraint", current),
            current_version=current,
            manifest_path=manifest_path,
            line=line,
            version_text=version_text if version_text is not None else current,
            **kwargs,
        )

    return _make


# ── fakes ────────────────────────────────────────────────────────────────


class FakeRegistryClient:
    """In-memory registry: ``releases`` maps package id to versions."""

    def __init__(
        self,
        ecosystem: str,
        releases: dict[str, list[str]],
        *,
        failing: set[str] | None = None,
        source_urls: dict[str, str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.ecosystem = ecosystem
        self.releases = releases
        self.failing = failing or set()
        self.source_urls = source_urls or {}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = 0

    async def list_versions(self, package_id, host, rule) -> PackageReleases:
        self.calls.append((package_id, host))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if package_id in self.failing:
                raise TransientNetworkError(f"GET {package_id} failed after 3 attempts: timeout")
            if package_id not in self.releases:
                raise PackageNotFound(package_id)
            return PackageReleases(
                versions=list(self.releases[package_id]),
                source_url=self.source_urls.get(package_id),
            )
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1


class FakeVcsHost:
    """In-memory VCS host that records every write."""

    def __init__(self, default_branch: str = "main") -> None:
        self.default_branch = default_branch
        self.files: dict[tuple[str, str], str] = {}
        self.branches: dict[tuple[str, str], dict[str, str]] = {}
        self.proposals: list[tuple[str, Proposal]] = []
        self.branch_writes: list[tuple[str, str]] = []
        self.proposal_writes: list[tuple[str, str]] = []
        self.fail_branches: set[str] = set()

    async def get_default_branch(self, repository: str) -> str:
        return self.default_branch

    def clone_url(self, repository: str) -> str:
        return f"https://git.example.com/{repository}.git"

    async def get_file(self, repository: str, path: str, ref: str) -> str | None:
        return self.files.get((repository, path))

    async def create_or_update_branch(
        self,
        repository: str,
        branch: str,
        base_branch: str,
        files: dict[str, str],
        message: str,
        author: GitAuthor,
    ) -> BranchWrite:
        if branch in self.fail_branches:
            raise TransientNetworkError(f"PATCH refs/heads/{branch} failed after 3 attempts")
        sha = hashlib.sha1(repr(sorted(files.items())).encode()).hexdigest()
        key = (repository, branch)
        if self.branches.get(key) == files:
            return BranchWrite(branch, sha, changed=False)
        self.branches[key] = dict(files)
        self.branch_writes.append(key)
        return BranchWrite(branch, sha, changed=True)

    async def create_or_update_proposal(
        self,
        repository: str,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        labels: list[str],
    ) -> Proposal:
        self.proposal_writes.append((repository, branch))
        for repo, proposal in self.proposals:
            if (
                repo == repository
                and proposal.branch == branch
                and proposal.state == ProposalState.OPEN
            ):
                proposal.title, proposal.body = title, body
                return proposal
        proposal = Proposal(
            number=len(self.proposals) + 1,
            branch=branch,
            title=title,
            url=f"https://git.example.com/{repository}/pull/{len(self.proposals) + 1}",
            body=body,
        )
        self.proposals.append((repository, proposal))
        return proposal

    async def list_open_proposals(self, repository: str) -> list[Proposal]:
        return [
            Proposal(p.number, p.branch, p.title, p.url, p.state, p.body)
            for repo, p in self.proposals
            if repo == repository and p.state == ProposalState.OPEN
        ]

    async def find_proposal(self, repository: str, branch: str) -> Proposal | None:
        matches = [p for repo, p in self.proposals if repo == repository and p.branch == branch]
        if not matches:
            return None
        matches.sort(key=lambda p: (p.state == ProposalState.OPEN, p.number), reverse=True)
        return matches[0]

    def open_proposals(self, repository: str) -> list[Proposal]:
        return [
            p for repo, p in self.proposals if repo == repository and p.state == ProposalState.OPEN
        ]

    def set_state(self, repository: str, branch: str, state: ProposalState) -> None:
        for repo, proposal in self.proposals:
            if repo == repository and proposal.branch == branch:
                proposal.state = state


@pytest.fixture
def vcs_host() -> FakeVcsHost:
    return FakeVcsHost()


@pytest.fixture
def fake_registry_client():
    return FakeRegistryClient


# ── state store ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Fresh SQLite database per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        async with s.begin():
            yield s


@pytest.fixture
def state_service() -> RunStateService:
    return RunStateService(RepositoryStateDAO(), DependencyCacheKeyDAO())
