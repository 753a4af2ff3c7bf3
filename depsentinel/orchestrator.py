"""Orchestrator — drives one invocation across all configured repositories.

Per repository, a persisted state machine decides what a run does::

    unscanned ──> onboarding ──> active
        │             │
        └─────────────┴──> disabled

* ``onboarding``: only the configuration proposal is published; the run
  polls it until it is merged (``active``) or closed (``disabled``).
* ``active``: Scanner → Resolver → Policy → Planner → Publisher. Planning
  starts only after every resolution has finished.

Errors are attributed to the narrowest scope they affect and reported as
:class:`SkippedUnit` entries; only configuration errors and unexpected
exceptions end a repository run early.
"""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depsentinel.core.config import CONFIG_FILENAMES, Config
from depsentinel.engines.change_planner import ChangePlanner
from depsentinel.engines.manifest_scanner import ScanReport, scan
from depsentinel.engines.manifest_scanner.repo import shallow_clone
from depsentinel.engines.proposal_publisher import (
    GitAuthor,
    ProposalPublisher,
    ProposalState,
    PublishResult,
    VcsHost,
)
from depsentinel.engines.registry_resolver import (
    HostRuleSet,
    RegistryResolver,
    ResolutionReport,
    cache_key,
)
from depsentinel.engines.registry_resolver.clients import RegistryClient
from depsentinel.engines.update_policy import PolicyEngine
from depsentinel.errors import ConfigurationError, PublishError
from depsentinel.models.repository_state import OnboardingStatus
from depsentinel.progress import PhaseTracker
from depsentinel.services.run_state_service import RunStateService

log = structlog.get_logger("depsentinel.engine")

Scope = Literal["dependency", "manifest", "change_set", "repository"]
RunStatus = Literal["success", "partial", "onboarding", "disabled", "config-error", "failed"]

SnapshotFn = Callable[[str, str, Path], Awaitable[Path]]

# Skip kinds that make a repository run partial rather than successful.
_FAILURE_KINDS = frozenset(
    {
        "ParseError",
        "ResolutionFailed",
        "PublishError",
        "ConflictError",
        "ConflictingEdits",
        "StaleEdit",
    }
)


@dataclass
class SkippedUnit:
    """Something left out of a run, at the narrowest scope it affected."""

    scope: Scope
    subject: str
    reason: str
    kind: str


@dataclass
class RepositoryResult:
    repository: str
    status: RunStatus
    onboarding_status: str
    proposals: list[PublishResult] = field(default_factory=list)
    skipped: list[SkippedUnit] = field(default_factory=list)
    phases: list[dict[str, Any]] = field(default_factory=list)
    dependencies: int = 0
    error: str | None = None


@dataclass
class RunSummary:
    results: list[RepositoryResult] = field(default_factory=list)

    @property
    def skipped(self) -> list[SkippedUnit]:
        return [s for r in self.results for s in r.skipped]

    @property
    def exit_code(self) -> int:
        return exit_code(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "repositories": [
                {
                    "repository": r.repository,
                    "status": r.status,
                    "onboarding_status": r.onboarding_status,
                    "dependencies": r.dependencies,
                    "error": r.error,
                    "proposals": [
                        {
                            "branch": p.branch,
                            "action": p.action,
                            "number": p.proposal.number if p.proposal else None,
                            "url": p.proposal.url if p.proposal else None,
                        }
                        for p in r.proposals
                    ],
                    "skipped": [asdict(s) for s in r.skipped],
                    "phases": r.phases,
                }
                for r in self.results
            ],
        }


def exit_code(summary: RunSummary) -> int:
    """1 if any repository hit a configuration error or every repository failed."""
    if any(r.status == "config-error" for r in summary.results):
        return 1
    if summary.results and all(r.status == "failed" for r in summary.results):
        return 1
    return 0


def _dependency_subject(dep) -> str:
    return f"{dep.name} ({dep.manifest_path})"


async def clone_snapshot(host: VcsHost, repository: str, ref: str, workdir: Path) -> Path:
    return await shallow_clone(host.clone_url(repository), ref, workdir)


class Orchestrator:
    """Runs repositories with bounded concurrency; config is the only shared state."""

    def __init__(
        self,
        config: Config,
        session_factory: async_sessionmaker[AsyncSession],
        state_service: RunStateService,
        host: VcsHost,
        registry_clients: dict[str, RegistryClient],
        *,
        snapshot: SnapshotFn | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._state = state_service
        self._host = host
        self._clients = registry_clients
        self._snapshot = snapshot or (
            lambda repo, ref, workdir: clone_snapshot(host, repo, ref, workdir)
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── public ─────────────────────────────────────────────────────────────

    async def run_all(self, repositories: list[str] | None = None) -> RunSummary:
        """Run every repository, at most ``concurrency`` at a time."""
        repos = list(repositories if repositories is not None else self._config.repositories)
        sem = asyncio.Semaphore(self._config.concurrency)

        async def _run_one(repository: str) -> RepositoryResult:
            async with sem:
                return await self.run_repository(repository)

        results = await asyncio.gather(*(_run_one(r) for r in repos))
        summary = RunSummary(results=list(results))
        log.info(
            "orchestrator.done",
            repositories=len(summary.results),
            skipped=len(summary.skipped),
            exit_code=summary.exit_code,
        )
        return summary

    async def run_repository(self, repository: str) -> RepositoryResult:
        """One repository run. Never raises except on cancellation."""
        with structlog.contextvars.bound_contextvars(repository=repository):
            tracker = PhaseTracker()
            result = RepositoryResult(repository, "failed", OnboardingStatus.UNSCANNED.value)
            try:
                await self._advance(repository, result, tracker)
            except ConfigurationError as exc:
                log.error("orchestrator.config_error", error=str(exc))
                result.status = "config-error"
                result.error = str(exc)
                result.skipped.append(
                    SkippedUnit("repository", repository, str(exc), type(exc).__name__)
                )
            except Exception as exc:
                log.exception("orchestrator.repository_failed")
                result.status = "failed"
                result.error = f"{type(exc).__name__}: {exc}"
                result.skipped.append(
                    SkippedUnit("repository", repository, result.error, type(exc).__name__)
                )
            result.phases = tracker.get_summary()
            await self._record(result)
            return result

    # ── state machine ──────────────────────────────────────────────────────

    async def _advance(
        self, repository: str, result: RepositoryResult, tracker: PhaseTracker
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                state = await self._state.get_or_create(session, repository)
        status = state.status
        result.onboarding_status = status.value

        if status == OnboardingStatus.DISABLED:
            log.info("orchestrator.disabled")
            result.status = "disabled"
            return

        base_branch = self._config.base_branch or await self._host.get_default_branch(repository)

        if status == OnboardingStatus.UNSCANNED:
            status = await self._first_encounter(repository, base_branch, result, tracker)
        elif status == OnboardingStatus.ONBOARDING:
            status = await self._check_onboarding(
                repository, base_branch, state.onboarding_branch, result, tracker
            )

        result.onboarding_status = status.value
        if status == OnboardingStatus.ONBOARDING:
            result.status = "onboarding"
        elif status == OnboardingStatus.DISABLED:
            result.status = "disabled"
        else:
            await self._run_pipeline(repository, base_branch, result, tracker)

    async def _first_encounter(
        self,
        repository: str,
        base_branch: str,
        result: RepositoryResult,
        tracker: PhaseTracker,
    ) -> OnboardingStatus:
        if not self._config.onboarding or await self._has_config_file(repository, base_branch):
            await self._transition(repository, OnboardingStatus.ACTIVE)
            return OnboardingStatus.ACTIVE

        branch = f"{self._config.branch_prefix}/configure"
        published = await self._publish_onboarding(repository, base_branch, branch, result, tracker)
        await self._transition(
            repository,
            OnboardingStatus.ONBOARDING,
            onboarding_branch=branch,
            onboarding_proposal_number=published.proposal.number if published.proposal else None,
        )
        return OnboardingStatus.ONBOARDING

    async def _check_onboarding(
        self,
        repository: str,
        base_branch: str,
        branch: str | None,
        result: RepositoryResult,
        tracker: PhaseTracker,
    ) -> OnboardingStatus:
        branch = branch or f"{self._config.branch_prefix}/configure"
        proposal = await self._host.find_proposal(repository, branch)
        if proposal is not None and proposal.state == ProposalState.MERGED:
            log.info("orchestrator.onboarding_merged", proposal=proposal.number)
            await self._transition(repository, OnboardingStatus.ACTIVE)
            return OnboardingStatus.ACTIVE
        if proposal is not None and proposal.state == ProposalState.CLOSED:
            log.info("orchestrator.onboarding_closed", proposal=proposal.number)
            await self._transition(repository, OnboardingStatus.DISABLED)
            return OnboardingStatus.DISABLED
        # Still open (or deleted): keep it fresh.
        await self._publish_onboarding(repository, base_branch, branch, result, tracker)
        return OnboardingStatus.ONBOARDING

    async def _publish_onboarding(
        self,
        repository: str,
        base_branch: str,
        branch: str,
        result: RepositoryResult,
        tracker: PhaseTracker,
    ) -> PublishResult:
        report = await self._scan(repository, base_branch, result, tracker)
        publisher = self._publisher()
        with tracker.phase("onboarding"):
            published = await publisher.publish_onboarding(
                repository, branch, base_branch, report.manifests
            )
        result.proposals.append(published)
        return published

    async def _has_config_file(self, repository: str, base_branch: str) -> bool:
        for name in CONFIG_FILENAMES:
            if await self._host.get_file(repository, name, base_branch) is not None:
                log.info("orchestrator.config_found", path=name)
                return True
        return False

    # ── pipeline ───────────────────────────────────────────────────────────

    async def _run_pipeline(
        self,
        repository: str,
        base_branch: str,
        result: RepositoryResult,
        tracker: PhaseTracker,
    ) -> None:
        report = await self._scan(repository, base_branch, result, tracker)

        with tracker.phase("resolve") as p:
            resolver = RegistryResolver(HostRuleSet(self._config.host_rules), self._clients)
            resolution = await resolver.resolve_all(report.dependencies)
            p.detail = f"{len(resolution.versions)} resolved, {len(resolution.failures)} failed"
        for failure in resolution.failures:
            dep = failure.dependency
            result.skipped.append(
                SkippedUnit(
                    "dependency", _dependency_subject(dep), failure.reason, "ResolutionFailed"
                )
            )

        with tracker.phase("policy") as p:
            policy = PolicyEngine(self._config).evaluate_all(
                report.dependencies,
                resolution.versions,
                now=self._clock(),
                source_urls=resolution.source_urls,
            )
            p.detail = f"{len(policy.candidates)} candidates"
        for skip in policy.skipped:
            dep = skip.dependency
            result.skipped.append(
                SkippedUnit("dependency", _dependency_subject(dep), skip.reason, "policy")
            )

        with tracker.phase("plan") as p:
            plan = ChangePlanner(self._config.branch_prefix).plan(
                policy.candidates, report.contents
            )
            p.detail = f"{len(plan.change_sets)} change sets"
        for conflict in plan.conflicts:
            subject = getattr(conflict, "branch", "") or repository
            result.skipped.append(
                SkippedUnit("change_set", subject, str(conflict), type(conflict).__name__)
            )
        for superseded in plan.superseded:
            dep = superseded.candidate.dependency
            result.skipped.append(
                SkippedUnit("dependency", _dependency_subject(dep), superseded.reason, "superseded")
            )
        for deferred in plan.deferred:
            result.skipped.append(
                SkippedUnit("change_set", deferred.branch, deferred.reason, "deferred")
            )

        publisher = self._publisher()
        with tracker.phase("publish") as p:
            for change_set in plan.change_sets:
                try:
                    published = await publisher.publish(repository, change_set, base_branch)
                except PublishError as exc:
                    log.warning(
                        "orchestrator.publish_failed", branch=change_set.branch, error=str(exc)
                    )
                    result.skipped.append(
                        SkippedUnit("change_set", change_set.branch, str(exc), "PublishError")
                    )
                    continue
                if published.action == "closed" and published.proposal is not None:
                    reason = (
                        f"proposal #{published.proposal.number} was closed without merging"
                    )
                    result.skipped.append(
                        SkippedUnit("change_set", change_set.branch, reason, "closed")
                    )
                    continue
                result.proposals.append(published)
            p.detail = f"{len(result.proposals)} published"

        await self._sync_cache_keys(repository, report, resolution)

        partial = any(s.kind in _FAILURE_KINDS for s in result.skipped)
        result.status = "partial" if partial else "success"

    async def _scan(
        self,
        repository: str,
        base_branch: str,
        result: RepositoryResult,
        tracker: PhaseTracker,
    ) -> ScanReport:
        with tempfile.TemporaryDirectory(prefix="depsentinel-") as tmp:
            with tracker.phase("snapshot"):
                path = await self._snapshot(repository, base_branch, Path(tmp))
            with tracker.phase("scan") as p:
                report = await asyncio.to_thread(scan, path, self._config.enabled_managers)
                p.detail = (
                    f"{len(report.dependencies)} dependencies in {len(report.contents)} manifests"
                )
        result.dependencies = len(report.dependencies)
        for failure in report.failures:
            result.skipped.append(
                SkippedUnit("manifest", failure.manifest_path, failure.reason, "ParseError")
            )
        return report

    # ── persistence ────────────────────────────────────────────────────────

    async def _sync_cache_keys(
        self, repository: str, report: ScanReport, resolution: ResolutionReport
    ) -> None:
        resolved_at = self._clock()
        rows: dict[tuple[str, str, str], dict[str, Any]] = {}
        for dep in report.dependencies:
            if dep.identity not in resolution.versions:
                continue
            rows[dep.identity] = {
                "ecosystem": dep.ecosystem,
                "name": dep.name,
                "manifest_path": dep.manifest_path,
                "cache_key": "/".join(cache_key(dep)),
                "current_version": dep.current_version,
                "latest_version": resolution.latest(dep),
                "resolved_at": resolved_at,
            }
        async with self._session_factory() as session:
            async with session.begin():
                await self._state.sync_cache_keys(session, repository, list(rows.values()))

    async def _transition(self, repository: str, status: OnboardingStatus, **values: Any) -> None:
        if self._config.dry_run:
            log.info("orchestrator.dry_run_transition", status=status.value)
            return
        async with self._session_factory() as session:
            async with session.begin():
                await self._state.transition(session, repository, status, **values)

    async def _record(self, result: RepositoryResult) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._state.record_run(
                        session,
                        result.repository,
                        result.status,
                        error=result.error,
                        at=self._clock(),
                    )
        except Exception:
            log.warning("orchestrator.record_failed", exc_info=True)

    def _publisher(self) -> ProposalPublisher:
        author = GitAuthor(self._config.author_name, self._config.author_email)
        return ProposalPublisher(
            self._host, author, labels=self._config.labels, dry_run=self._config.dry_run
        )
