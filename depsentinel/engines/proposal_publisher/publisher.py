"""Proposal publisher — turn ChangeSets into branches and proposals, idempotently.

Identity of a proposal is ``(repository, branch)``. Re-publishing the same
ChangeSet refreshes the open proposal in place; an unchanged branch and an
unchanged proposal are left alone. A proposal closed without merging is not
reopened until its target versions change; the targets are recorded in a
hidden marker at the end of the body.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal

import httpx
import structlog

from depsentinel.core.config import CONFIG_FILENAMES
from depsentinel.engines.change_planner.models import ChangeSet
from depsentinel.engines.proposal_publisher.vcs import (
    GitAuthor,
    Proposal,
    ProposalState,
    VcsHost,
)
from depsentinel.errors import PublishError, TransientNetworkError

log = structlog.get_logger("depsentinel.engine")

PublishAction = Literal["created", "updated", "unchanged", "dry-run", "closed"]

ONBOARDING_FILENAME = CONFIG_FILENAMES[0]

_FOOTER = (
    "---\n"
    "This proposal is refreshed on every run while it stays open. "
    "Close it to stop receiving this update."
)

_TARGETS_MARKER = "<!-- depsentinel-targets: {} -->"


@dataclass
class PublishResult:
    repository: str
    branch: str
    action: PublishAction
    proposal: Proposal | None = None
    branch_changed: bool = False


def targets_marker(change_set: ChangeSet) -> str:
    """Hidden body line naming every ``manifest:package@target`` of *change_set*."""
    targets = sorted(
        f"{c.dependency.manifest_path}:{c.dependency.name}@{c.target_version}"
        for c in change_set.candidates
    )
    return _TARGETS_MARKER.format(" ".join(targets))


def render_body(change_set: ChangeSet) -> str:
    """Markdown body listing every candidate, its authorizing rule and changelog."""
    lines = [
        "This proposal updates the following dependencies:",
        "",
        "| Package | Change | Type | File | Authorized by |",
        "|---|---|---|---|---|",
    ]
    for c in change_set.candidates:
        dep = c.dependency
        package = f"[{dep.name}]({c.changelog_url})" if c.changelog_url else f"`{dep.name}`"
        lines.append(
            f"| {package} | `{dep.current_version}` -> `{c.target_version}` "
            f"| {c.update_type} | `{dep.manifest_path}` | {c.authorized_by} |"
        )
    rules = sorted({r for c in change_set.candidates for r in c.matched_rules})
    if rules:
        lines += ["", "Matched package rules: " + ", ".join(f"`{r}`" for r in rules)]
    lines += ["", _FOOTER, targets_marker(change_set)]
    return "\n".join(lines)


def onboarding_config(labels: list[str] | None = None) -> str:
    """Starter configuration committed by the onboarding proposal."""
    data: dict[str, object] = {"packageRules": []}
    if labels:
        data["labels"] = labels
    return json.dumps(data, indent=2) + "\n"


def render_onboarding_body(manifests: list[str]) -> str:
    lines = [
        "Welcome to depsentinel. Merge this proposal to enable automated "
        "dependency update proposals for this repository.",
        "",
        f"It adds `{ONBOARDING_FILENAME}`, where package rules, groups and "
        "schedules can be configured.",
    ]
    if manifests:
        lines += ["", "Detected manifests:", ""]
        lines += [f"- `{m}`" for m in manifests]
    else:
        lines += ["", "No supported manifests were detected yet."]
    lines += ["", "Closing this proposal without merging disables depsentinel here."]
    return "\n".join(lines)


class ProposalPublisher:
    """Publishes ChangeSets through a :class:`VcsHost`."""

    def __init__(
        self,
        host: VcsHost,
        author: GitAuthor,
        labels: list[str] | None = None,
        dry_run: bool = False,
    ) -> None:
        self._host = host
        self._author = author
        self._labels = list(labels or [])
        self._dry_run = dry_run
        self._open: dict[str, dict[str, Proposal]] = {}

    # ── public ─────────────────────────────────────────────────────────────

    async def publish(
        self, repository: str, change_set: ChangeSet, base_branch: str
    ) -> PublishResult:
        """Write *change_set* to its branch, then create or refresh its proposal.

        Raises :class:`PublishError` when the host rejects either write.
        """
        if self._dry_run:
            log.info(
                "publisher.dry_run",
                repository=repository,
                branch=change_set.branch,
                title=change_set.title,
                files=sorted(change_set.files),
                diff=change_set.diff,
            )
            return PublishResult(repository, change_set.branch, "dry-run")

        closed = await self._closed_for_same_targets(repository, change_set)
        if closed is not None:
            log.info(
                "publisher.closed_by_user",
                repository=repository,
                branch=change_set.branch,
                proposal=closed.number,
            )
            return PublishResult(repository, change_set.branch, "closed", closed)

        return await self.publish_files(
            repository,
            branch=change_set.branch,
            base_branch=base_branch,
            files=change_set.files,
            title=change_set.title,
            body=render_body(change_set),
            message=change_set.commit_message,
        )

    async def publish_onboarding(
        self, repository: str, branch: str, base_branch: str, manifests: list[str]
    ) -> PublishResult:
        """Open (or refresh) the proposal that adds the starter configuration."""
        title = "Configure depsentinel"
        if self._dry_run:
            log.info("publisher.dry_run", repository=repository, branch=branch, title=title)
            return PublishResult(repository, branch, "dry-run")
        return await self.publish_files(
            repository,
            branch=branch,
            base_branch=base_branch,
            files={ONBOARDING_FILENAME: onboarding_config(self._labels)},
            title=title,
            body=render_onboarding_body(manifests),
            message=f"Add {ONBOARDING_FILENAME}",
        )

    async def publish_files(
        self,
        repository: str,
        *,
        branch: str,
        base_branch: str,
        files: dict[str, str],
        title: str,
        body: str,
        message: str,
    ) -> PublishResult:
        try:
            open_proposals = await self._open_proposals(repository)
            written = await self._host.create_or_update_branch(
                repository, branch, base_branch, files, message, self._author
            )
            existing = open_proposals.get(branch)
            if (
                existing is not None
                and not written.changed
                and existing.title == title
                and existing.body == body
            ):
                log.info("publisher.unchanged", repository=repository, branch=branch)
                return PublishResult(repository, branch, "unchanged", existing, False)

            proposal = await self._host.create_or_update_proposal(
                repository, branch, base_branch, title, body, self._labels
            )
        except (httpx.HTTPError, TransientNetworkError) as exc:
            raise PublishError(f"{repository} {branch}: {exc}") from exc

        open_proposals[branch] = proposal
        action: PublishAction = "updated" if existing is not None else "created"
        log.info(
            "publisher.published",
            repository=repository,
            branch=branch,
            action=action,
            proposal=proposal.number,
            branch_changed=written.changed,
        )
        return PublishResult(repository, branch, action, proposal, written.changed)

    # ── internal ───────────────────────────────────────────────────────────

    async def _closed_for_same_targets(
        self, repository: str, change_set: ChangeSet
    ) -> Proposal | None:
        """The proposal for this branch if it was closed unmerged with identical targets."""
        try:
            if change_set.branch in await self._open_proposals(repository):
                return None
            found = await self._host.find_proposal(repository, change_set.branch)
        except (httpx.HTTPError, TransientNetworkError) as exc:
            raise PublishError(f"{repository} {change_set.branch}: {exc}") from exc
        if found is None or found.state != ProposalState.CLOSED:
            return None
        if targets_marker(change_set) not in found.body:
            return None
        return found

    async def _open_proposals(self, repository: str) -> dict[str, Proposal]:
        cached = self._open.get(repository)
        if cached is None:
            cached = {p.branch: p for p in await self._host.list_open_proposals(repository)}
            self._open[repository] = cached
        return cached
