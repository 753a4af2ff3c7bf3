"""Change planner — partition Candidates into branch-scoped ChangeSets.

Planning runs in four passes:

1. assign every candidate its branch (group branch, split by major and
   non-major, or per-dependency branch)
2. drop branches that would need two different edits on one manifest line
3. settle lines claimed by several branches: grouped beats ungrouped, then
   the newest target wins; the rest are superseded
4. defer grouped branches with a closed schedule window, then render edits
   and diffs for what is left
"""

from __future__ import annotations

import re
from collections import defaultdict

import structlog

from depsentinel.engines.change_planner.edits import apply_edits, unified_diff
from depsentinel.engines.change_planner.models import (
    ChangeSet,
    DeferredChangeSet,
    ManifestEdit,
    Plan,
    Superseded,
)
from depsentinel.engines.update_policy.models import Candidate
from depsentinel.engines.update_policy.versioning import parse_version
from depsentinel.errors import ConflictError, ConflictingEdits

log = structlog.get_logger("depsentinel.engine")

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """``@types/node`` -> ``types-node``; ``ghcr.io/org/app`` -> ``ghcr-io-org-app``."""
    return _SLUG_RE.sub("-", name.lower()).strip("-") or "dependency"


def _target_major(candidate: Candidate) -> int:
    version = parse_version(candidate.target_version, candidate.dependency.ecosystem)
    return version.major if version is not None else 0


def _precedence(candidate: Candidate) -> tuple:
    """Sort key: higher wins a contested manifest line."""
    version = parse_version(candidate.target_version, candidate.dependency.ecosystem)
    return (candidate.group_name is not None, version.key if version else ())


def _candidate_order(candidate: Candidate) -> tuple[str, int, str, str]:
    dep = candidate.dependency
    return (dep.manifest_path, dep.line, dep.name, candidate.target_version)


class ChangePlanner:
    """Pure planning logic; no I/O."""

    def __init__(self, branch_prefix: str = "depsentinel") -> None:
        self._prefix = branch_prefix.strip("/")

    def branch_for(self, candidate: Candidate) -> str:
        if candidate.group_name:
            # Major updates of a group travel on their own branch.
            group = slugify(candidate.group_name)
            if candidate.update_type == "major":
                return f"{self._prefix}/major-{group}"
            return f"{self._prefix}/{group}"
        slug = slugify(candidate.dependency.name)
        major = _target_major(candidate)
        if candidate.update_type == "major":
            return f"{self._prefix}/major-{slug}-{major}.x"
        return f"{self._prefix}/{slug}-{major}.x"

    def plan(self, candidates: list[Candidate], contents: dict[str, str]) -> Plan:
        """Build the plan for one repository run.

        *contents* maps manifest path to its current text in the scanned
        snapshot.
        """
        result = Plan()
        branches: dict[str, list[Candidate]] = defaultdict(list)
        for candidate in sorted(candidates, key=_candidate_order):
            branches[self.branch_for(candidate)].append(candidate)

        self._drop_conflicting_branches(branches, result)
        self._settle_contested_lines(branches, result)

        for branch in sorted(branches):
            members = branches[branch]
            if not members:
                continue
            if members[0].group_name and not all(c.in_schedule for c in members):
                result.deferred.append(DeferredChangeSet(branch, members))
                log.info("planner.deferred", branch=branch, candidates=len(members))
                continue
            try:
                result.change_sets.append(self._build(branch, members, contents))
            except ConflictError as exc:
                log.warning("planner.stale_edit", branch=branch, error=str(exc))
                result.conflicts.append(exc)

        log.info(
            "planner.done",
            change_sets=len(result.change_sets),
            conflicts=len(result.conflicts),
            superseded=len(result.superseded),
            deferred=len(result.deferred),
        )
        return result

    # ── passes ─────────────────────────────────────────────────────────────

    @staticmethod
    def _drop_conflicting_branches(
        branches: dict[str, list[Candidate]], result: Plan
    ) -> None:
        for branch in sorted(branches):
            by_line: dict[tuple[str, int], list[Candidate]] = defaultdict(list)
            for candidate in branches[branch]:
                by_line[candidate.edit_key].append(candidate)
            for (path, line), members in sorted(by_line.items()):
                if len({c.new_text for c in members}) > 1:
                    exc = ConflictingEdits(
                        branch, path, line, sorted({c.dependency.name for c in members})
                    )
                    log.warning("planner.conflict", branch=branch, error=str(exc))
                    result.conflicts.append(exc)
                    branches[branch] = []
                    break
                # Identical edits collapse into one.
                for duplicate in members[1:]:
                    branches[branch].remove(duplicate)

    @staticmethod
    def _settle_contested_lines(
        branches: dict[str, list[Candidate]], result: Plan
    ) -> None:
        claims: dict[tuple[str, int], list[tuple[str, Candidate]]] = defaultdict(list)
        for branch in sorted(branches):
            for candidate in branches[branch]:
                claims[candidate.edit_key].append((branch, candidate))

        for _, contenders in sorted(claims.items()):
            if len(contenders) < 2:
                continue
            winner_branch, winner = max(
                contenders, key=lambda bc: (_precedence(bc[1]), bc[0])
            )
            for branch, candidate in contenders:
                if candidate is winner:
                    continue
                branches[branch].remove(candidate)
                superseded = Superseded(candidate, winner, winner_branch)
                log.info("planner.superseded", branch=branch, reason=superseded.reason)
                result.superseded.append(superseded)

    def _build(self, branch: str, members: list[Candidate], contents: dict[str, str]) -> ChangeSet:
        edits = [
            ManifestEdit(
                manifest_path=c.dependency.manifest_path,
                line=c.dependency.line,
                old_text=c.dependency.version_text or "",
                new_text=c.new_text,
                anchor=c.dependency.name,
            )
            for c in members
        ]
        by_path: dict[str, list[ManifestEdit]] = defaultdict(list)
        for edit in edits:
            by_path[edit.manifest_path].append(edit)

        files: dict[str, str] = {}
        diffs: list[str] = []
        for path in sorted(by_path):
            before = contents.get(path)
            if before is None:
                raise ConflictError(f"no snapshot content for {path}")
            after = apply_edits(before, by_path[path])
            files[path] = after
            diffs.append(unified_diff(path, before, after))

        group_name = members[0].group_name
        return ChangeSet(
            branch=branch,
            title=self._title(members, group_name),
            candidates=list(members),
            edits=edits,
            files=files,
            diff="".join(diffs),
            group_name=group_name,
        )

    @staticmethod
    def _title(members: list[Candidate], group_name: str | None) -> str:
        first = members[0]
        suffix = " (major)" if first.update_type == "major" else ""
        if group_name:
            return f"Update {group_name}{suffix}"
        return f"Update {first.dependency.name} to {first.target_version}{suffix}"


def plan(
    candidates: list[Candidate], contents: dict[str, str], branch_prefix: str = "depsentinel"
) -> Plan:
    """Module-level shortcut for :meth:`ChangePlanner.plan`."""
    return ChangePlanner(branch_prefix).plan(candidates, contents)
