"""Update policy engine — decide which available versions become Candidates.

Rules are applied in fixed precedence:

1. ignore rules (``ignoreDeps``, ``enabled: false``, ``ignoreVersions``)
2. grouping rules (``groupName``)
3. version-range rules (``allowedVersions``)
4. scheduling-window rules (``schedule``)

Where several rules of one kind match, the last one in configuration order
wins, so specific rules can follow broad ones.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from depsentinel.core.config import Config, PackageRule, ScheduleWindow
from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.update_policy.models import (
    Candidate,
    PolicyOutcome,
    PolicyReport,
    PolicySkip,
)
from depsentinel.engines.update_policy.rules import (
    is_ignore_rule,
    rule_matches,
    schedule_open,
)
from depsentinel.engines.update_policy.versioning import (
    Version,
    is_compatible,
    parse_version,
    render_like,
    satisfies,
    update_type,
)
from depsentinel.errors import InvalidConfig

log = structlog.get_logger("depsentinel.engine")

_REGISTRY_PAGES = {
    "npm": "https://www.npmjs.com/package/{name}/v/{version}",
    "pypi": "https://pypi.org/project/{name}/{version}/",
    "cargo": "https://crates.io/crates/{name}/{version}",
    "go": "https://pkg.go.dev/{name}@{version}",
}


def changelog_reference(dep: Dependency, version: str, source_url: str | None) -> str | None:
    """Best link to the release notes of *version*."""
    if source_url:
        source_url = source_url.rstrip("/")
        if source_url.endswith(".git"):
            source_url = source_url[:-4]
        if "github.com/" in source_url:
            return f"{source_url}/releases/tag/{version}"
        return source_url
    if dep.ecosystem == "docker":
        if dep.registry_host != "docker.io":
            return None
        repo = dep.package_id
        if repo.startswith("library/"):
            return f"https://hub.docker.com/_/{repo[len('library/'):]}?tab=tags"
        return f"https://hub.docker.com/r/{repo}/tags"
    template = _REGISTRY_PAGES.get(dep.ecosystem)
    return template.format(name=dep.name, version=version) if template else None


class PolicyEngine:
    """Pure decision logic; holds read-only configuration only."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._ignore_rules = [r for r in config.package_rules if is_ignore_rule(r)]
        self._group_rules = [r for r in config.package_rules if r.group_name]
        self._range_rules = [r for r in config.package_rules if r.allowed_versions]
        self._schedule_rules = [r for r in config.package_rules if r.schedule]

    # ── public ─────────────────────────────────────────────────────────────

    def evaluate(
        self,
        dep: Dependency,
        versions: list[str],
        now: datetime | None = None,
        source_url: str | None = None,
    ) -> PolicyOutcome:
        """Decide eligibility of *versions* (newest first) for *dep*."""
        outcome = PolicyOutcome(dependency=dep)
        now = now or datetime.now(timezone.utc)

        if dep.name in self._config.ignore_deps:
            outcome.skipped.append(PolicySkip(dep, "ignored by ignoreDeps"))
            return outcome
        if dep.skip_reason is not None:
            outcome.skipped.append(PolicySkip(dep, dep.skip_reason))
            return outcome

        current = parse_version(dep.current_version or "", dep.ecosystem)
        if current is None:
            outcome.skipped.append(
                PolicySkip(dep, f"unparsable current version {dep.current_version!r}")
            )
            return outcome

        # 1. ignore rules that disable the dependency as a whole
        for rule in self._ignore_rules:
            if not rule.enabled and not rule.match_update_types and rule_matches(rule, dep):
                outcome.skipped.append(PolicySkip(dep, f"disabled by {rule.label}"))
                return outcome

        outcome.eligible = [v.raw for v in self._eligible(dep, current, versions)]
        if not outcome.eligible:
            return outcome

        for target in self._pick_targets(dep, current, outcome.eligible):
            candidate = self._build_candidate(dep, current, target, now, source_url)
            if candidate.group_name is None and not candidate.in_schedule:
                outcome.skipped.append(
                    PolicySkip(dep, f"{candidate.label} deferred: outside schedule window")
                )
                continue
            outcome.candidates.append(candidate)

        return outcome

    def evaluate_all(
        self,
        dependencies: list[Dependency],
        versions: dict[tuple[str, str, str], list[str]],
        now: datetime | None = None,
        source_urls: dict[tuple[str, str, str], str | None] | None = None,
    ) -> PolicyReport:
        """Evaluate every dependency that has resolved *versions*.

        Dependencies absent from *versions* (failed or skipped resolution)
        are left out; the caller already reported them.
        """
        report = PolicyReport()
        source_urls = source_urls or {}
        for dep in dependencies:
            if dep.skip_reason is None and dep.identity not in versions:
                continue
            outcome = self.evaluate(
                dep,
                versions.get(dep.identity, []),
                now=now,
                source_url=source_urls.get(dep.identity),
            )
            report.outcomes.append(outcome)
        log.info(
            "policy.done",
            dependencies=len(report.outcomes),
            candidates=len(report.candidates),
            skipped=len(report.skipped),
        )
        return report

    # ── stages ─────────────────────────────────────────────────────────────

    def _eligible(self, dep: Dependency, current: Version, versions: list[str]) -> list[Version]:
        """Newer, compatible, stable-enough versions surviving ignore and range rules."""
        eligible: list[Version] = []
        for raw in versions:
            candidate = parse_version(raw, dep.ecosystem)
            if candidate is None or candidate <= current:
                continue
            if not is_compatible(current, candidate):
                continue
            if candidate.prerelease and self._config.ignore_unstable and not current.prerelease:
                continue
            kind = update_type(current, candidate)
            # Go major versions live under a different module path (/v2, /v3).
            if dep.ecosystem == "go" and kind == "major":
                continue
            if self._ignored_version(dep, candidate, kind):
                continue
            if not self._in_allowed_range(dep, candidate, kind):
                continue
            eligible.append(candidate)
        eligible.sort(key=lambda v: v.key, reverse=True)
        return eligible

    def _ignored_version(self, dep: Dependency, version: Version, kind: str) -> bool:
        for rule in self._ignore_rules:
            if not rule_matches(rule, dep, kind):
                continue
            if not rule.enabled:
                return True
            for expression in rule.ignore_versions:
                if self._satisfies(version, expression, dep):
                    return True
        return False

    def _in_allowed_range(self, dep: Dependency, version: Version, kind: str) -> bool:
        for rule in self._range_rules:
            expression = rule.allowed_versions
            if expression is None or not rule_matches(rule, dep, kind):
                continue
            if not self._satisfies(version, expression, dep):
                return False
        return True

    def _pick_targets(
        self, dep: Dependency, current: Version, eligible: list[str]
    ) -> list[Version]:
        """Newest eligible version per update bucket (major / non-major)."""
        parsed = [v for v in (parse_version(raw, dep.ecosystem) for raw in eligible) if v]
        if not self._config.separate_major_minor:
            return parsed[:1]
        picked: dict[str, Version] = {}
        for version in parsed:
            bucket = "major" if update_type(current, version) == "major" else "non-major"
            picked.setdefault(bucket, version)
        return [picked[b] for b in ("non-major", "major") if b in picked]

    def _build_candidate(
        self,
        dep: Dependency,
        current: Version,
        target: Version,
        now: datetime,
        source_url: str | None,
    ) -> Candidate:
        kind = update_type(current, target)
        group_rule = self._last_match(self._group_rules, dep, kind)
        range_rules = [r for r in self._range_rules if rule_matches(r, dep, kind)]
        schedule_rule = self._last_match(self._schedule_rules, dep, kind)

        matched: list[str] = []
        if group_rule is not None:
            matched.append(group_rule.label)
        matched.extend(r.label for r in range_rules)
        if schedule_rule is not None:
            matched.append(schedule_rule.label)

        schedule: list[ScheduleWindow] | None = schedule_rule.schedule if schedule_rule else None
        local_now = now.astimezone(self._config.tzinfo)
        return Candidate(
            dependency=dep,
            target_version=target.raw,
            new_text=render_like(dep.version_text or "", current, target),
            update_type=kind,
            registry_host=dep.registry_host,
            changelog_url=changelog_reference(dep, target.raw, source_url),
            authorized_by=matched[-1] if matched else "default",
            matched_rules=matched,
            group_name=group_rule.group_name if group_rule else None,
            schedule=schedule,
            in_schedule=schedule_open(schedule, local_now),
        )

    # ── helpers ────────────────────────────────────────────────────────────

    @staticmethod
    def _last_match(rules: list[PackageRule], dep: Dependency, kind: str) -> PackageRule | None:
        found: PackageRule | None = None
        for rule in rules:
            if rule_matches(rule, dep, kind):
                found = rule
        return found

    @staticmethod
    def _satisfies(version: Version, expression: str, dep: Dependency) -> bool:
        try:
            return satisfies(version, expression, dep.ecosystem)
        except ValueError as exc:
            raise InvalidConfig(
                f"bad version expression {expression!r} for {dep.name}: {exc}"
            ) from exc
