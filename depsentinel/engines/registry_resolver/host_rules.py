"""Host rule selection — exactly one rule may match a registry host."""

from __future__ import annotations

from fnmatch import fnmatchcase
from urllib.parse import urlsplit

from depsentinel.core.config import HostRule
from depsentinel.errors import AmbiguousHostRule, NoCredential


def pattern_matches(pattern: str, host: str) -> bool:
    """Match *host* against a ``matchHost`` pattern.

    * ``docker.io`` — the host itself and any subdomain
    * ``https://registry.example.com/npm`` — URL form, compared on hostname
    * ``*.example.com`` — shell-style glob
    """
    host = host.lower()
    if "://" in pattern:
        return (urlsplit(pattern).hostname or "") == host
    if "*" in pattern or "?" in pattern:
        return fnmatchcase(host, pattern)
    return host == pattern or host.endswith("." + pattern)


def _sample_host(pattern: str) -> str:
    """A concrete host that *pattern* matches, used for overlap detection."""
    if "://" in pattern:
        return urlsplit(pattern).hostname or pattern
    return pattern.replace("*", "x").replace("?", "x")


class HostRuleSet:
    """Ordered host rules with strict single-match selection."""

    def __init__(self, rules: list[HostRule]) -> None:
        self._rules = list(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def matching(self, host: str) -> list[HostRule]:
        return [r for r in self._rules if pattern_matches(r.match_host, host)]

    def select(self, host: str) -> HostRule | None:
        """Return the single rule for *host*, or None when no rule matches.

        Raises :class:`AmbiguousHostRule` when more than one rule matches and
        :class:`NoCredential` when the rule demands credentials it lacks.
        """
        matches = self.matching(host)
        if len(matches) > 1:
            raise AmbiguousHostRule(host, [r.match_host for r in matches])
        if not matches:
            return None
        rule = matches[0]
        if rule.require_auth and not rule.has_credentials:
            raise NoCredential(host, rule.match_host)
        return rule

    def overlaps(self) -> list[tuple[str, str]]:
        """Pairs of patterns that can match the same host."""
        found: list[tuple[str, str]] = []
        for i, a in enumerate(self._rules):
            for b in self._rules[i + 1 :]:
                if pattern_matches(a.match_host, _sample_host(b.match_host)) or pattern_matches(
                    b.match_host, _sample_host(a.match_host)
                ):
                    found.append((a.match_host, b.match_host))
        return found
