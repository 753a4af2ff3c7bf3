"""Tests for host rule selection."""

from __future__ import annotations

import pytest

from depsentinel.core.config import HostRule
from depsentinel.engines.registry_resolver import HostRuleSet
from depsentinel.engines.registry_resolver.host_rules import pattern_matches
from depsentinel.errors import AmbiguousHostRule, ConfigurationError, NoCredential


@pytest.mark.parametrize(
    ("pattern", "host", "expected"),
    [
        ("docker.io", "docker.io", True),
        ("docker.io", "registry-1.docker.io", True),
        ("docker.io", "notdocker.io", False),
        ("https://npm.example.com/api/npm", "npm.example.com", True),
        ("https://npm.example.com/api/npm", "example.com", False),
        ("*.example.com", "npm.example.com", True),
        ("*.example.com", "example.com", False),
        ("ghcr.io", "GHCR.IO", True),
    ],
)
def test_pattern_matches(pattern, host, expected):
    assert pattern_matches(pattern, host) is expected


class TestSelect:
    def test_no_match_returns_none(self):
        rules = HostRuleSet([HostRule(match_host="ghcr.io", token="t")])
        assert rules.select("registry.npmjs.org") is None

    def test_single_match(self):
        rule = HostRule(match_host="ghcr.io", token="t")
        assert HostRuleSet([rule]).select("ghcr.io") is rule

    def test_ambiguous(self):
        rules = HostRuleSet(
            [
                HostRule(match_host="example.com", token="a"),
                HostRule(match_host="*.example.com", token="b"),
            ]
        )
        with pytest.raises(AmbiguousHostRule) as exc_info:
            rules.select("npm.example.com")
        assert exc_info.value.patterns == ["example.com", "*.example.com"]
        assert isinstance(exc_info.value, ConfigurationError)

    def test_required_credentials_missing(self):
        rules = HostRuleSet([HostRule(match_host="npm.internal", require_auth=True)])
        with pytest.raises(NoCredential):
            rules.select("npm.internal")

    def test_required_credentials_present(self):
        rule = HostRule(
            match_host="npm.internal", require_auth=True, username="bot", password="pw"
        )
        assert HostRuleSet([rule]).select("npm.internal") is rule

    def test_rule_without_credentials_is_anonymous(self):
        rule = HostRule(match_host="pypi.org", concurrent_request_limit=1)
        assert HostRuleSet([rule]).select("pypi.org") is rule


class TestOverlaps:
    def test_disjoint(self):
        rules = HostRuleSet(
            [HostRule(match_host="ghcr.io"), HostRule(match_host="registry.npmjs.org")]
        )
        assert rules.overlaps() == []

    def test_suffix_overlap(self):
        rules = HostRuleSet(
            [HostRule(match_host="docker.io"), HostRule(match_host="registry-1.docker.io")]
        )
        assert rules.overlaps() == [("docker.io", "registry-1.docker.io")]

    def test_glob_overlap(self):
        rules = HostRuleSet(
            [HostRule(match_host="*.example.com"), HostRule(match_host="https://npm.example.com")]
        )
        assert len(rules.overlaps()) == 1
