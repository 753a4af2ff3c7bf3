"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
import os

import pytest
from pydantic import ValidationError

from depsentinel.core.config import (
    Config,
    ScheduleWindow,
    config_from_mapping,
    expand_env,
    load_config,
)
from depsentinel.errors import ConfigurationError, InvalidConfig

_AUTHOR = "Dep Bot <bot@example.com>"


# ── env expansion ────────────────────────────────────────────────────────


class TestExpandEnv:
    def test_whole_reference_substituted(self):
        assert expand_env("${TOKEN}", {"TOKEN": "abc"}) == "abc"

    def test_unset_whole_reference_becomes_none(self):
        assert expand_env("${MISSING}", {}) is None

    def test_empty_whole_reference_becomes_none(self):
        assert expand_env("${EMPTY}", {"EMPTY": ""}) is None

    def test_embedded_reference(self):
        assert expand_env("https://${HOST}/npm", {"HOST": "r.example.com"}) == (
            "https://r.example.com/npm"
        )

    def test_nested_structures(self):
        data = {"hostRules": [{"matchHost": "npm.pkg.github.com", "token": "${GH}"}]}
        out = expand_env(data, {"GH": "t0k"})
        assert out["hostRules"][0]["token"] == "t0k"

    def test_non_strings_untouched(self):
        assert expand_env(3, {}) == 3
        assert expand_env(True, {}) is True


# ── config_from_mapping ──────────────────────────────────────────────────


class TestConfigFromMapping:
    def test_defaults(self):
        config = config_from_mapping({"gitAuthor": _AUTHOR}, {})
        assert config.repositories == []
        assert config.onboarding is True
        assert config.branch_prefix == "depsentinel"
        assert config.separate_major_minor is True
        assert config.ignore_unstable is True
        assert config.concurrency == 2
        assert config.dry_run is False
        assert config.token is None

    def test_camel_case_keys(self):
        config = config_from_mapping(
            {
                "gitAuthor": _AUTHOR,
                "repositories": ["acme/api"],
                "branchPrefix": "deps/",
                "ignoreDeps": ["left-pad"],
                "hostRules": [{"matchHost": "NPM.example.com", "concurrentRequestLimit": 2}],
            },
            {},
        )
        assert config.branch_prefix == "deps"
        assert config.ignore_deps == ["left-pad"]
        assert config.host_rules[0].match_host == "npm.example.com"
        assert config.host_rules[0].concurrent_request_limit == 2

    def test_author_parts(self):
        config = config_from_mapping({"gitAuthor": _AUTHOR}, {})
        assert config.author_name == "Dep Bot"
        assert config.author_email == "bot@example.com"

    def test_author_parts_of_unvalidated_config(self):
        config = Config.model_construct(git_author="bot")
        with pytest.raises(InvalidConfig, match="gitAuthor"):
            _ = config.author_name

    def test_repository_from_env(self):
        config = config_from_mapping(
            {"gitAuthor": _AUTHOR}, {"DEPSENTINEL_REPOSITORY": "acme/api, acme/web"}
        )
        assert config.repositories == ["acme/api", "acme/web"]

    def test_file_repositories_win_over_env(self):
        config = config_from_mapping(
            {"gitAuthor": _AUTHOR, "repositories": ["acme/api"]},
            {"DEPSENTINEL_REPOSITORY": "other/repo"},
        )
        assert config.repositories == ["acme/api"]

    def test_token_fallback_order(self):
        env = {"DEPSENTINEL_TOKEN": "primary", "GITHUB_TOKEN": "fallback"}
        assert config_from_mapping({"gitAuthor": _AUTHOR}, env).token == "primary"
        env = {"GITHUB_TOKEN": "fallback"}
        assert config_from_mapping({"gitAuthor": _AUTHOR}, env).token == "fallback"

    def test_host_rule_credentials_from_env(self):
        config = config_from_mapping(
            {
                "gitAuthor": _AUTHOR,
                "hostRules": [
                    {"matchHost": "ghcr.io", "username": "bot", "password": "${GHCR_PASSWORD}"}
                ],
            },
            {"GHCR_PASSWORD": "s3cret"},
        )
        rule = config.host_rules[0]
        assert rule.password == "s3cret"
        assert rule.has_credentials

    def test_missing_secret_leaves_rule_without_credentials(self):
        config = config_from_mapping(
            {"gitAuthor": _AUTHOR, "hostRules": [{"matchHost": "ghcr.io", "token": "${NOPE}"}]},
            {},
        )
        assert config.host_rules[0].token is None
        assert not config.host_rules[0].has_credentials

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"gitAuthor": "no email here"},
            {"gitAuthor": _AUTHOR, "repositories": ["not-a-slug"]},
            {"gitAuthor": _AUTHOR, "concurrency": 0},
            {"gitAuthor": _AUTHOR, "timezone": "Mars/Olympus"},
            {"gitAuthor": _AUTHOR, "unknownKey": 1},
            {"gitAuthor": _AUTHOR, "packageRules": [{"matchPackagePatterns": ["("]}]},
            {"gitAuthor": _AUTHOR, "packageRules": [{"matchUpdateTypes": ["huge"]}]},
            {
                "gitAuthor": _AUTHOR,
                "hostRules": [{"matchHost": "docker.io"}, {"matchHost": "DOCKER.IO"}],
            },
            {"gitAuthor": _AUTHOR, "hostRules": [{"matchHost": "x", "concurrentRequestLimit": 0}]},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(InvalidConfig):
            config_from_mapping(data, {})

    def test_invalid_config_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            config_from_mapping({}, {})

    def test_error_message_names_field(self):
        with pytest.raises(InvalidConfig, match="gitAuthor"):
            config_from_mapping({"gitAuthor": "nobody"}, {})

    def test_frozen(self):
        config = config_from_mapping({"gitAuthor": _AUTHOR}, {})
        with pytest.raises(ValidationError):
            config.dry_run = True  # type: ignore[misc]


class TestScheduleWindow:
    def test_defaults_cover_whole_week(self):
        window = ScheduleWindow()
        assert len(window.days) == 7
        assert (window.start, window.end) == ("00:00", "24:00")

    def test_day_names_normalized(self):
        assert ScheduleWindow(days=["Saturday", "SUN"]).days == ["sat", "sun"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"days": ["someday"]},
            {"start": "25:00"},
            {"start": "24:30"},
            {"start": "9am"},
            {"start": "06:00", "end": "05:00"},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ScheduleWindow(**kwargs)


class TestPackageRuleLabel:
    def test_label_prefers_name(self, make_config):
        config = make_config(packageRules=[{"name": "pin-react", "groupName": "react"}])
        assert config.package_rules[0].label == "pin-react"

    def test_label_from_group(self, make_config):
        config = make_config(packageRules=[{"groupName": "react"}])
        assert config.package_rules[0].label == "group:react"

    def test_label_from_matchers(self, make_config):
        config = make_config(packageRules=[{"matchPackageNames": ["a", "b"], "enabled": False}])
        assert config.package_rules[0].label == "packageRule:a,b"


# ── load_config ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"gitAuthor": _AUTHOR, "repositories": ["acme/api"]}))
        config = load_config(path, environ={})
        assert isinstance(config, Config)
        assert config.repositories == ["acme/api"]

    def test_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            'gitAuthor = "Dep Bot <bot@example.com>"\n'
            'repositories = ["acme/api"]\n'
            "\n"
            "[[packageRules]]\n"
            'matchPackageNames = ["react"]\n'
            'groupName = "react"\n'
        )
        config = load_config(path, environ={})
        assert config.package_rules[0].group_name == "react"

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidConfig, match="cannot read"):
            load_config(tmp_path / "nope.json", environ={})

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(InvalidConfig, match="malformed"):
            load_config(path, environ={})

    def test_top_level_must_be_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(InvalidConfig, match="object"):
            load_config(path, environ={})

    def test_dotenv_loaded_when_no_environ_given(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DEPSENTINEL_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("DEPSENTINEL_TEST_NPM_TOKEN", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("DEPSENTINEL_TEST_NPM_TOKEN=from-dotenv\n")
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "gitAuthor": _AUTHOR,
                    "hostRules": [
                        {
                            "matchHost": "registry.npmjs.org",
                            "token": "${DEPSENTINEL_TEST_NPM_TOKEN}",
                        }
                    ],
                }
            )
        )
        try:
            config = load_config(path, dotenv_path=env_file)
        finally:
            os.environ.pop("DEPSENTINEL_TEST_NPM_TOKEN", None)
        assert config.host_rules[0].token == "from-dotenv"
