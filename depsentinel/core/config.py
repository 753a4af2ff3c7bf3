"""Configuration loading — JSON/TOML file + environment-sourced credentials.

The environment is read exactly once, here. Everything downstream receives
the resulting :class:`Config` and never looks at ``os.environ`` itself.
"""

from __future__ import annotations

import json
import os
import re
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from depsentinel.errors import InvalidConfig

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_GIT_AUTHOR_RE = re.compile(r"^\s*(?P<name>[^<>]+?)\s*<(?P<email>[^<>\s]+)>\s*$")
_HHMM_RE = re.compile(r"^([01]\d|2[0-4]):([0-5]\d)$")

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
UPDATE_TYPES = ("major", "minor", "patch")

CONFIG_FILENAMES = ("depsentinel.json", ".github/depsentinel.json")


class _ConfigModel(BaseModel):
    """Base for config sections: camelCase keys on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class HostRule(_ConfigModel):
    """Binds a registry host pattern to credentials."""

    match_host: str
    username: str | None = None
    password: str | None = None
    token: str | None = None
    concurrent_request_limit: int = 4
    require_auth: bool = False

    @field_validator("match_host")
    @classmethod
    def _normalize_host(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("matchHost must not be empty")
        return v

    @field_validator("concurrent_request_limit")
    @classmethod
    def _positive_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrentRequestLimit must be >= 1")
        return v

    @property
    def has_credentials(self) -> bool:
        return bool(self.token) or bool(self.username and self.password)


class ScheduleWindow(_ConfigModel):
    """A weekly time window, e.g. ``{"days": ["sat", "sun"], "start": "00:00", "end": "06:00"}``."""

    days: list[str] = list(WEEKDAYS)
    start: str = "00:00"
    end: str = "24:00"

    @field_validator("days")
    @classmethod
    def _check_days(cls, v: list[str]) -> list[str]:
        days = [d.strip().lower()[:3] for d in v]
        unknown = [d for d in days if d not in WEEKDAYS]
        if unknown:
            raise ValueError(f"unknown weekday(s): {unknown}")
        return days

    @field_validator("start", "end")
    @classmethod
    def _check_time(cls, v: str) -> str:
        m = _HHMM_RE.match(v.strip())
        if not m or (m.group(1) == "24" and m.group(2) != "00"):
            raise ValueError(f"time must be HH:MM, got {v!r}")
        return v.strip()

    @model_validator(mode="after")
    def _check_order(self) -> ScheduleWindow:
        if self.start >= self.end:
            raise ValueError(f"window start {self.start} must be before end {self.end}")
        return self


class PackageRule(_ConfigModel):
    """Matchers plus the actions applied to matching dependencies."""

    name: str | None = None
    match_package_names: list[str] = []
    match_package_patterns: list[str] = []
    match_managers: list[str] = []
    match_ecosystems: list[str] = []
    match_update_types: list[str] = []

    enabled: bool = True
    ignore_versions: list[str] = []
    group_name: str | None = None
    allowed_versions: str | None = None
    schedule: list[ScheduleWindow] | None = None

    @field_validator("match_package_patterns")
    @classmethod
    def _compile_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid matchPackagePatterns entry {pattern!r}: {exc}")
        return v

    @field_validator("match_update_types")
    @classmethod
    def _check_update_types(cls, v: list[str]) -> list[str]:
        unknown = [t for t in v if t not in UPDATE_TYPES]
        if unknown:
            raise ValueError(f"unknown update type(s): {unknown}")
        return v

    @property
    def label(self) -> str:
        """Human-readable rule identity for audit output."""
        if self.name:
            return self.name
        if self.group_name:
            return f"group:{self.group_name}"
        matchers = self.match_package_names or self.match_package_patterns
        if matchers:
            return "packageRule:" + ",".join(matchers)
        return "packageRule"


class Config(_ConfigModel):
    """Complete, validated orchestrator configuration."""

    repositories: list[str] = []
    git_author: str
    onboarding: bool = True
    platform: Literal["github"] = "github"
    endpoint: str = "https://api.github.com"
    token: str | None = None
    host_rules: list[HostRule] = []
    package_rules: list[PackageRule] = []
    ignore_deps: list[str] = []
    enabled_managers: list[str] | None = None
    branch_prefix: str = "depsentinel"
    base_branch: str | None = None
    labels: list[str] = []
    separate_major_minor: bool = True
    ignore_unstable: bool = True
    timezone: str = "UTC"
    concurrency: int = 2
    dry_run: bool = False

    @field_validator("git_author")
    @classmethod
    def _check_git_author(cls, v: str) -> str:
        if not _GIT_AUTHOR_RE.match(v):
            raise ValueError(f"gitAuthor must look like 'Name <email>', got {v!r}")
        return v.strip()

    @field_validator("repositories")
    @classmethod
    def _check_repositories(cls, v: list[str]) -> list[str]:
        cleaned = [r.strip().strip("/") for r in v if r and r.strip()]
        for repo in cleaned:
            if repo.count("/") != 1:
                raise ValueError(f"repository must be 'owner/name', got {repo!r}")
        return cleaned

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v

    @field_validator("concurrency")
    @classmethod
    def _check_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrency must be >= 1")
        return v

    @field_validator("branch_prefix")
    @classmethod
    def _check_branch_prefix(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("branchPrefix must not be empty")
        return v

    @model_validator(mode="after")
    def _unique_host_patterns(self) -> Config:
        seen: set[str] = set()
        for rule in self.host_rules:
            if rule.match_host in seen:
                raise ValueError(f"duplicate hostRules matchHost {rule.match_host!r}")
            seen.add(rule.match_host)
        return self

    def _author_part(self, part: str) -> str:
        m = _GIT_AUTHOR_RE.match(self.git_author)
        if m is None:
            raise InvalidConfig(f"gitAuthor {self.git_author!r} is not 'Name <email>'")
        return m.group(part)

    @property
    def author_name(self) -> str:
        return self._author_part("name")

    @property
    def author_email(self) -> str:
        return self._author_part("email")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ── loading ──────────────────────────────────────────────────────────────


def expand_env(value: Any, environ: Mapping[str, str]) -> Any:
    """Recursively substitute ``${VAR}`` references from *environ*.

    A string that is exactly one reference to an unset or empty variable
    becomes ``None``, so optional credentials simply disappear.
    """
    if isinstance(value, str):
        whole = _ENV_REF_RE.fullmatch(value)
        if whole:
            return environ.get(whole.group(1)) or None
        return _ENV_REF_RE.sub(lambda m: environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [expand_env(item, environ) for item in value]
    if isinstance(value, dict):
        return {key: expand_env(item, environ) for key, item in value.items()}
    return value


def config_from_mapping(data: Mapping[str, Any], environ: Mapping[str, str]) -> Config:
    """Build a :class:`Config` from raw (camelCase) data plus an environment."""
    raw = expand_env(dict(data), environ)

    if not raw.get("repositories") and environ.get("DEPSENTINEL_REPOSITORY"):
        raw["repositories"] = environ["DEPSENTINEL_REPOSITORY"].split(",")
    if not raw.get("token"):
        raw["token"] = environ.get("DEPSENTINEL_TOKEN") or environ.get("GITHUB_TOKEN") or None

    try:
        return Config.model_validate(raw)
    except ValidationError as exc:
        messages = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "<root>"
            messages.append(f"{loc}: {err['msg']}")
        raise InvalidConfig("; ".join(messages)) from exc


def load_config(
    path: Path | str,
    environ: Mapping[str, str] | None = None,
    *,
    dotenv_path: Path | str | None = None,
) -> Config:
    """Load and validate a configuration file.

    ``.json`` and ``.toml`` files are supported. When *environ* is not given,
    a ``.env`` file (if any) is loaded into the process environment first and
    ``os.environ`` is used.

    Raises :class:`InvalidConfig` on unreadable, malformed or invalid input.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidConfig(f"cannot read config {path}: {exc}") from exc

    try:
        if path.suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise InvalidConfig(f"malformed config {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise InvalidConfig(f"config {path} must contain an object at top level")

    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ

    return config_from_mapping(data, environ)
