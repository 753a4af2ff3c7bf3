"""Data models for the manifest scanner engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Ecosystem = Literal["pypi", "npm", "cargo", "go", "docker"]

DEFAULT_REGISTRY_HOSTS: dict[str, str] = {
    "pypi": "pypi.org",
    "npm": "registry.npmjs.org",
    "cargo": "crates.io",
    "go": "proxy.golang.org",
    "docker": "docker.io",
}


@dataclass
class Dependency:
    """A single dependency declared in a manifest file.

    ``version_text`` is the literal version substring found on ``line``;
    the change planner rewrites exactly that substring.
    """

    name: str
    ecosystem: Ecosystem
    manager: str
    constraint: str | None
    current_version: str | None
    manifest_path: str
    line: int
    version_text: str | None = None
    registry_host: str = ""
    dep_type: str = "dependencies"
    skip_reason: str | None = None

    def __post_init__(self) -> None:
        if not self.registry_host:
            self.registry_host = DEFAULT_REGISTRY_HOSTS[self.ecosystem]

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.ecosystem, self.name, self.manifest_path)

    @property
    def package_id(self) -> str:
        """Registry-side identifier (image repository path for docker)."""
        if self.ecosystem == "docker":
            return docker_repository(self.name)
        return self.name

    @property
    def updatable(self) -> bool:
        return self.skip_reason is None and self.current_version is not None


@dataclass
class ManifestFailure:
    """A manifest that matched a known pattern but could not be parsed."""

    manifest_path: str
    manager: str
    reason: str


@dataclass
class ScanReport:
    """Result of scanning one repository snapshot."""

    dependencies: list[Dependency] = field(default_factory=list)
    failures: list[ManifestFailure] = field(default_factory=list)
    contents: dict[str, str] = field(default_factory=dict)

    @property
    def manifests(self) -> list[str]:
        return sorted(self.contents)


def split_image(image: str) -> tuple[str, str, str | None]:
    """Split an image reference into ``(host, repository, tag)``.

    ``postgres:16`` -> ``("docker.io", "postgres", "16")``;
    ``ghcr.io/org/app:1.2`` -> ``("ghcr.io", "org/app", "1.2")``.
    Digests are left in the repository part; callers skip them.
    """
    host = "docker.io"
    rest = image
    first, sep, remainder = image.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        host, rest = first, remainder
    tag: str | None = None
    last_slash = rest.rfind("/")
    colon = rest.rfind(":")
    if colon > last_slash:
        rest, tag = rest[:colon], rest[colon + 1 :]
    return host, rest, tag


def docker_repository(name: str) -> str:
    """Official images live under ``library/`` on Docker Hub."""
    host, repo, _ = split_image(name)
    if host == "docker.io" and "/" not in repo:
        return f"library/{repo}"
    return repo
