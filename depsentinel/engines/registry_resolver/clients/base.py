"""Registry client protocol shared by every ecosystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from depsentinel.core.config import HostRule


@dataclass
class PackageReleases:
    """Published versions of one package as listed by a registry."""

    versions: list[str] = field(default_factory=list)
    source_url: str | None = None


class PackageNotFound(Exception):
    """Raised by a client when the registry has no such package."""


@runtime_checkable
class RegistryClient(Protocol):
    """Lists published versions of a package on one kind of registry."""

    ecosystem: str

    async def list_versions(
        self, package_id: str, host: str, rule: HostRule | None
    ) -> PackageReleases: ...


def registry_base(host: str) -> str:
    """``https://<host>`` unless *host* already carries a scheme."""
    if "://" in host:
        return host.rstrip("/")
    return f"https://{host}"


def github_source(url: str | None) -> str | None:
    """Normalize a repository URL (``git+https://...git``) to a browsable one."""
    if not url:
        return None
    url = url.strip()
    if url.startswith("git+"):
        url = url[len("git+") :]
    if url.startswith("git://"):
        url = "https://" + url[len("git://") :]
    if url.startswith("git@github.com:"):
        url = "https://github.com/" + url[len("git@github.com:") :]
    if url.endswith(".git"):
        url = url[:-4]
    if not url.startswith(("http://", "https://")):
        return None
    return url.rstrip("/")
