"""Per-ecosystem registry clients."""

from depsentinel.engines.registry_resolver.clients.base import (
    PackageNotFound,
    PackageReleases,
    RegistryClient,
)
from depsentinel.engines.registry_resolver.clients.crates import CratesClient
from depsentinel.engines.registry_resolver.clients.docker import DockerClient
from depsentinel.engines.registry_resolver.clients.goproxy import GoProxyClient
from depsentinel.engines.registry_resolver.clients.npm import NpmClient
from depsentinel.engines.registry_resolver.clients.pypi import PypiClient
from depsentinel.engines.registry_resolver.http import RegistryHttpClient


def default_clients(http: RegistryHttpClient) -> dict[str, RegistryClient]:
    """One client per supported ecosystem, all sharing *http*."""
    clients: list[RegistryClient] = [
        PypiClient(http),
        NpmClient(http),
        CratesClient(http),
        GoProxyClient(http),
        DockerClient(http),
    ]
    return {c.ecosystem: c for c in clients}


__all__ = [
    "CratesClient",
    "DockerClient",
    "GoProxyClient",
    "NpmClient",
    "PackageNotFound",
    "PackageReleases",
    "PypiClient",
    "RegistryClient",
    "default_clients",
]
