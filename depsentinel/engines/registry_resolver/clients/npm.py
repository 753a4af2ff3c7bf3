"""npm registry client."""

from __future__ import annotations

from urllib.parse import quote

from depsentinel.core.config import HostRule
from depsentinel.engines.registry_resolver.clients.base import (
    PackageNotFound,
    PackageReleases,
    github_source,
    registry_base,
)
from depsentinel.engines.registry_resolver.http import RegistryHttpClient, auth_headers

# The abbreviated ("corgi") document omits the repository link.
_FULL_ACCEPT = "application/json"


class NpmClient:
    ecosystem = "npm"

    def __init__(self, http: RegistryHttpClient) -> None:
        self._http = http

    async def list_versions(
        self, package_id: str, host: str, rule: HostRule | None
    ) -> PackageReleases:
        # Scoped names keep their "@" but the slash must be encoded.
        url = f"{registry_base(host)}/{quote(package_id, safe='@')}"
        headers = {"Accept": _FULL_ACCEPT, **auth_headers(rule)}
        resp = await self._http.get(url, headers=headers)
        if resp.status_code == 404:
            raise PackageNotFound(package_id)
        resp.raise_for_status()
        data = resp.json()

        versions = [
            v
            for v, meta in (data.get("versions") or {}).items()
            if not (isinstance(meta, dict) and meta.get("deprecated"))
        ]
        repository = data.get("repository")
        if isinstance(repository, dict):
            repository = repository.get("url")
        return PackageReleases(versions=versions, source_url=github_source(repository))
