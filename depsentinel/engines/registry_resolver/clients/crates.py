"""crates.io API client."""

from __future__ import annotations

from depsentinel.core.config import HostRule
from depsentinel.engines.registry_resolver.clients.base import (
    PackageNotFound,
    PackageReleases,
    github_source,
    registry_base,
)
from depsentinel.engines.registry_resolver.http import RegistryHttpClient, auth_headers


class CratesClient:
    ecosystem = "cargo"

    def __init__(self, http: RegistryHttpClient) -> None:
        self._http = http

    async def list_versions(
        self, package_id: str, host: str, rule: HostRule | None
    ) -> PackageReleases:
        url = f"{registry_base(host)}/api/v1/crates/{package_id}"
        resp = await self._http.get(url, headers=auth_headers(rule))
        if resp.status_code == 404:
            raise PackageNotFound(package_id)
        resp.raise_for_status()
        data = resp.json()

        versions = [v["num"] for v in data.get("versions") or [] if not v.get("yanked")]
        crate = data.get("crate") or {}
        return PackageReleases(versions=versions, source_url=github_source(crate.get("repository")))
