"""PyPI JSON API client."""

from __future__ import annotations

from depsentinel.core.config import HostRule
from depsentinel.engines.registry_resolver.clients.base import (
    PackageNotFound,
    PackageReleases,
    github_source,
    registry_base,
)
from depsentinel.engines.registry_resolver.http import RegistryHttpClient, auth_headers

_SOURCE_KEYS = ("source", "source code", "repository", "code", "github", "homepage")


def _source_url(info: dict) -> str | None:
    urls = {k.lower(): v for k, v in (info.get("project_urls") or {}).items()}
    for key in _SOURCE_KEYS:
        if urls.get(key):
            return github_source(urls[key])
    return github_source(info.get("home_page"))


class PypiClient:
    ecosystem = "pypi"

    def __init__(self, http: RegistryHttpClient) -> None:
        self._http = http

    async def list_versions(
        self, package_id: str, host: str, rule: HostRule | None
    ) -> PackageReleases:
        url = f"{registry_base(host)}/pypi/{package_id}/json"
        resp = await self._http.get(url, headers=auth_headers(rule))
        if resp.status_code == 404:
            raise PackageNotFound(package_id)
        resp.raise_for_status()
        data = resp.json()

        versions: list[str] = []
        for version, files in (data.get("releases") or {}).items():
            # A release whose every file is yanked is not installable.
            if files and all(f.get("yanked") for f in files):
                continue
            versions.append(version)
        return PackageReleases(versions=versions, source_url=_source_url(data.get("info") or {}))
