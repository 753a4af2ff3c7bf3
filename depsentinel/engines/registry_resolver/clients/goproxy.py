"""Go module proxy client (``GOPROXY`` protocol)."""

from __future__ import annotations

from depsentinel.core.config import HostRule
from depsentinel.engines.registry_resolver.clients.base import (
    PackageNotFound,
    PackageReleases,
    registry_base,
)
from depsentinel.engines.registry_resolver.http import RegistryHttpClient, auth_headers


def escape_module_path(module: str) -> str:
    """Case-encode a module path: each upper-case letter becomes ``!`` + lower."""
    return "".join(f"!{c.lower()}" if c.isupper() else c for c in module)


def _source_url(module: str) -> str | None:
    parts = module.split("/")
    if parts[0] in ("github.com", "gitlab.com") and len(parts) >= 3:
        return "https://" + "/".join(parts[:3])
    return None


class GoProxyClient:
    ecosystem = "go"

    def __init__(self, http: RegistryHttpClient) -> None:
        self._http = http

    async def list_versions(
        self, package_id: str, host: str, rule: HostRule | None
    ) -> PackageReleases:
        url = f"{registry_base(host)}/{escape_module_path(package_id)}/@v/list"
        resp = await self._http.get(url, headers=auth_headers(rule))
        # The proxy answers 410 Gone for modules it refuses to serve.
        if resp.status_code in (404, 410):
            raise PackageNotFound(package_id)
        resp.raise_for_status()
        versions = [line.strip() for line in resp.text.splitlines() if line.strip()]
        return PackageReleases(versions=versions, source_url=_source_url(package_id))
