"""Docker Registry HTTP API v2 client (tag listing with token handshake)."""

from __future__ import annotations

import base64
import re
from urllib.parse import urljoin

import httpx
import structlog

from depsentinel.core.config import HostRule
from depsentinel.engines.registry_resolver.clients.base import (
    PackageNotFound,
    PackageReleases,
    registry_base,
)
from depsentinel.engines.registry_resolver.http import RegistryHttpClient, auth_headers

log = structlog.get_logger("depsentinel.engine")

# Docker Hub's registry API does not live on the image host name.
_API_HOSTS = {"docker.io": "registry-1.docker.io", "index.docker.io": "registry-1.docker.io"}
_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_PAGE_SIZE = 1000
_MAX_PAGES = 10


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Split ``WWW-Authenticate: Bearer realm="..",service=".."`` into parts."""
    scheme, _, params = header.partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(params))


class DockerClient:
    ecosystem = "docker"

    def __init__(self, http: RegistryHttpClient) -> None:
        self._http = http

    async def list_versions(
        self, package_id: str, host: str, rule: HostRule | None
    ) -> PackageReleases:
        base = registry_base(_API_HOSTS.get(host, host))
        url: str | None = f"{base}/v2/{package_id}/tags/list?n={_PAGE_SIZE}"
        headers: dict[str, str] = {}
        tags: list[str] = []
        page = 0

        while url and page < _MAX_PAGES:
            resp = await self._http.get(url, headers=headers)
            if resp.status_code == 401 and not headers.get("Authorization", "").startswith(
                "Bearer"
            ):
                headers = await self._authorize(resp, rule)
                resp = await self._http.get(url, headers=headers)
            if resp.status_code == 404:
                raise PackageNotFound(package_id)
            resp.raise_for_status()

            tags.extend(resp.json().get("tags") or [])
            next_link = self._http.parse_next_link(resp.headers.get("Link", ""))
            url = urljoin(base, next_link) if next_link else None
            page += 1

        return PackageReleases(versions=tags)

    async def _authorize(self, resp: httpx.Response, rule: HostRule | None) -> dict[str, str]:
        """Answer a 401 challenge: Basic credentials directly, Bearer via the token realm."""
        scheme, params = parse_challenge(resp.headers.get("WWW-Authenticate", ""))
        if scheme == "basic":
            return auth_headers(rule)
        if scheme != "bearer" or "realm" not in params:
            resp.raise_for_status()

        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        token_headers: dict[str, str] = {}
        if rule is not None and rule.username and (rule.password or rule.token):
            secret = rule.password or rule.token
            raw = f"{rule.username}:{secret}".encode()
            token_headers["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"
        elif rule is not None and rule.token:
            # Pre-issued registry token, no exchange needed.
            return {"Authorization": f"Bearer {rule.token}"}

        log.debug("docker.token_exchange", realm=params["realm"], scope=query.get("scope"))
        data = await self._http.get_json(params["realm"], headers=token_headers, params=query)
        token = data.get("token") or data.get("access_token")
        if not token:
            raise httpx.HTTPStatusError(
                "token endpoint returned no token", request=resp.request, response=resp
            )
        return {"Authorization": f"Bearer {token}"}
