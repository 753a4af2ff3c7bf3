"""Async HTTP client for registries with per-call timeout and bounded retries."""

from __future__ import annotations

import asyncio
import base64
import re
from typing import Any

import httpx
import structlog

from depsentinel import __version__
from depsentinel.core.config import HostRule
from depsentinel.errors import TransientNetworkError

log = structlog.get_logger("depsentinel.engine")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds
_DEFAULT_TIMEOUT = 30.0  # seconds, per call


def auth_headers(rule: HostRule | None) -> dict[str, str]:
    """Authorization header for a host rule's credentials, if any."""
    if rule is None:
        return {}
    if rule.token:
        return {"Authorization": f"Bearer {rule.token}"}
    if rule.username and rule.password:
        raw = f"{rule.username}:{rule.password}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}
    return {}


class RegistryHttpClient:
    """Thin async wrapper around httpx shared by all registry clients."""

    def __init__(
        self,
        timeout: float = _DEFAULT_TIMEOUT,
        max_retries: int = _MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_retries = max_retries
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": f"depsentinel/{__version__}"},
            timeout=timeout,
            follow_redirects=True,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RegistryHttpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """GET with exponential backoff on 5xx, 429, timeouts and connection errors.

        Responses below 500 (other than 429) are returned as-is; callers decide
        what a 401 or 404 means. Raises :class:`TransientNetworkError` once
        all attempts are used up.
        """
        last_error = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                resp = await self._client.get(url, headers=headers, params=params)
                if resp.status_code < 500 and resp.status_code != 429:
                    return resp
                log.warning(
                    "registry.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                )
                last_error = f"HTTP {resp.status_code}"
            except httpx.TimeoutException:
                log.warning(
                    "registry.timeout",
                    url=url,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                )
                last_error = "timeout"
            except httpx.TransportError as exc:
                log.warning(
                    "registry.transport_error",
                    url=url,
                    error=str(exc),
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                )
                last_error = f"transport error: {exc}"

            if attempt < self._max_retries - 1:
                delay = _RETRY_BASE_DELAY * (2**attempt)
                await asyncio.sleep(delay)

        raise TransientNetworkError(
            f"GET {url} failed after {self._max_retries} attempts: {last_error}"
        )

    async def get_json(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET and decode JSON; non-2xx raises ``httpx.HTTPStatusError``."""
        resp = await self.get(url, headers=headers, params=params)
        resp.raise_for_status()
        return resp.json()

    @staticmethod
    def parse_next_link(link_header: str) -> str | None:
        """Extract the ``next`` URL from a ``Link`` header."""
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None
