"""Registry resolver — list available versions for every scanned dependency.

One resolver serves one repository run. Within that run, lookups for the
same ``(host, ecosystem, package)`` share a single request (including
requests still in flight), and each host gets its own concurrency limit
taken from its host rule.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx
import structlog

from depsentinel.core.config import HostRule
from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.registry_resolver.clients import (
    PackageNotFound,
    PackageReleases,
    RegistryClient,
)
from depsentinel.engines.registry_resolver.host_rules import HostRuleSet
from depsentinel.engines.update_policy.versioning import sort_versions
from depsentinel.errors import ResolutionFailed, TransientNetworkError

log = structlog.get_logger("depsentinel.engine")

_DEFAULT_HOST_LIMIT = 4

CacheKey = tuple[str, str, str]


def cache_key(dep: Dependency) -> CacheKey:
    return (dep.registry_host, dep.ecosystem, dep.package_id)


@dataclass
class ResolutionFailure:
    dependency: Dependency
    reason: str


@dataclass
class ResolutionReport:
    """Versions per dependency identity, newest first, plus per-dependency failures."""

    versions: dict[tuple[str, str, str], list[str]] = field(default_factory=dict)
    source_urls: dict[tuple[str, str, str], str | None] = field(default_factory=dict)
    failures: list[ResolutionFailure] = field(default_factory=list)

    def latest(self, dep: Dependency) -> str | None:
        found = self.versions.get(dep.identity)
        return found[0] if found else None


class RegistryResolver:
    """Cached, rate-limited version lookups for one repository run."""

    def __init__(self, host_rules: HostRuleSet, clients: dict[str, RegistryClient]) -> None:
        self._host_rules = host_rules
        self._clients = clients
        self._cache: dict[CacheKey, asyncio.Task[PackageReleases]] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self.requests_made = 0

    # ── public ─────────────────────────────────────────────────────────────

    def check_hosts(self, dependencies: list[Dependency]) -> None:
        """Select a host rule for every registry host up front.

        Raises the configuration errors of :meth:`HostRuleSet.select` before
        any network traffic happens.
        """
        for host in sorted({d.registry_host for d in dependencies if d.updatable}):
            self._host_rules.select(host)

    async def resolve(self, dep: Dependency) -> PackageReleases:
        """Available versions of *dep*, newest first.

        Raises :class:`ResolutionFailed` when the registry cannot answer.
        Configuration errors from host rule selection propagate unchanged.
        """
        rule = self._host_rules.select(dep.registry_host)
        key = cache_key(dep)
        task = self._cache.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(dep, rule))
            self._cache[key] = task
        else:
            log.debug("resolver.cache_hit", dependency=dep.name, host=dep.registry_host)
        # A cancelled waiter leaves the shared lookup running; see cancel_pending.
        return await asyncio.shield(task)

    async def resolve_all(self, dependencies: list[Dependency]) -> ResolutionReport:
        """Resolve every updatable dependency; failures are recorded, not raised."""
        report = ResolutionReport()
        targets = [d for d in dependencies if d.updatable]
        self.check_hosts(targets)

        try:
            results = await asyncio.gather(
                *(self.resolve(d) for d in targets), return_exceptions=True
            )
        except asyncio.CancelledError:
            await self.cancel_pending()
            raise
        for dep, result in zip(targets, results):
            if isinstance(result, ResolutionFailed):
                report.failures.append(ResolutionFailure(dep, result.reason))
            elif isinstance(result, BaseException):
                raise result
            else:
                report.versions[dep.identity] = result.versions
                report.source_urls[dep.identity] = result.source_url

        log.info(
            "resolver.done",
            resolved=len(report.versions),
            failed=len(report.failures),
            requests=self.requests_made,
        )
        return report

    async def cancel_pending(self) -> None:
        """Cancel lookups still in flight and wait until they have stopped."""
        pending = [t for t in self._cache.values() if not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if pending:
            log.info("resolver.cancelled", lookups=len(pending))

    # ── internal ───────────────────────────────────────────────────────────

    def _semaphore(self, host: str, rule: HostRule | None) -> asyncio.Semaphore:
        sem = self._semaphores.get(host)
        if sem is None:
            limit = rule.concurrent_request_limit if rule else _DEFAULT_HOST_LIMIT
            sem = asyncio.Semaphore(limit)
            self._semaphores[host] = sem
        return sem

    async def _fetch(self, dep: Dependency, rule: HostRule | None) -> PackageReleases:
        client = self._clients.get(dep.ecosystem)
        if client is None:
            raise ResolutionFailed(dep.name, f"no registry client for {dep.ecosystem}")

        async with self._semaphore(dep.registry_host, rule):
            self.requests_made += 1
            try:
                releases = await client.list_versions(dep.package_id, dep.registry_host, rule)
                ordered = sort_versions(releases.versions, dep.ecosystem)
            except PackageNotFound:
                raise ResolutionFailed(dep.name, f"not found on {dep.registry_host}") from None
            except TransientNetworkError as exc:
                raise ResolutionFailed(dep.name, str(exc)) from exc
            except httpx.HTTPStatusError as exc:
                raise ResolutionFailed(
                    dep.name, f"HTTP {exc.response.status_code} from {dep.registry_host}"
                ) from exc
            except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
                # Malformed payloads fail this dependency only.
                raise ResolutionFailed(dep.name, f"bad registry response: {exc}") from exc

        log.debug(
            "resolver.resolved",
            dependency=dep.name,
            host=dep.registry_host,
            versions=len(ordered),
            latest=ordered[0] if ordered else None,
        )
        return PackageReleases(versions=ordered, source_url=releases.source_url)
