"""Manifest scanner — walk a repository snapshot and collect dependencies."""

from __future__ import annotations

from pathlib import Path

import structlog

# Ensure parsers are registered before any scan runs.
import depsentinel.engines.manifest_scanner.parsers  # noqa: F401
from depsentinel.engines.manifest_scanner.models import ManifestFailure, ScanReport
from depsentinel.engines.manifest_scanner.registry import discover_manifests
from depsentinel.errors import UnparsableManifest

log = structlog.get_logger("depsentinel.engine")


def _read_manifest(file_path: Path, rel: str) -> str:
    """Decode strictly; rewriting a lossily decoded file would corrupt unrelated bytes."""
    raw = file_path.read_bytes()
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise UnparsableManifest(
            rel, f"not valid UTF-8 (byte 0x{raw[exc.start]:02x} at offset {exc.start})"
        ) from None


def scan(repo_path: Path, enabled_managers: list[str] | None = None) -> ScanReport:
    """Scan a local repo directory for dependencies.

    Dependencies are ordered by manifest path, then declaration order. A
    manifest that fails to parse is recorded in ``failures`` and the scan
    carries on with the remaining files.
    """
    report = ScanReport()
    for parser, file_path in discover_manifests(repo_path, enabled_managers):
        rel = file_path.relative_to(repo_path).as_posix()
        try:
            content = _read_manifest(file_path, rel)
            parsed = parser.parse(file_path, content)
        except UnparsableManifest as exc:
            log.warning(
                "scanner.unparsable", manifest=rel, manager=parser.manager, error=exc.reason
            )
            report.failures.append(
                ManifestFailure(manifest_path=rel, manager=parser.manager, reason=exc.reason)
            )
            continue

        # Fix manifest_path to be relative to repo root
        for dep in parsed:
            dep.manifest_path = rel
        report.dependencies.extend(parsed)
        report.contents[rel] = content

    log.info(
        "scanner.done",
        manifests=len(report.contents),
        dependencies=len(report.dependencies),
        failures=len(report.failures),
    )
    return report
