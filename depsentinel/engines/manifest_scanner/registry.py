"""Parser registry — discover manifest files and match them to parsers."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from depsentinel.engines.manifest_scanner.models import Dependency

# Vendored / generated trees never hold first-party manifests.
_IGNORED_DIRS = frozenset({".git", "node_modules", "vendor", ".venv", "venv", "target"})


@runtime_checkable
class ManifestParser(Protocol):
    """Interface that every manifest parser must satisfy.

    ``parse`` raises :class:`~depsentinel.errors.UnparsableManifest` when the
    file is structurally invalid.
    """

    manager: str
    ecosystem: str
    file_patterns: list[str]

    def parse(self, file_path: Path, content: str) -> list[Dependency]: ...


PARSER_REGISTRY: dict[str, ManifestParser] = {}


def register_parser(parser: ManifestParser) -> None:
    """Register a parser instance by its manager name."""
    PARSER_REGISTRY[parser.manager] = parser


def _ignored(path: Path, repo_path: Path) -> bool:
    return any(part in _IGNORED_DIRS for part in path.relative_to(repo_path).parts[:-1])


def discover_manifests(
    repo_path: Path,
    enabled_managers: list[str] | None = None,
) -> list[tuple[ManifestParser, Path]]:
    """Walk the repo and match manifest files to registered parsers.

    Returns ``(parser, matched_file)`` pairs ordered by relative path, then
    manager name, so the same snapshot always yields the same order.
    """
    matches: dict[tuple[str, str], tuple[ManifestParser, Path]] = {}
    for manager, parser in PARSER_REGISTRY.items():
        if enabled_managers is not None and manager not in enabled_managers:
            continue
        for pattern in parser.file_patterns:
            for hit in repo_path.glob(pattern):
                if not hit.is_file() or _ignored(hit, repo_path):
                    continue
                rel = hit.relative_to(repo_path).as_posix()
                matches[(rel, manager)] = (parser, hit)
    return [matches[key] for key in sorted(matches)]
