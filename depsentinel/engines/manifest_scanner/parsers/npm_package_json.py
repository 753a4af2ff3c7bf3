"""Parser for npm package.json files."""

from __future__ import annotations

import json
from pathlib import Path

from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.manifest_scanner.parsers._common import (
    constraint_fields,
    locate_line,
)
from depsentinel.engines.manifest_scanner.registry import register_parser
from depsentinel.errors import UnparsableManifest

_DEP_SECTIONS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)

# Specifier prefixes that point somewhere other than the npm registry.
_NON_REGISTRY_PREFIXES = (
    "file:",
    "link:",
    "workspace:",
    "npm:",
    "git",
    "github:",
    "http:",
    "https:",
)


class NpmPackageJsonParser:
    manager = "npm"
    ecosystem = "npm"
    file_patterns = ["**/package.json"]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise UnparsableManifest(file_path.name, str(exc)) from exc
        if not isinstance(data, dict):
            raise UnparsableManifest(file_path.name, "top level must be an object")

        lines = content.splitlines()
        taken: set[int] = set()
        deps: list[Dependency] = []

        for section in _DEP_SECTIONS:
            table = data.get(section, {})
            if not isinstance(table, dict):
                raise UnparsableManifest(file_path.name, f"{section} must be an object")

            section_line = locate_line(lines, f'"{section}"') or 1
            for name, spec in table.items():
                if not isinstance(spec, str):
                    raise UnparsableManifest(
                        file_path.name, f"{section}.{name}: version must be a string"
                    )

                if spec.startswith(_NON_REGISTRY_PREFIXES) or "/" in spec:
                    current, version_text, skip = None, None, "non-registry-source"
                elif spec in ("", "*", "latest"):
                    current, version_text, skip = None, None, "unpinned"
                else:
                    current, version_text, skip = constraint_fields(spec)

                lineno = locate_line(
                    lines, f'"{name}"', f'"{spec}"', start=section_line - 1, taken=taken
                )
                if lineno is None:
                    skip = skip or "unlocatable"
                    lineno = 0
                else:
                    taken.add(lineno)

                deps.append(
                    Dependency(
                        name=name,
                        ecosystem="npm",
                        manager=self.manager,
                        constraint=spec,
                        current_version=current,
                        manifest_path=file_path.name,
                        line=lineno,
                        version_text=version_text,
                        dep_type=section,
                        skip_reason=skip,
                    )
                )

        return deps


register_parser(NpmPackageJsonParser())
