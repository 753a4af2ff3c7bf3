"""Parser for Rust Cargo.toml files."""

from __future__ import annotations

import sys
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.manifest_scanner.parsers._common import (
    constraint_fields,
    locate_line,
)
from depsentinel.engines.manifest_scanner.registry import register_parser
from depsentinel.errors import UnparsableManifest

_DEP_SECTIONS = ("dependencies", "dev-dependencies", "build-dependencies")


def _parse_version(spec: str | dict) -> str | None:
    """Extract version constraint from a dependency spec."""
    if isinstance(spec, str):
        return spec
    if isinstance(spec, dict):
        return spec.get("version")
    return None


class CargoTomlParser:
    manager = "cargo-toml"
    ecosystem = "cargo"
    file_patterns = ["**/Cargo.toml"]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as exc:
            raise UnparsableManifest(file_path.name, str(exc)) from exc

        lines = content.splitlines()
        taken: set[int] = set()
        deps: list[Dependency] = []

        for section in _DEP_SECTIONS:
            dep_table = data.get(section, {})
            if not isinstance(dep_table, dict):
                raise UnparsableManifest(file_path.name, f"[{section}] must be a table")
            for name, spec in dep_table.items():
                version = _parse_version(spec)
                current, version_text, skip = constraint_fields(version)

                # git / path dependencies never come from the registry
                if isinstance(spec, dict) and ("git" in spec or "path" in spec):
                    skip = "git-or-path-source"

                lineno = None
                if version is not None:
                    lineno = locate_line(lines, name, f'"{version}"', taken=taken)
                    if lineno is None:
                        # [dependencies.name] table form: version sits below the header
                        header = locate_line(lines, f"[{section}.{name}]")
                        if header is not None:
                            lineno = locate_line(
                                lines, "version", f'"{version}"', start=header, taken=taken
                            )
                if lineno is None:
                    skip = skip or "unlocatable"
                    lineno = 0
                else:
                    taken.add(lineno)

                deps.append(
                    Dependency(
                        name=name,
                        ecosystem="cargo",
                        manager=self.manager,
                        constraint=version,
                        current_version=current,
                        manifest_path=file_path.name,
                        line=lineno,
                        version_text=version_text,
                        dep_type=section,
                        skip_reason=skip,
                    )
                )

        return deps


register_parser(CargoTomlParser())
