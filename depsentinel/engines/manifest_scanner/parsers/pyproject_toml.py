"""Parser for Python pyproject.toml [project] dependencies."""

from __future__ import annotations

import re
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

# PEP 508 simplified: name followed by optional extras and version specifiers
_PEP508_RE = re.compile(
    r"^([A-Za-z0-9]([A-Za-z0-9._-]*[A-Za-z0-9])?)"  # package name
    r"(\[[^\]]*\])?"  # optional extras [extra1,extra2]
    r"\s*"
    r"(.*)?$",  # version specifiers
)


class PyprojectTomlParser:
    manager = "pyproject-toml"
    ecosystem = "pypi"
    file_patterns = ["pyproject.toml"]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as exc:
            raise UnparsableManifest(file_path.name, str(exc)) from exc

        project = data.get("project", {})
        if not isinstance(project, dict):
            raise UnparsableManifest(file_path.name, "[project] must be a table")

        sections: list[tuple[str, object]] = [("dependencies", project.get("dependencies", []))]
        optional = project.get("optional-dependencies", {})
        if not isinstance(optional, dict):
            raise UnparsableManifest(file_path.name, "optional-dependencies must be a table")
        for extra, reqs in sorted(optional.items()):
            sections.append((f"optional:{extra}", reqs))

        lines = content.splitlines()
        taken: set[int] = set()
        deps: list[Dependency] = []

        for dep_type, dep_strings in sections:
            if not isinstance(dep_strings, list):
                raise UnparsableManifest(file_path.name, f"{dep_type} must be an array")
            for raw in dep_strings:
                if not isinstance(raw, str):
                    raise UnparsableManifest(file_path.name, f"non-string requirement {raw!r}")
                line = raw.strip()
                if not line:
                    continue

                # Strip environment markers (everything after ";")
                marker_pos = line.find(";")
                if marker_pos != -1:
                    line = line[:marker_pos].strip()

                m = _PEP508_RE.match(line)
                if not m:
                    continue

                name = m.group(1)
                constraint = (m.group(4) or "").strip() or None
                current, version_text, skip = constraint_fields(constraint)

                lineno = locate_line(lines, raw, taken=taken)
                if lineno is None:
                    skip = skip or "unlocatable"
                    lineno = 0
                else:
                    taken.add(lineno)

                deps.append(
                    Dependency(
                        name=name,
                        ecosystem="pypi",
                        manager=self.manager,
                        constraint=constraint,
                        current_version=current,
                        manifest_path=file_path.name,
                        line=lineno,
                        version_text=version_text,
                        dep_type=dep_type,
                        skip_reason=skip,
                    )
                )

        return deps


register_parser(PyprojectTomlParser())
