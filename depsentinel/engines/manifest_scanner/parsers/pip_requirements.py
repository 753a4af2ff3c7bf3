"""Parser for pip requirements.txt files."""

from __future__ import annotations

import re
from pathlib import Path

from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.manifest_scanner.parsers._common import constraint_fields
from depsentinel.engines.manifest_scanner.registry import register_parser
from depsentinel.errors import UnparsableManifest

# Matches: package_name, optional [extras], then everything else
_REQ_RE = re.compile(
    r"^([A-Za-z0-9]([A-Za-z0-9._-]*[A-Za-z0-9])?)"  # package name
    r"(\[[^\]]*\])?"  # optional extras
    r"\s*"
    r"(.*)?$",  # everything after name = constraint_expr
)

_OPERATOR_RE = re.compile(r"^(===|==|~=|!=|<=|>=|<|>)")


class PipRequirementsParser:
    manager = "pip-requirements"
    ecosystem = "pypi"
    file_patterns = ["requirements.txt", "requirements/*.txt", "requirements-*.txt"]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        deps: list[Dependency] = []

        for lineno, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.split(" #", 1)[0].strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith(("-r", "-c", "-e", "--")):
                continue
            # Direct references are not registry dependencies.
            if "://" in line or line.startswith((".", "/")):
                continue

            # Strip environment markers (everything after ";")
            line = line.split(";", 1)[0].strip()

            m = _REQ_RE.match(line)
            if not m:
                raise UnparsableManifest(file_path.name, f"line {lineno}: {raw_line.strip()!r}")

            name = m.group(1)
            constraint = (m.group(4) or "").strip() or None
            if constraint and not _OPERATOR_RE.match(constraint):
                raise UnparsableManifest(
                    file_path.name, f"line {lineno}: bad version specifier {constraint!r}"
                )

            current, version_text, skip = constraint_fields(constraint)
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
                    skip_reason=skip,
                )
            )

        return deps


register_parser(PipRequirementsParser())
