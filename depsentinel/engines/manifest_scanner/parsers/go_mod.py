"""Parser for Go go.mod files."""

from __future__ import annotations

import re
from pathlib import Path

from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.manifest_scanner.registry import register_parser
from depsentinel.errors import UnparsableManifest

# Single require: require github.com/foo/bar v1.2.3
_SINGLE_RE = re.compile(r"^require\s+(\S+)\s+(\S+)")

# Inside require block: github.com/foo/bar v1.2.3
_BLOCK_RE = re.compile(r"^\s*(\S+)\s+(v\S+)")

# v0.0.0-20210101000000-abcdef123456 and friends
_PSEUDO_VERSION_RE = re.compile(r"-(\d{14})-[0-9a-f]{12}$")


class GoModParser:
    manager = "go-mod"
    ecosystem = "go"
    file_patterns = ["go.mod"]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        deps: list[Dependency] = []
        in_require_block = False
        saw_module = False

        for lineno, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.strip()

            if line.startswith("module "):
                saw_module = True

            # Skip comments and indirect deps
            if not line or line.startswith("//") or "// indirect" in line:
                continue

            # Detect require block boundaries
            if line.startswith("require ("):
                if in_require_block:
                    raise UnparsableManifest(file_path.name, f"line {lineno}: nested require block")
                in_require_block = True
                continue
            if in_require_block and line == ")":
                in_require_block = False
                continue

            module: str | None = None
            version: str | None = None

            if in_require_block:
                m = _BLOCK_RE.match(line)
                if not m:
                    raise UnparsableManifest(
                        file_path.name, f"line {lineno}: malformed require entry {line!r}"
                    )
                module, version = m.group(1), m.group(2)
            else:
                m = _SINGLE_RE.match(line)
                if m:
                    module, version = m.group(1), m.group(2)

            if module and version:
                skip = "pseudo-version" if _PSEUDO_VERSION_RE.search(version) else None
                deps.append(
                    Dependency(
                        name=module,
                        ecosystem="go",
                        manager=self.manager,
                        constraint=version,
                        current_version=version,
                        manifest_path=file_path.name,
                        line=lineno,
                        version_text=version,
                        dep_type="require",
                        skip_reason=skip,
                    )
                )

        if in_require_block:
            raise UnparsableManifest(file_path.name, "unterminated require block")
        if not saw_module:
            raise UnparsableManifest(file_path.name, "missing module directive")

        return deps


register_parser(GoModParser())
