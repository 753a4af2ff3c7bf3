"""Parser for Dockerfile base images.

Multi-stage builds like::

    FROM node:18 AS base
    FROM base AS build

reference earlier stages by alias; those are not external images.
"""

from __future__ import annotations

import re
from pathlib import Path

from depsentinel.engines.manifest_scanner.models import Dependency, split_image
from depsentinel.engines.manifest_scanner.registry import register_parser
from depsentinel.errors import UnparsableManifest

_FROM_RE = re.compile(r"^FROM\s+(?P<rest>.*)$", re.IGNORECASE)


def image_dependency(
    image: str,
    *,
    manager: str,
    manifest_path: str,
    line: int,
    dep_type: str,
) -> Dependency:
    """Build a docker :class:`Dependency` from an image reference."""
    base, _, digest = image.partition("@")
    host, _, tag = split_image(base)
    name = base[: -(len(tag) + 1)] if tag is not None else base

    skip: str | None = None
    if "$" in image:
        skip = "templated-image"
    elif digest:
        skip = "digest-pinned"
    elif tag is None or tag == "latest":
        skip = "unpinned"

    return Dependency(
        name=name,
        ecosystem="docker",
        manager=manager,
        constraint=tag,
        current_version=tag if skip is None else None,
        manifest_path=manifest_path,
        line=line,
        version_text=tag if skip is None else None,
        registry_host=host,
        dep_type=dep_type,
        skip_reason=skip,
    )


class DockerfileParser:
    manager = "dockerfile"
    ecosystem = "docker"
    file_patterns = ["**/Dockerfile", "**/*.Dockerfile", "**/Dockerfile.*"]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        deps: list[Dependency] = []
        stages: set[str] = set()

        for lineno, raw_line in enumerate(content.splitlines(), start=1):
            m = _FROM_RE.match(raw_line.strip())
            if not m:
                continue

            parts = [p for p in m.group("rest").split() if not p.startswith("--")]
            if not parts:
                raise UnparsableManifest(file_path.name, f"line {lineno}: FROM without image")

            image = parts[0]
            alias: str | None = None
            if len(parts) == 3 and parts[1].upper() == "AS":
                alias = parts[2].lower()
            elif len(parts) != 1:
                raise UnparsableManifest(
                    file_path.name, f"line {lineno}: malformed FROM {raw_line.strip()!r}"
                )

            stage_ref = image.lower() in stages
            if alias:
                stages.add(alias)
            if stage_ref or image.lower() == "scratch":
                continue

            deps.append(
                image_dependency(
                    image,
                    manager=self.manager,
                    manifest_path=file_path.name,
                    line=lineno,
                    dep_type="base-image",
                )
            )

        return deps


register_parser(DockerfileParser())
