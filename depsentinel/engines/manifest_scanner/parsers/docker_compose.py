"""Parser for docker-compose service images."""

from __future__ import annotations

from pathlib import Path

import yaml

from depsentinel.engines.manifest_scanner.models import Dependency
from depsentinel.engines.manifest_scanner.parsers._common import locate_line
from depsentinel.engines.manifest_scanner.parsers.dockerfile import image_dependency
from depsentinel.engines.manifest_scanner.registry import register_parser
from depsentinel.errors import UnparsableManifest


class DockerComposeParser:
    manager = "docker-compose"
    ecosystem = "docker"
    file_patterns = [
        "**/docker-compose*.yml",
        "**/docker-compose*.yaml",
        "**/compose.yml",
        "**/compose.yaml",
    ]

    def parse(self, file_path: Path, content: str) -> list[Dependency]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise UnparsableManifest(file_path.name, str(exc)) from exc

        if data is None:
            return []
        if not isinstance(data, dict):
            raise UnparsableManifest(file_path.name, "top level must be a mapping")
        services = data.get("services", {})
        if not isinstance(services, dict):
            raise UnparsableManifest(file_path.name, "services must be a mapping")

        lines = content.splitlines()
        taken: set[int] = set()
        deps: list[Dependency] = []

        for service_name, service_config in services.items():
            if not isinstance(service_config, dict):
                continue
            image = service_config.get("image")
            if not isinstance(image, str):
                continue

            lineno = locate_line(lines, "image", image, taken=taken) or 0
            if lineno:
                taken.add(lineno)
            dep = image_dependency(
                image,
                manager=self.manager,
                manifest_path=file_path.name,
                line=lineno,
                dep_type=f"service:{service_name}",
            )
            if not lineno and dep.skip_reason is None:
                dep.skip_reason = "unlocatable"
            deps.append(dep)

        return deps


register_parser(DockerComposeParser())
