"""Manifest parsers — auto-registered on import."""

from depsentinel.engines.manifest_scanner.parsers import (
    cargo_toml,  # noqa: F401
    docker_compose,  # noqa: F401
    dockerfile,  # noqa: F401
    go_mod,  # noqa: F401
    npm_package_json,  # noqa: F401
    pip_requirements,  # noqa: F401
    pyproject_toml,  # noqa: F401
)
