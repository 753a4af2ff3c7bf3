"""Exception taxonomy for depsentinel.

Each family maps to the narrowest scope it can abort:

    ConfigurationError     -> one repository run
    TransientNetworkError  -> one dependency (after retries)
    ParseError             -> one manifest
    ConflictError          -> one change set
    PublishError           -> one change set
"""

from __future__ import annotations


class DepSentinelError(Exception):
    """Base exception for all depsentinel errors."""


# ── configuration (fatal for a repository) ──────────────────────────────


class ConfigurationError(DepSentinelError):
    """Raised when configuration makes a repository run impossible."""


class InvalidConfig(ConfigurationError):
    """Raised when a configuration file fails to load or validate."""


class AmbiguousHostRule(ConfigurationError):
    """Raised when more than one host rule matches a registry host."""

    def __init__(self, host: str, patterns: list[str]):
        self.host = host
        self.patterns = patterns
        super().__init__(
            f"host {host!r} matches {len(patterns)} host rules: {patterns}. "
            "Each registry host must match exactly one rule."
        )


class NoCredential(ConfigurationError):
    """Raised when a matched host rule requires credentials that are not set."""

    def __init__(self, host: str, pattern: str):
        self.host = host
        self.pattern = pattern
        super().__init__(
            f"host rule {pattern!r} requires authentication for {host!r} "
            "but no credentials were configured"
        )


# ── network ─────────────────────────────────────────────────────────────


class TransientNetworkError(DepSentinelError):
    """Raised when a network call keeps failing after bounded retries."""


class ResolutionFailed(DepSentinelError):
    """Raised when a dependency's available versions could not be listed."""

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(f"resolution failed for {dependency}: {reason}")


# ── manifests ───────────────────────────────────────────────────────────


class ParseError(DepSentinelError):
    """Base class for manifest parsing failures."""


class UnparsableManifest(ParseError):
    """Raised when a file matches a manifest pattern but is structurally invalid."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"cannot parse {path}: {reason}")


# ── planning / publishing ───────────────────────────────────────────────


class ConflictError(DepSentinelError):
    """Base class for planning conflicts."""


class ConflictingEdits(ConflictError):
    """Raised when one change set would need two different edits to one line."""

    def __init__(self, branch: str, manifest_path: str, line: int, dependencies: list[str]):
        self.branch = branch
        self.manifest_path = manifest_path
        self.line = line
        self.dependencies = dependencies
        super().__init__(
            f"change set {branch!r} has conflicting edits on {manifest_path}:{line} "
            f"({', '.join(dependencies)})"
        )


class PublishError(DepSentinelError):
    """Raised when a change set could not be written to the VCS host."""
