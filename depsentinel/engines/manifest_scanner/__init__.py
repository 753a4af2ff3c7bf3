"""Manifest scanner engine — detect declared dependencies from manifests."""

from depsentinel.engines.manifest_scanner.models import (
    Dependency,
    ManifestFailure,
    ScanReport,
)
from depsentinel.engines.manifest_scanner.scanner import scan

__all__ = ["Dependency", "ManifestFailure", "ScanReport", "scan"]
