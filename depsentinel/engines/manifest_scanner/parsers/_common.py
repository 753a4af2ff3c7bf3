"""Helpers shared by the manifest parsers."""

from __future__ import annotations

import re

# One pinning comparator followed by one version: "==1.2.3", "^4.17.0", "v1.2.3", "1.0".
# Open bounds such as ">=1.0" do not pin a current version.
_SINGLE_CONSTRAINT_RE = re.compile(
    r"^(?P<op>===|==|~=|\^|~|=)?\s*(?P<version>v?\d[0-9A-Za-z.+\-_]*)$"
)


def split_constraint(expr: str) -> tuple[str, str] | None:
    """Return ``(operator, version)`` for a single-comparator constraint, else None."""
    m = _SINGLE_CONSTRAINT_RE.match(expr.strip())
    if not m:
        return None
    return m.group("op") or "", m.group("version")


def constraint_fields(constraint: str | None) -> tuple[str | None, str | None, str | None]:
    """Derive ``(current_version, version_text, skip_reason)`` from a constraint."""
    if not constraint:
        return None, None, "unpinned"
    parts = split_constraint(constraint)
    if parts is None:
        return None, None, "unsupported-range"
    _, version = parts
    return version, version, None


def locate_line(
    lines: list[str],
    *needles: str,
    start: int = 0,
    taken: set[int] | None = None,
) -> int | None:
    """Return the 1-based number of the first line containing all *needles*.

    Lines already in *taken* are skipped so repeated declarations map to
    distinct lines.
    """
    for idx in range(start, len(lines)):
        lineno = idx + 1
        if taken is not None and lineno in taken:
            continue
        if all(needle in lines[idx] for needle in needles):
            return lineno
    return None
