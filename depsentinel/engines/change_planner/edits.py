"""Line-level manifest edits and unified diffs."""

from __future__ import annotations

import difflib

from depsentinel.engines.change_planner.models import ManifestEdit
from depsentinel.errors import ConflictError


class StaleEdit(ConflictError):
    """Raised when a manifest line no longer holds the text an edit expects."""

    def __init__(self, edit: ManifestEdit):
        self.edit = edit
        super().__init__(
            f"{edit.manifest_path}:{edit.line} does not contain {edit.old_text!r}"
        )


def _replace_on_line(line: str, edit: ManifestEdit) -> str:
    # Start after the dependency name so "node:18 AS node18" edits the tag.
    start = line.find(edit.anchor) + len(edit.anchor) if edit.anchor and edit.anchor in line else 0
    idx = line.find(edit.old_text, start)
    if idx < 0:
        idx = line.find(edit.old_text)
    if idx < 0:
        raise StaleEdit(edit)
    return line[:idx] + edit.new_text + line[idx + len(edit.old_text) :]


def apply_edits(content: str, edits: list[ManifestEdit]) -> str:
    """Apply *edits* (all for one manifest) to *content*, keeping line endings."""
    lines = content.splitlines(keepends=True)
    for edit in sorted(edits, key=lambda e: e.line):
        if not 1 <= edit.line <= len(lines):
            raise StaleEdit(edit)
        lines[edit.line - 1] = _replace_on_line(lines[edit.line - 1], edit)
    return "".join(lines)


def unified_diff(path: str, before: str, after: str) -> str:
    return "".join(
        difflib.unified_diff(
            before.splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )
