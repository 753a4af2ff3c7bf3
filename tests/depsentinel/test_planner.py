"""Tests for the change planner engine."""

from __future__ import annotations

import pytest

from depsentinel.engines.change_planner import (
    ChangePlanner,
    ManifestEdit,
    StaleEdit,
    apply_edits,
    plan,
    slugify,
    unified_diff,
)
from depsentinel.engines.update_policy import Candidate
from depsentinel.errors import ConflictError, ConflictingEdits

PACKAGE_JSON = """\
{
  "dependencies": {
    "react": "18.2.0",
    "react-dom": "18.2.0",
    "lodash": "4.17.20"
  }
}
"""

_LINES = {"react": 3, "react-dom": 4, "lodash": 5}


@pytest.fixture
def make_candidate(make_dep):
    def _make(
        name: str,
        target: str,
        *,
        current: str | None = None,
        update_type: str = "minor",
        group: str | None = None,
        in_schedule: bool = True,
        manifest_path: str = "package.json",
    ) -> Candidate:
        current = current or ("4.17.20" if name == "lodash" else "18.2.0")
        dep = make_dep(name, current, manifest_path=manifest_path, line=_LINES[name])
        return Candidate(
            dependency=dep,
            target_version=target,
            new_text=target,
            update_type=update_type,
            registry_host=dep.registry_host,
            changelog_url=None,
            authorized_by=f"group:{group}" if group else "default",
            matched_rules=[f"group:{group}"] if group else [],
            group_name=group,
            in_schedule=in_schedule,
        )

    return _make


@pytest.fixture
def contents() -> dict[str, str]:
    return {"package.json": PACKAGE_JSON}


# ── branches and titles ──────────────────────────────────────────────────


class TestBranches:
    def test_single_candidate(self, make_candidate, contents):
        result = plan([make_candidate("react", "18.3.1")], contents)

        (change_set,) = result.change_sets
        assert change_set.branch == "depsentinel/react-18.x"
        assert change_set.title == "Update react to 18.3.1"
        assert change_set.dependency_names == ["react"]
        assert '"react": "18.3.1"' in change_set.files["package.json"]
        assert '"react-dom": "18.2.0"' in change_set.files["package.json"]
        assert '-    "react": "18.2.0",' in change_set.diff
        assert '+    "react": "18.3.1",' in change_set.diff
        assert change_set.diff.startswith("--- a/package.json\n+++ b/package.json\n")

    def test_major_branch(self, make_candidate, contents):
        candidate = make_candidate("react", "19.0.0", update_type="major")
        (change_set,) = plan([candidate], contents).change_sets
        assert change_set.branch == "depsentinel/major-react-19.x"
        assert change_set.title == "Update react to 19.0.0 (major)"

    def test_custom_prefix(self, make_candidate, contents):
        result = ChangePlanner("deps/").plan([make_candidate("lodash", "4.17.21")], contents)
        assert result.change_sets[0].branch == "deps/lodash-4.x"

    def test_group_shares_one_branch(self, make_candidate, contents):
        candidates = [
            make_candidate("react", "18.3.1", group="React Stack"),
            make_candidate("react-dom", "18.3.1", group="React Stack"),
        ]
        (change_set,) = plan(candidates, contents).change_sets
        assert change_set.branch == "depsentinel/react-stack"
        assert change_set.title == "Update React Stack"
        assert change_set.group_name == "React Stack"
        assert len(change_set.edits) == 2
        assert change_set.files["package.json"].count("18.3.1") == 2

    def test_group_major_updates_get_their_own_branch(self, make_candidate, contents):
        candidates = [
            make_candidate("lodash", "4.17.21", group="all"),
            make_candidate("lodash", "5.0.0", update_type="major", group="all"),
            make_candidate("react", "18.3.0", group="all"),
        ]
        result = plan(candidates, contents)

        assert result.conflicts == []
        by_branch = {c.branch: c for c in result.change_sets}
        assert sorted(by_branch) == ["depsentinel/all", "depsentinel/major-all"]
        assert [c.dependency.name for c in by_branch["depsentinel/all"].candidates] == ["react"]
        assert by_branch["depsentinel/major-all"].title == "Update all (major)"
        assert '"lodash": "5.0.0"' in by_branch["depsentinel/major-all"].files["package.json"]
        (superseded,) = result.superseded
        assert superseded.candidate.target_version == "4.17.21"

    def test_same_dependency_across_manifests_merges(self, make_candidate):
        contents = {"web/package.json": PACKAGE_JSON, "admin/package.json": PACKAGE_JSON}
        candidates = [
            make_candidate("lodash", "4.17.21", manifest_path="web/package.json"),
            make_candidate("lodash", "4.17.21", manifest_path="admin/package.json"),
        ]
        (change_set,) = plan(candidates, contents).change_sets
        assert sorted(change_set.files) == ["admin/package.json", "web/package.json"]
        assert change_set.diff.index("a/admin/package.json") < change_set.diff.index(
            "a/web/package.json"
        )

    def test_commit_message_lists_candidates(self, make_candidate, contents):
        (change_set,) = plan([make_candidate("lodash", "4.17.21")], contents).change_sets
        assert change_set.commit_message == (
            "Update lodash to 4.17.21\n\n- lodash 4.17.20 -> 4.17.21 (package.json)"
        )

    def test_deterministic(self, make_candidate, contents):
        candidates = [
            make_candidate("lodash", "4.17.21"),
            make_candidate("react", "18.3.1"),
            make_candidate("react-dom", "19.0.0", update_type="major"),
        ]
        forward = plan(candidates, contents)
        backward = plan(list(reversed(candidates)), contents)
        assert [c.branch for c in forward.change_sets] == [c.branch for c in backward.change_sets]
        assert [c.diff for c in forward.change_sets] == [c.diff for c in backward.change_sets]


# ── conflicts ────────────────────────────────────────────────────────────


class TestConflicts:
    def test_grouped_same_line_conflict_drops_only_the_group(self, make_candidate, contents):
        candidates = [
            make_candidate("react", "18.3.1", group="frontend"),
            make_candidate("react", "18.3.0", group="frontend"),
            make_candidate("lodash", "4.17.21"),
        ]
        result = plan(candidates, contents)

        assert [c.branch for c in result.change_sets] == ["depsentinel/lodash-4.x"]
        (conflict,) = result.conflicts
        assert isinstance(conflict, ConflictingEdits)
        assert conflict.branch == "depsentinel/frontend"
        assert (conflict.manifest_path, conflict.line) == ("package.json", 3)
        assert conflict.dependencies == ["react"]

    def test_identical_edits_collapse(self, make_candidate, contents):
        candidates = [
            make_candidate("react", "18.3.1", group="frontend"),
            make_candidate("react", "18.3.1", group="frontend"),
        ]
        (change_set,) = plan(candidates, contents).change_sets
        assert len(change_set.edits) == 1
        assert len(change_set.candidates) == 1

    def test_grouped_beats_ungrouped_on_shared_line(self, make_candidate, contents):
        grouped = make_candidate("react", "18.3.1", group="frontend")
        ungrouped = make_candidate("react", "19.0.0", update_type="major")
        result = plan([ungrouped, grouped], contents)

        assert [c.branch for c in result.change_sets] == ["depsentinel/frontend"]
        (superseded,) = result.superseded
        assert superseded.candidate is ungrouped
        assert superseded.winner is grouped
        assert superseded.winner_branch == "depsentinel/frontend"
        assert "superseded by react 18.2.0 -> 18.3.1" in superseded.reason

    def test_newest_target_wins_between_ungrouped(self, make_candidate, contents):
        minor = make_candidate("react", "18.3.1")
        major = make_candidate("react", "19.0.0", update_type="major")
        result = plan([minor, major], contents)

        assert [c.branch for c in result.change_sets] == ["depsentinel/major-react-19.x"]
        assert result.superseded[0].candidate is minor

    def test_stale_edit(self, make_candidate):
        contents = {"package.json": PACKAGE_JSON.replace("4.17.20", "4.17.19")}
        result = plan([make_candidate("lodash", "4.17.21")], contents)
        assert result.change_sets == []
        assert isinstance(result.conflicts[0], StaleEdit)

    def test_missing_snapshot_content(self, make_candidate):
        result = plan([make_candidate("lodash", "4.17.21")], {})
        assert result.change_sets == []
        assert isinstance(result.conflicts[0], ConflictError)


# ── schedules ────────────────────────────────────────────────────────────


class TestDeferral:
    def test_group_deferred_when_any_member_outside_window(self, make_candidate, contents):
        candidates = [
            make_candidate("react", "18.3.1", group="react"),
            make_candidate("react-dom", "18.3.1", group="react", in_schedule=False),
            make_candidate("lodash", "4.17.21"),
        ]
        result = plan(candidates, contents)

        assert [c.branch for c in result.change_sets] == ["depsentinel/lodash-4.x"]
        (deferred,) = result.deferred
        assert deferred.branch == "depsentinel/react"
        assert len(deferred.candidates) == 2
        assert deferred.reason == "outside schedule window for react-dom"

    def test_group_published_when_all_in_window(self, make_candidate, contents):
        candidates = [
            make_candidate("react", "18.3.1", group="react"),
            make_candidate("react-dom", "18.3.1", group="react"),
        ]
        result = plan(candidates, contents)
        assert result.deferred == []
        assert len(result.change_sets) == 1


# ── edits ────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("name", "slug"),
    [
        ("@types/node", "types-node"),
        ("ghcr.io/org/app", "ghcr-io-org-app"),
        ("React Stack", "react-stack"),
        ("@@", "dependency"),
    ],
)
def test_slugify(name, slug):
    assert slugify(name) == slug


class TestApplyEdits:
    def test_keeps_line_endings(self):
        content = "requests==2.31.0\r\nflask==3.0.0\r\n"
        edit = ManifestEdit("requirements.txt", 2, "3.0.0", "3.0.3", anchor="flask")
        assert apply_edits(content, [edit]) == "requests==2.31.0\r\nflask==3.0.3\r\n"

    def test_anchor_skips_text_before_dependency_name(self):
        content = "FROM node18:18 AS node18\n"
        edit = ManifestEdit("Dockerfile", 1, "18", "20", anchor="node18:")
        assert apply_edits(content, [edit]) == "FROM node18:20 AS node18\n"

    def test_line_out_of_range(self):
        edit = ManifestEdit("requirements.txt", 5, "1.0", "1.1")
        with pytest.raises(StaleEdit):
            apply_edits("a==1.0\n", [edit])

    def test_unified_diff_empty_when_unchanged(self):
        assert unified_diff("x", "same\n", "same\n") == ""
