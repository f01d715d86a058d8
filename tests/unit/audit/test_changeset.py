"""Tests for the sensitive change-set builder and path matcher."""

from __future__ import annotations

from pathlib import Path

import pytest

from pear_reviewer.audit.changeset import PathMatcher, build_change_set, commit_touched_paths
from pear_reviewer.audit.merge_base import find_merge_base, walk_range
from pear_reviewer.git.repository import open_repository
from pear_reviewer.git.types import ChangeKind, CommitRef
from tests.unit.audit.audit_test_utils import FakeRepository, make_git_repo


@pytest.mark.parametrize(
    ("pattern", "path", "expected"),
    [
        ("charts/**", "charts/app/values.yaml", True),
        ("charts/**", "charts", False),
        ("charts/**", "docs/charts/x.yaml", False),
        ("**/values.yaml", "values.yaml", True),
        ("**/values.yaml", "env/prod/values.yaml", True),
        ("**/values.yaml", "env/prod/myvalues.yaml", False),
        ("*.tf", "infra/network/main.tf", True),
        ("*.tf", "main.tfvars", False),
        ("src/*.py", "src/app.py", True),
        ("src/*.py", "src/pkg/app.py", False),
        ("deploy/", "deploy/prod/job.yaml", True),
        ("deploy/", "deployment/job.yaml", False),
        ("file?.txt", "docs/file1.txt", True),
        ("file?.txt", "docs/file10.txt", False),
        ("**", "anything/at/all.md", True),
        ("/Makefile", "Makefile", True),
    ],
)
def test_path_matcher_semantics(pattern: str, path: str, expected: bool) -> None:
    assert PathMatcher([pattern]).matches(path) is expected


def test_path_matcher_ignores_blank_patterns() -> None:
    matcher = PathMatcher(["", "  ", "`charts/**`"])
    assert matcher.patterns == ("charts/**",)
    assert bool(PathMatcher(["", " "])) is False


def test_unterminated_character_class_is_literal() -> None:
    matcher = PathMatcher(["odd[name"])
    assert matcher.matches("odd[name")
    assert not matcher.matches("oddxname")


def _base_repo() -> FakeRepository:
    repo = FakeRepository()
    repo.add_commit(
        "b0",
        files={"charts/app/values.yaml": "v1", "charts/app/a.yaml": "same", "README.md": "r"},
    )
    return repo


def _units(repo: FakeRepository, base: str, tip: str, patterns: list[str]):
    merge_base = find_merge_base(repo, CommitRef(base), CommitRef(tip))
    commits = walk_range(repo, merge_base, CommitRef(tip))
    return build_change_set(repo, merge_base.commit, CommitRef(tip), PathMatcher(patterns), commits)


def test_only_sensitive_paths_become_units() -> None:
    repo = _base_repo()
    repo.add_commit("c1", ("b0",), {"charts/app/values.yaml": "v2"})
    repo.add_commit("c2", ("c1",), {"README.md": "r2"})

    units = _units(repo, "b0", "c2", ["charts/**"])

    assert [(u.path, u.kind, u.commits) for u in units] == [
        ("charts/app/values.yaml", ChangeKind.MODIFIED, ("c1",)),
    ]


def test_units_are_sorted_and_list_every_touching_commit() -> None:
    repo = _base_repo()
    repo.add_commit("c1", ("b0",), {"charts/app/values.yaml": "v2", "charts/z.yaml": "z"})
    repo.add_commit("c2", ("c1",), {"charts/app/values.yaml": "v3"})

    units = _units(repo, "b0", "c2", ["charts/**"])

    assert [u.path for u in units] == ["charts/app/values.yaml", "charts/z.yaml"]
    assert units[0].commits == ("c2", "c1")
    assert units[1].kind == ChangeKind.ADDED


def test_deleted_path_is_a_removed_unit() -> None:
    repo = _base_repo()
    repo.add_commit("c1", ("b0",), {"charts/app/values.yaml": None})

    (unit,) = _units(repo, "b0", "c1", ["charts/**"])
    assert unit.kind == ChangeKind.REMOVED
    assert unit.commits == ("c1",)


def test_rename_is_keyed_by_destination() -> None:
    repo = _base_repo()
    repo.add_commit("c1", ("b0",), {"charts/app/a.yaml": None, "charts/app/b.yaml": "same"})

    (unit,) = _units(repo, "b0", "c1", ["charts/**"])
    assert unit.path == "charts/app/b.yaml"
    assert unit.kind == ChangeKind.RENAMED
    assert unit.old_path == "charts/app/a.yaml"
    assert unit.commits == ("c1",)


def test_rename_out_of_sensitive_area_counts_as_removal() -> None:
    repo = _base_repo()
    repo.add_commit("c1", ("b0",), {"charts/app/a.yaml": None, "docs/a.yaml": "same"})

    (unit,) = _units(repo, "b0", "c1", ["charts/**"])
    assert unit.path == "charts/app/a.yaml"
    assert unit.kind == ChangeKind.REMOVED
    assert unit.commits == ("c1",)


def test_change_reverted_within_range_produces_no_unit() -> None:
    repo = _base_repo()
    repo.add_commit("c1", ("b0",), {"charts/new.yaml": "x"})
    repo.add_commit("c2", ("c1",), {"charts/new.yaml": None})

    assert _units(repo, "b0", "c2", ["charts/**"]) == ()


def test_pure_merge_touches_nothing() -> None:
    repo = _base_repo()
    repo.add_commit("f1", ("b0",), {"charts/x.yaml": "x"})
    repo.add_commit("m1", ("b0",), {"README.md": "new"})
    repo.add_commit("mf", ("m1", "f1"), {"README.md": "new"})

    assert commit_touched_paths(repo, repo.commit_node(CommitRef("mf"))) == frozenset()


def test_evil_merge_touches_its_own_content() -> None:
    repo = _base_repo()
    repo.add_commit("f1", ("b0",), {"charts/x.yaml": "x"})
    repo.add_commit("m1", ("b0",), {"README.md": "new"})
    repo.add_commit("mf", ("m1", "f1"), {"README.md": "new", "charts/evil.yaml": "e"})

    touched = commit_touched_paths(repo, repo.commit_node(CommitRef("mf")))
    assert touched == frozenset({"charts/evil.yaml"})


def test_root_commit_touches_all_its_files() -> None:
    repo = _base_repo()
    touched = commit_touched_paths(repo, repo.commit_node(CommitRef("b0")))
    assert touched == frozenset({"charts/app/values.yaml", "charts/app/a.yaml", "README.md"})


def test_change_set_against_real_git_history(tmp_path: Path) -> None:
    git = make_git_repo(tmp_path)
    git.write("charts/app/values.yaml", "replicas: 1\n")
    git.write("charts/app/templates/deployment.yaml", "kind: Deployment\nmetadata:\n  name: app\n")
    git.write("README.md", "hello\n")
    base = git.commit("initial")

    git.branch("feature")
    git.checkout("feature")
    git.write("charts/app/values.yaml", "replicas: 3\n")
    first = git.commit("scale up")
    git.move("charts/app/templates/deployment.yaml", "charts/app/templates/deploy.yaml")
    git.write("README.md", "hello again\n")
    second = git.commit("rename template")

    repo = open_repository(git.root)
    merge_base = find_merge_base(repo, repo.resolve_ref("main"), repo.resolve_ref("feature"))
    commits = walk_range(repo, merge_base, CommitRef(second))
    units = build_change_set(
        repo, merge_base.commit, CommitRef(second), PathMatcher(["charts/**"]), commits
    )

    assert merge_base.commit == base
    assert commits == (second, first)
    assert [(u.path, u.kind, u.old_path, u.commits) for u in units] == [
        (
            "charts/app/templates/deploy.yaml",
            ChangeKind.RENAMED,
            "charts/app/templates/deployment.yaml",
            (second,),
        ),
        ("charts/app/values.yaml", ChangeKind.MODIFIED, None, (first,)),
    ]


def test_commit_with_unreadable_parent_has_unknown_paths() -> None:
    repo = _base_repo()
    repo.add_commit("s1", ("gone",), files={"charts/side.yaml": "s"})

    assert commit_touched_paths(repo, repo.commit_node(CommitRef("s1"))) is None


def test_side_branch_past_shallow_boundary_is_unresolved_on_every_unit() -> None:
    repo = _base_repo()
    repo.add_commit("f1", ("b0",), {"charts/app/values.yaml": "v2"})
    repo.add_commit("s1", ("gone",), files={"charts/side.yaml": "s"})
    repo.add_commit("m", ("f1", "s1"))

    units = _units(repo, "b0", "m", ["charts/**"])

    assert [(u.path, u.commits, u.unresolved) for u in units] == [
        ("charts/app/values.yaml", ("f1",), ("s1",)),
        ("charts/side.yaml", (), ("s1",)),
    ]
