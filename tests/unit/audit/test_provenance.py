"""Tests for provenance collection."""

from __future__ import annotations

import threading

from pear_reviewer.audit.provenance import collect_provenance, external_targets, fetch_metadata
from pear_reviewer.audit.types import ApprovalKind, ChangeUnit, ExternalApproval, Identity
from pear_reviewer.config import AuditConfig
from pear_reviewer.git.types import ChangeKind, CommitRef
from tests.unit.audit.audit_test_utils import FakeRepository


def _config(**kwargs) -> AuditConfig:
    return AuditConfig(patterns=("**",), **kwargs)


def _unit(*commits: str, path: str = "charts/values.yaml") -> ChangeUnit:
    return ChangeUnit(path=path, kind=ChangeKind.MODIFIED, commits=tuple(CommitRef(c) for c in commits))


def _summary(provenance, ref: str) -> list[tuple[str, str, str]]:
    return [(r.kind.value, r.identity.key, r.source) for r in provenance.records[CommitRef(ref)]]


def _repo() -> FakeRepository:
    repo = FakeRepository()
    repo.add_commit("b0", files={"charts/values.yaml": "v0"})
    return repo


def test_author_record_for_each_attributed_commit() -> None:
    repo = _repo()
    repo.add_commit("c1", ("b0",), {"charts/values.yaml": "v1"}, author="alice")
    repo.add_commit("c2", ("c1",), {"README.md": "r"}, author="bob")

    provenance = collect_provenance(repo, [_unit("c1")], ("c2", "c1"), _config())

    assert set(provenance.records) == {"c1"}
    assert _summary(provenance, "c1") == [("author", "alice@example.com", "commit")]
    assert provenance.missing == frozenset()


def test_no_units_means_no_metadata_reads() -> None:
    repo = _repo()
    repo.add_commit("c1", ("b0",), {"README.md": "r"})

    provenance = collect_provenance(repo, [], ("c1",), _config())

    assert provenance.records == {}
    assert repo.metadata_calls == []


def test_approval_trailer_resolves_bare_handle_to_known_author() -> None:
    repo = _repo()
    repo.add_commit("c1", ("b0",), {"charts/values.yaml": "v1"}, author="bob", message="bob's own work")
    repo.add_commit(
        "c2",
        ("c1",),
        {"charts/values.yaml": "v2"},
        author="alice",
        message="Tune values\n\nApproved-by: bob\n",
    )

    provenance = collect_provenance(repo, [_unit("c2", "c1")], ("c2", "c1"), _config())

    assert _summary(provenance, "c2") == [
        ("author", "alice@example.com", "commit"),
        ("approver", "bob@example.com", "trailer"),
    ]


def test_co_author_trailer_adds_author_record() -> None:
    repo = _repo()
    repo.add_commit(
        "c1",
        ("b0",),
        {"charts/values.yaml": "v1"},
        message="Pair work\n\nCo-authored-by: Carol <carol@example.com>\n",
    )

    provenance = collect_provenance(repo, [_unit("c1")], ("c1",), _config())

    assert _summary(provenance, "c1") == [
        ("author", "alice@example.com", "commit"),
        ("author", "carol@example.com", "trailer"),
    ]


def test_custom_trailer_keys_and_aliases() -> None:
    repo = _repo()
    repo.add_commit(
        "c1",
        ("b0",),
        {"charts/values.yaml": "v1"},
        message="Change\n\nSigned-off-by: Dana <dana@corp.example>\n",
    )
    config = _config(approval_trailers=("Signed-off-by",), aliases={"dana@corp.example": "dana"})

    provenance = collect_provenance(repo, [_unit("c1")], ("c1",), config)

    assert ("approver", "dana", "trailer") in _summary(provenance, "c1")


def test_merge_trailer_approves_commits_it_brought_in() -> None:
    repo = _repo()
    repo.add_commit("f1", ("b0",), {"charts/values.yaml": "v1"}, author="alice")
    repo.add_commit("m1", ("b0",), {"README.md": "r"}, author="erin")
    repo.add_commit(
        "mf",
        ("m1", "f1"),
        {"README.md": "r"},
        author="bob",
        message="Merge feature\n\nApproved-by: bob@example.com\n",
    )
    commits = ("mf", "m1", "f1")

    provenance = collect_provenance(repo, [_unit("f1")], commits, _config())

    assert _summary(provenance, "f1") == [
        ("author", "alice@example.com", "commit"),
        ("approver", "bob@example.com", "trailer"),
    ]


def test_merge_trailer_does_not_reach_mainline_commits() -> None:
    repo = _repo()
    repo.add_commit("m1", ("b0",), {"charts/values.yaml": "v1"}, author="alice")
    repo.add_commit("f1", ("b0",), {"README.md": "r"}, author="erin")
    repo.add_commit(
        "mf",
        ("m1", "f1"),
        {"charts/values.yaml": "v1"},
        author="bob",
        message="Merge\n\nApproved-by: bob@example.com\n",
    )

    provenance = collect_provenance(repo, [_unit("m1")], ("mf", "m1", "f1"), _config())

    assert _summary(provenance, "m1") == [("author", "alice@example.com", "commit")]


def test_metadata_outage_marks_commits_missing() -> None:
    repo = _repo()
    repo.add_commit("c1", ("b0",), {"charts/values.yaml": "v1"})
    repo.add_commit("c2", ("c1",), {"charts/values.yaml": "v2"})
    repo.missing_metadata.add("c1")

    provenance = collect_provenance(repo, [_unit("c2", "c1")], ("c2", "c1"), _config())

    assert provenance.missing == frozenset({"c1"})
    assert set(provenance.records) == {"c2"}


def test_external_approval_by_commit_covers_ancestors_in_range() -> None:
    repo = _repo()
    repo.add_commit("aaaaaaa1", ("b0",), {"charts/values.yaml": "v1"})
    repo.add_commit("bbbbbbb2", ("aaaaaaa1",), {"charts/values.yaml": "v2"})
    repo.add_commit("ccccccc3", ("bbbbbbb2",), {"charts/values.yaml": "v3"})
    config = _config(external_approvals=(ExternalApproval(reviewer="frank", commit="bbbbbbb"),))

    provenance = collect_provenance(
        repo,
        [_unit("ccccccc3", "bbbbbbb2", "aaaaaaa1")],
        ("ccccccc3", "bbbbbbb2", "aaaaaaa1"),
        config,
    )

    approved = {
        ref for ref, records in provenance.records.items()
        if any(r.kind == ApprovalKind.APPROVER for r in records)
    }
    assert approved == {"bbbbbbb2", "aaaaaaa1"}


def test_external_approval_requires_unique_prefix_of_seven_chars() -> None:
    repo = _repo()
    repo.add_commit("abcdef01", ("b0",))
    repo.add_commit("abcdef02", ("abcdef01",))
    ordered = (CommitRef("abcdef02"), CommitRef("abcdef01"))

    ambiguous = ExternalApproval(reviewer="frank", commit="abcdef0")
    too_short = ExternalApproval(reviewer="frank", commit="abcd")
    exact = ExternalApproval(reviewer="frank", commit="ABCDEF01")

    assert external_targets(repo, ambiguous, ordered, frozenset(ordered), None) == frozenset()
    assert external_targets(repo, too_short, ordered, frozenset(ordered), None) == frozenset()
    assert external_targets(repo, exact, ordered, frozenset(ordered), None) == {"abcdef01"}


def test_external_approval_by_change_must_match_change_id() -> None:
    repo = _repo()
    ordered = (CommitRef("b0"),)
    approval = ExternalApproval(reviewer="frank", change="42")

    assert external_targets(repo, approval, ordered, frozenset(ordered), "42") == {"b0"}
    assert external_targets(repo, approval, ordered, frozenset(ordered), "7") == frozenset()
    assert external_targets(repo, approval, ordered, frozenset(ordered), None) == frozenset()


def test_unapproved_external_reviews_are_ignored() -> None:
    repo = _repo()
    repo.add_commit("c1", ("b0",), {"charts/values.yaml": "v1"})
    config = _config(
        external_approvals=(ExternalApproval(reviewer="frank", state="changes_requested"),)
    )

    provenance = collect_provenance(repo, [_unit("c1")], ("c1",), config)

    assert [r.kind for r in provenance.records["c1"]] == [ApprovalKind.AUTHOR]


def test_external_reviewer_is_resolved_against_authors() -> None:
    repo = _repo()
    repo.add_commit("c1", ("b0",), {"charts/values.yaml": "v1"}, author="alice")
    config = _config(external_approvals=(ExternalApproval(reviewer="@Alice"),))

    provenance = collect_provenance(repo, [_unit("c1")], ("c1",), config)

    approver = [r for r in provenance.records["c1"] if r.kind == ApprovalKind.APPROVER]
    assert approver[0].identity == Identity(name="alice", handle="alice@example.com")
    assert approver[0].source == "external"


def test_fetch_metadata_uses_worker_threads() -> None:
    repo = _repo()
    parent = "b0"
    for index in range(8):
        sha = f"c{index}"
        repo.add_commit(sha, (parent,), {"charts/values.yaml": sha})
        parent = sha

    thread_names: set[str] = set()
    original = repo.commit_metadata

    def recording(ref: CommitRef):
        thread_names.add(threading.current_thread().name)
        return original(ref)

    repo.commit_metadata = recording  # type: ignore[method-assign]
    refs = [CommitRef(f"c{index}") for index in range(8)]

    metadata, missing = fetch_metadata(repo, refs, max_workers=4)

    assert set(metadata) == set(refs)
    assert missing == frozenset()
    assert all(name.startswith("pear-provenance") for name in thread_names)


def test_fetch_metadata_single_worker_runs_inline() -> None:
    repo = _repo()
    repo.metadata_outage = True

    metadata, missing = fetch_metadata(repo, [CommitRef("b0")], max_workers=1)

    assert metadata == {}
    assert missing == frozenset({"b0"})
