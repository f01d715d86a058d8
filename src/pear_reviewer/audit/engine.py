"""Audit engine entry point.

Data flows strictly downward: refs are resolved, the merge base found, the
range walked, the sensitive change set built, provenance collected, the policy
evaluated, and the report assembled.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from pear_reviewer.audit.changeset import PathMatcher, build_change_set
from pear_reviewer.audit.merge_base import find_merge_base, walk_range
from pear_reviewer.audit.policy import evaluate
from pear_reviewer.audit.provenance import collect_provenance
from pear_reviewer.audit.report import build_report
from pear_reviewer.audit.types import ExternalApproval, Report
from pear_reviewer.git.types import CommitRef, RepositoryAccessor

if TYPE_CHECKING:
    from pear_reviewer.config import AuditConfig

Reporter = Callable[[str], None]
ApprovalSource = Callable[[Sequence[CommitRef]], Sequence[ExternalApproval]]


def _silent(_message: str) -> None:
    return None


def run_audit(
    accessor: RepositoryAccessor,
    base: str,
    head: str,
    config: AuditConfig,
    *,
    category: str | None = None,
    reporter: Reporter | None = None,
    approval_source: ApprovalSource | None = None,
) -> Report:
    """Run one double-approval analysis of ``base...head``.

    ``approval_source``, when given, is called once with the in-range commits
    that touched a sensitive path; the approvals it returns are added to the
    configured external approvals.

    Raises:
        RefNotFound: If ``base`` or ``head`` does not resolve.
        NoCommonAncestor: If the two histories are disjoint.
        AccessorError: If graph data needed for the change set cannot be read.
        ValueError: If the configuration has no path patterns.

    Errors raised by ``approval_source`` propagate unchanged.
    """
    say = reporter or _silent
    matcher = PathMatcher(config.patterns)
    if not matcher:
        raise ValueError("at least one path pattern is required")

    base_commit = accessor.resolve_ref(base)
    head_commit = accessor.resolve_ref(head)
    say(f"base {base} -> {base_commit[:12]}, head {head} -> {head_commit[:12]}")

    merge_base = find_merge_base(accessor, base_commit, head_commit)
    say(f"merge base {merge_base.commit[:12]}")

    commits = walk_range(accessor, merge_base, head_commit)
    say(f"{len(commits)} commit(s) in range")

    units = build_change_set(accessor, merge_base.commit, head_commit, matcher, commits)
    say(f"{len(units)} sensitive path(s) changed")

    if approval_source is not None and units:
        attributed = list(dict.fromkeys(ref for unit in units for ref in unit.commits))
        looked_up = tuple(approval_source(attributed)) if attributed else ()
        say(f"{len(looked_up)} approval(s) looked up for {len(attributed)} commit(s)")
        config = config.with_approvals(looked_up)

    provenance = collect_provenance(accessor, units, commits, config)
    if provenance.missing:
        say(f"provenance missing for {len(provenance.missing)} commit(s)")

    verdicts = evaluate(units, provenance)
    return build_report(
        verdicts,
        provenance,
        base=base_commit,
        head=head_commit,
        merge_base=merge_base.commit,
        category=category,
        base_ref=base,
        head_ref=head,
        patterns=matcher.patterns,
    )
