"""Double-approval policy evaluation.

Evaluation is a pure function of the change units and collected approval
records: identical inputs always give identical verdicts.
"""

from __future__ import annotations

from collections.abc import Sequence

from pear_reviewer.audit.types import (
    REASON_NO_APPROVER_ROLE,
    REASON_NO_COMMITS,
    REASON_NO_DATA,
    REASON_PARTIAL_DATA,
    REASON_SELF_APPROVAL,
    REASON_SINGLE_IDENTITY,
    ApprovalKind,
    ApprovalRecord,
    ChangeUnit,
    Identity,
    Provenance,
    Verdict,
)
from pear_reviewer.git.types import CommitRef


def evaluate_unit(unit: ChangeUnit, provenance: Provenance) -> Verdict:
    """Apply the double-approval rule to one change unit."""
    if not unit.commits:
        if unit.unresolved:
            return Verdict.indeterminate(REASON_PARTIAL_DATA)
        return Verdict.indeterminate(REASON_NO_COMMITS)

    without_data = [ref for ref in unit.commits if not provenance.records.get(ref)]
    if len(without_data) == len(unit.commits):
        return Verdict.indeterminate(REASON_NO_DATA)
    # History missing inside the range may hide further authors of the path.
    if without_data or unit.unresolved:
        return Verdict.indeterminate(REASON_PARTIAL_DATA)

    records = provenance.for_commits(unit.commits)
    return evaluate_records(records)


def evaluate_records(records: Sequence[ApprovalRecord]) -> Verdict:
    """Rule core over a fully populated record set."""
    if not records:
        return Verdict.indeterminate(REASON_NO_DATA)

    authors = _authors_by_commit(records)
    approvals = [record for record in records if record.kind == ApprovalKind.APPROVER]

    if approvals and all(record.identity in authors.get(record.commit, ()) for record in approvals):
        return Verdict.violation(REASON_SELF_APPROVAL)

    distinct = {record.identity for record in records}
    if len(distinct) < 2:
        return Verdict.violation(REASON_SINGLE_IDENTITY)

    if not approvals:
        return Verdict.violation(REASON_NO_APPROVER_ROLE)

    return Verdict.compliant()


def evaluate(units: Sequence[ChangeUnit], provenance: Provenance) -> tuple[tuple[ChangeUnit, Verdict], ...]:
    """Exactly one verdict per unit, in input order."""
    return tuple((unit, evaluate_unit(unit, provenance)) for unit in units)


def involved_identities(unit: ChangeUnit, provenance: Provenance) -> tuple[str, ...]:
    """Display strings of every identity tied to the unit, with role suffixes."""
    roles: dict[Identity, set[str]] = {}
    names: dict[Identity, Identity] = {}
    for record in provenance.for_commits(unit.commits):
        roles.setdefault(record.identity, set()).add(record.kind.value)
        names.setdefault(record.identity, record.identity)
    rendered = [
        f"{names[identity]} ({', '.join(sorted(kinds))})"
        for identity, kinds in roles.items()
    ]
    return tuple(sorted(rendered, key=str.casefold))


def _authors_by_commit(records: Sequence[ApprovalRecord]) -> dict[CommitRef, set[Identity]]:
    authors: dict[CommitRef, set[Identity]] = {}
    for record in records:
        if record.kind == ApprovalKind.AUTHOR:
            authors.setdefault(record.commit, set()).add(record.identity)
    return authors
