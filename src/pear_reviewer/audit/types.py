"""Audit domain types: change units, identities, approvals, verdicts, reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pear_reviewer.git.types import ChangeKind, CommitRef

__all__ = [
    "ApprovalKind",
    "ApprovalRecord",
    "ChangeKind",
    "ChangeUnit",
    "CommitRef",
    "ExternalApproval",
    "Identity",
    "MergeBase",
    "Provenance",
    "Report",
    "ReportEntry",
    "ReportSummary",
    "Verdict",
    "VerdictStatus",
]

REASON_SINGLE_IDENTITY = "single-identity"
REASON_NO_APPROVER_ROLE = "no-approver-role"
REASON_SELF_APPROVAL = "self-approval"
REASON_NO_DATA = "no-data"
REASON_PARTIAL_DATA = "partial-data"
REASON_NO_COMMITS = "no-commits"

VIOLATION_REASONS: tuple[str, ...] = (
    REASON_SINGLE_IDENTITY,
    REASON_NO_APPROVER_ROLE,
    REASON_SELF_APPROVAL,
)
INDETERMINATE_REASONS: tuple[str, ...] = (
    REASON_NO_DATA,
    REASON_PARTIAL_DATA,
    REASON_NO_COMMITS,
)


@dataclass(frozen=True)
class ChangeUnit:
    """A sensitive path changed between merge base and tip.

    ``unresolved`` lists in-range commits whose own changes could not be
    computed because a parent object is missing; any of them may have touched
    the path.
    """

    path: str
    kind: ChangeKind
    commits: tuple[CommitRef, ...] = ()
    old_path: str | None = None
    unresolved: tuple[CommitRef, ...] = ()


@dataclass(frozen=True, eq=False)
class Identity:
    """Normalized actor reference.

    Two identities are equal iff their handles match after case and
    whitespace folding; the display name does not take part in equality.
    """

    name: str
    handle: str

    @property
    def key(self) -> str:
        return " ".join(self.handle.split()).casefold()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Identity):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        if self.name and self.name.strip().casefold() != self.key:
            return f"{self.name} <{self.handle}>"
        return self.handle


class ApprovalKind(str, Enum):
    AUTHOR = "author"
    APPROVER = "approver"


@dataclass(frozen=True)
class ApprovalRecord:
    """One identity vouching for one commit, either as author or approver."""

    identity: Identity
    commit: CommitRef
    kind: ApprovalKind
    source: str = "commit"


@dataclass(frozen=True)
class ExternalApproval:
    """Approval supplied from outside the repository (e.g. platform review state).

    Keyed by ``commit`` (approves that commit and its in-range ancestors) or
    by ``change`` (approves every commit of the matching change request).
    """

    reviewer: str
    commit: str | None = None
    change: str | None = None
    state: str = "approved"

    @property
    def approved(self) -> bool:
        return self.state.strip().lower() == "approved"


@dataclass(frozen=True)
class MergeBase:
    """Resolved merge base plus the base-side commits visited while finding it."""

    commit: CommitRef
    base_side: frozenset[CommitRef] = frozenset()


@dataclass(frozen=True)
class Provenance:
    """Collected approval records keyed by commit.

    ``missing`` lists commits whose metadata could not be retrieved.
    """

    records: dict[CommitRef, tuple[ApprovalRecord, ...]] = field(default_factory=dict)
    missing: frozenset[CommitRef] = frozenset()

    def for_commits(self, commits: tuple[CommitRef, ...]) -> tuple[ApprovalRecord, ...]:
        out: list[ApprovalRecord] = []
        for commit in commits:
            out.extend(self.records.get(commit, ()))
        return tuple(out)


class VerdictStatus(str, Enum):
    COMPLIANT = "compliant"
    VIOLATION = "violation"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class Verdict:
    status: VerdictStatus
    reason: str | None = None

    @classmethod
    def compliant(cls) -> Verdict:
        return cls(VerdictStatus.COMPLIANT)

    @classmethod
    def violation(cls, reason: str) -> Verdict:
        if reason not in VIOLATION_REASONS:
            raise ValueError(f"unknown violation reason: {reason}")
        return cls(VerdictStatus.VIOLATION, reason)

    @classmethod
    def indeterminate(cls, reason: str) -> Verdict:
        if reason not in INDETERMINATE_REASONS:
            raise ValueError(f"unknown indeterminate reason: {reason}")
        return cls(VerdictStatus.INDETERMINATE, reason)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value}({self.reason})"
        return self.status.value


@dataclass(frozen=True)
class ReportEntry:
    unit: ChangeUnit
    verdict: Verdict
    identities: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReportSummary:
    total: int
    compliant: int
    violation: int
    indeterminate: int


@dataclass(frozen=True)
class Report:
    """Ordered (ChangeUnit, Verdict) pairs plus summary counts."""

    entries: tuple[ReportEntry, ...]
    summary: ReportSummary
    base: CommitRef
    head: CommitRef
    merge_base: CommitRef
    category: str | None = None
    base_ref: str | None = None
    head_ref: str | None = None
    patterns: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.summary.violation == 0 and self.summary.indeterminate == 0
