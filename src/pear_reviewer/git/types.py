"""Repository data types shared by the accessor and the audit engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NewType, Protocol

CommitRef = NewType("CommitRef", str)


class ChangeKind(str, Enum):
    """Kind of change recorded for a path between two trees."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True)
class Signature:
    """Name/email pair as recorded in a commit header."""

    name: str
    email: str


@dataclass(frozen=True)
class CommitNode:
    """Graph-level view of a commit: enough to walk history and diff trees."""

    ref: CommitRef
    tree: str
    parents: tuple[CommitRef, ...]
    timestamp: int = 0


@dataclass(frozen=True)
class CommitMetadata:
    """Full commit metadata used for provenance."""

    ref: CommitRef
    tree: str
    parents: tuple[CommitRef, ...]
    author: Signature
    committer: Signature
    message: str
    timestamp: int = 0


@dataclass(frozen=True)
class TreeChange:
    """One changed path between two trees."""

    path: str
    kind: ChangeKind
    old_path: str | None = None


class RepositoryAccessor(Protocol):
    """Read-only repository handle consumed by the audit engine."""

    def resolve_ref(self, name: str) -> CommitRef: ...

    def commit_node(self, ref: CommitRef) -> CommitNode: ...

    def commit_metadata(self, ref: CommitRef) -> CommitMetadata: ...

    def diff_trees(self, tree_a: str | None, tree_b: str) -> tuple[TreeChange, ...]: ...
