"""Read-only git repository access for pear-reviewer."""

from pear_reviewer.git.repository import GitRepository, open_repository
from pear_reviewer.git.types import (
    ChangeKind,
    CommitMetadata,
    CommitNode,
    CommitRef,
    RepositoryAccessor,
    Signature,
    TreeChange,
)

__all__ = [
    "ChangeKind",
    "CommitMetadata",
    "CommitNode",
    "CommitRef",
    "GitRepository",
    "RepositoryAccessor",
    "Signature",
    "TreeChange",
    "open_repository",
]
