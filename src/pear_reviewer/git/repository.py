"""git-backed repository accessor.

All reads go through the ``git`` executable. Commit objects are immutable, so
parsed commits and tree diffs are cached per handle; the cache is guarded by a
lock because provenance collection reads metadata from worker threads.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from pear_reviewer.errors import AccessorError, RefNotFound, RepositoryUnavailable
from pear_reviewer.git.exec import ExecError, run_git
from pear_reviewer.git.types import (
    ChangeKind,
    CommitMetadata,
    CommitNode,
    CommitRef,
    Signature,
    TreeChange,
)

_STATUS_KINDS = {
    "A": ChangeKind.ADDED,
    "C": ChangeKind.ADDED,
    "D": ChangeKind.REMOVED,
    "M": ChangeKind.MODIFIED,
    "T": ChangeKind.MODIFIED,
    "R": ChangeKind.RENAMED,
}


def open_repository(path: Path | str) -> GitRepository:
    """Open a local clone (work tree or bare) for read access."""
    candidate = Path(path).expanduser()
    if not candidate.exists():
        raise RepositoryUnavailable(f"repository path does not exist: {candidate}")
    if not candidate.is_dir():
        raise RepositoryUnavailable(f"repository path is not a directory: {candidate}")

    try:
        out = run_git(["rev-parse", "--absolute-git-dir"], repo_root=candidate)
    except ExecError as exc:
        raise RepositoryUnavailable(f"not a git repository: {candidate}") from exc
    except OSError as exc:
        raise RepositoryUnavailable(f"unable to run git in {candidate}: {exc}") from exc

    git_dir = out.stdout.strip()
    if not git_dir:
        raise RepositoryUnavailable(f"not a git repository: {candidate} (empty git dir)")
    return GitRepository(root=candidate.resolve(), git_dir=Path(git_dir))


class GitRepository:
    """Repository accessor backed by ``git`` subprocess calls."""

    def __init__(self, root: Path, git_dir: Path) -> None:
        self.root = root
        self.git_dir = git_dir
        self._lock = threading.Lock()
        self._commits: dict[CommitRef, CommitMetadata] = {}
        self._diffs: dict[tuple[str | None, str], tuple[TreeChange, ...]] = {}
        self._empty_tree: str | None = None

    def __repr__(self) -> str:
        return f"GitRepository(root={str(self.root)!r})"

    def _git(self, args: list[str]) -> str:
        try:
            return run_git(args, repo_root=self.root).stdout
        except ExecError as exc:
            raise AccessorError(str(exc)) from exc

    def resolve_ref(self, name: str) -> CommitRef:
        """Resolve a branch, tag, or revision expression to a commit id."""
        candidate = name.strip()
        if not candidate:
            raise RefNotFound(name, "empty ref")
        if candidate.startswith("-"):
            raise RefNotFound(candidate, "refs may not start with a dash")
        result = run_git(
            ["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"],
            repo_root=self.root,
            check=False,
        )
        sha = result.stdout.strip()
        if result.returncode != 0 or not sha:
            raise RefNotFound(candidate)
        return CommitRef(sha)

    def commit_node(self, ref: CommitRef) -> CommitNode:
        meta = self.commit_metadata(ref)
        return CommitNode(ref=meta.ref, tree=meta.tree, parents=meta.parents, timestamp=meta.timestamp)

    def commit_metadata(self, ref: CommitRef) -> CommitMetadata:
        with self._lock:
            cached = self._commits.get(ref)
        if cached is not None:
            return cached

        raw = self._git(["cat-file", "commit", ref])
        meta = parse_commit_object(ref, raw)
        with self._lock:
            self._commits[ref] = meta
        return meta

    def diff_trees(self, tree_a: str | None, tree_b: str) -> tuple[TreeChange, ...]:
        """Diff two trees with rename detection; ``tree_a=None`` is the empty tree."""
        key = (tree_a, tree_b)
        with self._lock:
            cached = self._diffs.get(key)
        if cached is not None:
            return cached

        left = tree_a if tree_a is not None else self.empty_tree()
        raw = self._git(["diff-tree", "-r", "-z", "-M", "--name-status", left, tree_b])
        changes = parse_name_status(raw)
        with self._lock:
            self._diffs[key] = changes
        return changes

    def empty_tree(self) -> str:
        """Object id of the empty tree in this repository's hash format."""
        if self._empty_tree is None:
            self._empty_tree = self._git(["hash-object", "-t", "tree", os.devnull]).strip()
        return self._empty_tree


def parse_commit_object(ref: CommitRef, raw: str) -> CommitMetadata:
    """Parse ``git cat-file commit`` output."""
    header, _, message = display_text(raw).partition("\n\n")
    tree = ""
    parents: list[CommitRef] = []
    author = Signature(name="", email="")
    committer = Signature(name="", email="")
    timestamp = 0

    for line in header.splitlines():
        # Continuation lines of multi-line headers (gpgsig, mergetag).
        if line.startswith(" "):
            continue
        key, _, value = line.partition(" ")
        if key == "tree":
            tree = value.strip()
        elif key == "parent":
            parents.append(CommitRef(value.strip()))
        elif key == "author":
            author = parse_signature(value)
        elif key == "committer":
            committer = parse_signature(value)
            timestamp = signature_time(value)

    if not tree:
        raise AccessorError(f"commit {ref} has no tree header")

    return CommitMetadata(
        ref=ref,
        tree=tree,
        parents=tuple(parents),
        author=author,
        committer=committer,
        message=message,
        timestamp=timestamp,
    )


def parse_signature(value: str) -> Signature:
    """Parse ``Name <email> timestamp tz`` from a commit header."""
    open_idx = value.find("<")
    close_idx = value.find(">", open_idx + 1)
    if open_idx == -1 or close_idx == -1:
        return Signature(name=value.strip(), email="")
    return Signature(
        name=value[:open_idx].strip(),
        email=value[open_idx + 1 : close_idx].strip(),
    )


def signature_time(value: str) -> int:
    """Seconds since the epoch from ``Name <email> timestamp tz``; 0 when absent."""
    _, _, rest = value.rpartition(">")
    fields = rest.split()
    if not fields:
        return 0
    try:
        return int(fields[0])
    except ValueError:
        return 0


def display_text(text: str) -> str:
    """Re-spell bytes that are not valid UTF-8 as ``\\xNN`` escapes.

    Subprocess output is decoded with ``surrogateescape``; lone surrogates
    cannot be written to UTF-8 files or terminals, so they are replaced here.
    """
    return text.encode("utf-8", "surrogateescape").decode("utf-8", "backslashreplace")


def parse_name_status(raw: str) -> tuple[TreeChange, ...]:
    """Parse ``git diff-tree -z --name-status`` output."""
    tokens = [display_text(token) for token in raw.split("\0")]
    changes: list[TreeChange] = []
    idx = 0
    while idx < len(tokens):
        status = tokens[idx].strip()
        idx += 1
        if not status:
            continue
        code = status[0]
        kind = _STATUS_KINDS.get(code)
        if code in {"R", "C"}:
            old_path, new_path = tokens[idx], tokens[idx + 1]
            idx += 2
            if code == "R":
                changes.append(TreeChange(path=new_path, kind=ChangeKind.RENAMED, old_path=old_path))
            else:
                changes.append(TreeChange(path=new_path, kind=ChangeKind.ADDED))
            continue

        path = tokens[idx]
        idx += 1
        if kind is None:
            # Unmerged or unknown status letters: report as a modification.
            kind = ChangeKind.MODIFIED
        changes.append(TreeChange(path=path, kind=kind))
    return tuple(changes)
