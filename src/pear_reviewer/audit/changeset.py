"""Sensitive change-set construction between a merge base and a tip."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from pear_reviewer.audit.types import ChangeUnit
from pear_reviewer.errors import AccessorError
from pear_reviewer.git.types import ChangeKind, CommitNode, CommitRef, RepositoryAccessor, TreeChange


class PathMatcher:
    """Glob matcher for repository-root-relative POSIX paths.

    ``*`` and ``?`` never cross a ``/``; ``**`` spans any number of path
    segments; a pattern without ``/`` matches the file name at any depth; a
    trailing ``/`` matches everything below that directory.
    """

    def __init__(self, patterns: Iterable[str]) -> None:
        cleaned = [p.strip().strip("`") for p in patterns]
        self.patterns: tuple[str, ...] = tuple(p for p in cleaned if p)
        self._compiled: list[tuple[re.Pattern[str], bool]] = []
        for pattern in self.patterns:
            anchored = pattern.lstrip("/")
            if anchored.endswith("/"):
                anchored = f"{anchored}**"
            basename_only = "/" not in anchored
            self._compiled.append((re.compile(f"^{translate_glob(anchored)}$"), basename_only))

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def matches(self, path: str) -> bool:
        normalized = path.strip().lstrip("/")
        if not normalized:
            return False
        name = normalized.rsplit("/", 1)[-1]
        for regex, basename_only in self._compiled:
            if regex.match(name if basename_only else normalized):
                return True
        return False


def translate_glob(pattern: str) -> str:
    """Translate a path glob into a regular expression body."""
    out: list[str] = []
    idx = 0
    size = len(pattern)
    while idx < size:
        char = pattern[idx]
        if char == "*":
            if pattern.startswith("**", idx):
                idx += 2
                if idx < size and pattern[idx] == "/":
                    out.append("(?:.*/)?")
                    idx += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
            idx += 1
        elif char == "?":
            out.append("[^/]")
            idx += 1
        elif char == "[":
            end = pattern.find("]", idx + 2 if pattern[idx + 1 : idx + 2] in ("!", "]") else idx + 1)
            if end == -1:
                out.append(re.escape(char))
                idx += 1
                continue
            body = pattern[idx + 1 : end].replace("\\", "\\\\")
            if body.startswith("!"):
                body = "^" + body[1:]
            if body in ("", "^"):
                out.append(re.escape(char))
                idx += 1
                continue
            out.append(f"[{body}]")
            idx = end + 1
        else:
            out.append(re.escape(char))
            idx += 1
    return "".join(out)


def commit_touched_paths(accessor: RepositoryAccessor, node: CommitNode) -> frozenset[str] | None:
    """Paths a commit itself changed, or ``None`` when a parent cannot be read.

    For an ordinary commit this is its diff against its parent (or the empty
    tree for a root commit). For a merge it is the set of paths that differ
    from every parent, i.e. content the merge introduced on its own; a pure
    merge touches nothing.
    """
    if not node.parents:
        return _paths(accessor.diff_trees(None, node.tree))

    parent_trees: list[str] = []
    for parent in node.parents:
        try:
            parent_trees.append(accessor.commit_node(parent).tree)
        except AccessorError:
            return None

    touched: set[str] | None = None
    for parent_tree in parent_trees:
        paths = _paths(accessor.diff_trees(parent_tree, node.tree))
        touched = set(paths) if touched is None else touched & paths
        if not touched:
            break
    return frozenset(touched or ())


def _paths(changes: Iterable[TreeChange]) -> frozenset[str]:
    out: set[str] = set()
    for change in changes:
        out.add(change.path)
        if change.old_path:
            out.add(change.old_path)
    return frozenset(out)


def build_change_set(
    accessor: RepositoryAccessor,
    merge_base: CommitRef,
    tip: CommitRef,
    matcher: PathMatcher,
    commits: Sequence[CommitRef] = (),
) -> tuple[ChangeUnit, ...]:
    """Sensitive paths changed between ``merge_base`` and ``tip``, sorted by path.

    Each unit lists the commits from ``commits`` (the walked range) that
    touched its path or, for renames, its old path. A commit whose parent is
    missing (a shallow boundary inside the range) has no knowable diff; it is
    listed as unresolved on every unit instead.
    """
    base_tree = accessor.commit_node(merge_base).tree
    tip_tree = accessor.commit_node(tip).tree

    selected: dict[str, tuple[ChangeKind, str | None]] = {}
    departed: list[str] = []
    for change in accessor.diff_trees(base_tree, tip_tree):
        if matcher.matches(change.path):
            old_path = change.old_path if change.kind == ChangeKind.RENAMED else None
            selected[change.path] = (change.kind, old_path)
        elif change.kind == ChangeKind.RENAMED and change.old_path and matcher.matches(change.old_path):
            departed.append(change.old_path)

    # A sensitive file renamed out of the sensitive area counts as its removal.
    for path in departed:
        if path in selected:
            selected[path] = (ChangeKind.MODIFIED, None)
        else:
            selected[path] = (ChangeKind.REMOVED, None)

    if not selected:
        return ()

    touched = {ref: commit_touched_paths(accessor, accessor.commit_node(ref)) for ref in commits}
    unresolved = tuple(ref for ref in commits if touched[ref] is None)

    units: list[ChangeUnit] = []
    for path in sorted(selected):
        kind, old_path = selected[path]
        keys = {path} if old_path is None else {path, old_path}
        unit_commits = tuple(ref for ref in commits if touched[ref] is not None and keys & touched[ref])
        units.append(
            ChangeUnit(path=path, kind=kind, commits=unit_commits, old_path=old_path, unresolved=unresolved)
        )
    return tuple(units)
