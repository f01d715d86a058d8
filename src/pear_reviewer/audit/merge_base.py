"""Merge-base resolution and range walking over the commit graph.

The resolver paints commits reachable from either tip, newest committer date
first, and keeps walking until every pending commit is known to lie below a
shared ancestor. Candidates that are themselves ancestors of another
candidate are then dropped, so a head that merged an older side branch still
resolves to the newest shared commit.

All walks use an explicit heap or queue and a visited map keyed by commit id,
so deep histories never grow the Python stack. Ordering relies on committer
dates the same way ``git merge-base`` does; heavy clock skew can widen the
walked range but never drops a commit that is only reachable from the head.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Callable
from itertools import count

from pear_reviewer.audit.types import MergeBase
from pear_reviewer.errors import AccessorError, NoCommonAncestor
from pear_reviewer.git.types import CommitNode, CommitRef, RepositoryAccessor

_BASE = 1
_HEAD = 2
_BOTH = _BASE | _HEAD
_STALE = 4


def _node(accessor: RepositoryAccessor, ref: CommitRef, *, is_tip: bool) -> CommitNode | None:
    try:
        return accessor.commit_node(ref)
    except AccessorError:
        # Parent objects missing past a shallow boundary end the walk there.
        if is_tip:
            raise
        return None


def find_merge_base(accessor: RepositoryAccessor, base_tip: CommitRef, change_tip: CommitRef) -> MergeBase:
    """Find the best common ancestor of the two tips.

    ``base_side`` on the result holds every visited commit known to be
    reachable from ``base_tip``.

    Raises:
        NoCommonAncestor: when the histories are disjoint.
    """
    flags: dict[CommitRef, int] = {}
    nodes: dict[CommitRef, CommitNode | None] = {}
    heap: list[tuple[int, int, CommitRef]] = []
    ticket = count()

    def load(ref: CommitRef) -> CommitNode | None:
        if ref not in nodes:
            nodes[ref] = _node(accessor, ref, is_tip=ref in (base_tip, change_tip))
        return nodes[ref]

    def push(ref: CommitRef) -> None:
        node = load(ref)
        stamp = node.timestamp if node is not None else 0
        heapq.heappush(heap, (-stamp, next(ticket), ref))

    flags[base_tip] = _BASE
    flags[change_tip] = flags.get(change_tip, 0) | _HEAD
    push(base_tip)
    if change_tip != base_tip:
        push(change_tip)

    found: list[CommitRef] = []
    while any(not flags[ref] & _STALE for _, _, ref in heap):
        _, _, ref = heapq.heappop(heap)
        mark = flags[ref] & (_BOTH | _STALE)
        if mark == _BOTH:
            if ref not in found:
                found.append(ref)
            mark |= _STALE
        node = nodes.get(ref)
        if node is None:
            continue
        for parent in node.parents:
            if flags.get(parent, 0) & mark == mark:
                continue
            flags[parent] = flags.get(parent, 0) | mark
            push(parent)

    candidates = [ref for ref in found if not flags[ref] & _STALE]
    if not candidates:
        raise NoCommonAncestor(base_tip, change_tip)

    best = _independent(candidates, load)
    base_side = frozenset(ref for ref, mask in flags.items() if mask & (_BASE | _STALE))
    return MergeBase(commit=best[0], base_side=base_side)


def _independent(
    candidates: list[CommitRef],
    load: Callable[[CommitRef], CommitNode | None],
) -> list[CommitRef]:
    """Drop candidates reachable from another candidate, keeping input order."""
    if len(candidates) < 2:
        return candidates

    stamps: dict[CommitRef, int] = {}
    for ref in candidates:
        node = load(ref)
        stamps[ref] = node.timestamp if node is not None else 0
    floor = min(stamps.values())

    redundant: set[CommitRef] = set()
    for ref in candidates:
        if ref in redundant:
            continue
        others = set(candidates) - {ref}
        seen: set[CommitRef] = set()
        start = load(ref)
        queue: deque[CommitRef] = deque(start.parents if start is not None else ())
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            if current in others:
                redundant.add(current)
            node = load(current)
            if node is None or node.timestamp < floor:
                continue
            queue.extend(parent for parent in node.parents if parent not in seen)
    return [ref for ref in candidates if ref not in redundant]


def walk_range(accessor: RepositoryAccessor, merge_base: MergeBase, tip: CommitRef) -> tuple[CommitRef, ...]:
    """Readable commits in ``(merge_base, tip]`` in breadth-first order from ``tip``.

    The walk never enters the merge base or any commit already known to be an
    ancestor of the base tip. Commits whose objects are missing (a shallow
    boundary inside the range) are left out; callers detect them through the
    parents of the commits that are returned.
    """
    stop = set(merge_base.base_side)
    stop.add(merge_base.commit)

    order: list[CommitRef] = []
    seen: set[CommitRef] = set()
    queue: deque[CommitRef] = deque([tip])
    while queue:
        ref = queue.popleft()
        if ref in seen or ref in stop:
            continue
        seen.add(ref)
        node = _node(accessor, ref, is_tip=ref == tip)
        if node is None:
            continue
        order.append(ref)
        queue.extend(parent for parent in node.parents if parent not in seen and parent not in stop)
    return tuple(order)
