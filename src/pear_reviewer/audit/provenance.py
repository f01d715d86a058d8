"""Provenance collection: who authored and who approved each relevant commit."""

from __future__ import annotations

import os
from collections import deque
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

from pear_reviewer.audit.identity import (
    identity_from_signature,
    parse_identity,
    resolve_bare_handle,
)
from pear_reviewer.audit.trailers import trailer_values
from pear_reviewer.audit.types import (
    ApprovalKind,
    ApprovalRecord,
    ChangeUnit,
    ExternalApproval,
    Identity,
    Provenance,
)
from pear_reviewer.errors import AccessorError, CollectorDataMissing
from pear_reviewer.git.types import CommitMetadata, CommitRef, RepositoryAccessor

if TYPE_CHECKING:
    from pear_reviewer.config import AuditConfig

_KIND_ORDER = {ApprovalKind.AUTHOR: 0, ApprovalKind.APPROVER: 1}


def collect_provenance(
    accessor: RepositoryAccessor,
    units: Sequence[ChangeUnit],
    commits: Sequence[CommitRef],
    config: AuditConfig,
) -> Provenance:
    """Collect approval records for every commit that touches an in-scope path.

    ``commits`` is the walked range ``(merge_base, tip]``. All of it is read so
    that approval trailers on merge commits reach the commits they merged, but
    only commits referenced by ``units`` receive records.
    """
    attributed: list[CommitRef] = []
    for unit in units:
        for ref in unit.commits:
            if ref not in attributed:
                attributed.append(ref)
    if not attributed:
        return Provenance()

    range_set = frozenset(commits) | frozenset(attributed)
    ordered = [ref for ref in commits if ref in range_set] + [ref for ref in attributed if ref not in commits]
    metadata, missing = fetch_metadata(accessor, ordered, max_workers=config.max_workers)

    known = [
        (meta.author, identity_from_signature(meta.author, config.aliases))
        for meta in metadata.values()
    ]
    collected: dict[CommitRef, dict[tuple[str, ApprovalKind], ApprovalRecord]] = {
        ref: {} for ref in attributed if ref in metadata
    }

    def add(ref: CommitRef, identity: Identity, kind: ApprovalKind, source: str) -> None:
        bucket = collected.get(ref)
        if bucket is None:
            return
        bucket.setdefault((identity.key, kind), ApprovalRecord(identity, ref, kind, source))

    def trailer_identities(message: str, keys: Iterable[str]) -> list[Identity]:
        found: list[Identity] = []
        for value in trailer_values(message, keys):
            identity = parse_identity(value, config.aliases)
            if identity is not None:
                found.append(resolve_bare_handle(identity, known))
        return found

    for ref in attributed:
        meta = metadata.get(ref)
        if meta is None:
            continue
        add(ref, identity_from_signature(meta.author, config.aliases), ApprovalKind.AUTHOR, "commit")
        for identity in trailer_identities(meta.message, config.author_trailers):
            add(ref, identity, ApprovalKind.AUTHOR, "trailer")
        for identity in trailer_identities(meta.message, config.approval_trailers):
            add(ref, identity, ApprovalKind.APPROVER, "trailer")

    # Approval trailers on a merge vouch for everything that merge brought in.
    for ref in ordered:
        meta = metadata.get(ref)
        if meta is None or len(meta.parents) < 2:
            continue
        approvers = trailer_identities(meta.message, config.approval_trailers)
        if not approvers:
            continue
        for merged in introduced_by_merge(accessor, meta, range_set):
            for identity in approvers:
                add(merged, identity, ApprovalKind.APPROVER, "trailer")

    for approval in config.external_approvals:
        if not approval.approved:
            continue
        identity = parse_identity(approval.reviewer, config.aliases)
        if identity is None:
            continue
        identity = resolve_bare_handle(identity, known)
        for target in external_targets(accessor, approval, ordered, range_set, config.change_id):
            add(target, identity, ApprovalKind.APPROVER, "external")

    records = {
        ref: tuple(sorted(bucket.values(), key=_record_sort_key))
        for ref, bucket in collected.items()
    }
    return Provenance(records=records, missing=frozenset(ref for ref in attributed if ref in missing))


def fetch_metadata(
    accessor: RepositoryAccessor,
    commits: Sequence[CommitRef],
    *,
    max_workers: int | None = None,
) -> tuple[dict[CommitRef, CommitMetadata], frozenset[CommitRef]]:
    """Read commit metadata, in parallel when there is more than one commit.

    Results are merged by commit id in the calling thread. Commits whose
    metadata cannot be read are returned in the second element.
    """
    metadata: dict[CommitRef, CommitMetadata] = {}
    missing: set[CommitRef] = set()
    workers = max(1, min(max_workers or os.cpu_count() or 1, len(commits)))

    if workers == 1:
        for ref in commits:
            try:
                metadata[ref] = accessor.commit_metadata(ref)
            except (CollectorDataMissing, AccessorError):
                missing.add(ref)
        return metadata, frozenset(missing)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pear-provenance") as pool:
        futures = {pool.submit(accessor.commit_metadata, ref): ref for ref in commits}
        for future in as_completed(futures):
            ref = futures[future]
            try:
                metadata[ref] = future.result()
            except (CollectorDataMissing, AccessorError):
                missing.add(ref)
    return metadata, frozenset(missing)


def introduced_by_merge(
    accessor: RepositoryAccessor,
    merge: CommitMetadata,
    range_set: frozenset[CommitRef],
) -> frozenset[CommitRef]:
    """In-range commits reachable from a merge's side parents but not its first parent."""
    mainline = in_range_ancestors(accessor, merge.parents[:1], range_set)
    side = in_range_ancestors(accessor, merge.parents[1:], range_set)
    return side - mainline


def in_range_ancestors(
    accessor: RepositoryAccessor,
    starts: Iterable[CommitRef],
    range_set: frozenset[CommitRef],
) -> frozenset[CommitRef]:
    """Commits reachable from ``starts`` (inclusive) without leaving ``range_set``."""
    seen: set[CommitRef] = set()
    queue: deque[CommitRef] = deque(ref for ref in starts if ref in range_set)
    while queue:
        ref = queue.popleft()
        if ref in seen:
            continue
        seen.add(ref)
        try:
            parents = accessor.commit_node(ref).parents
        except AccessorError:
            continue
        queue.extend(parent for parent in parents if parent in range_set and parent not in seen)
    return frozenset(seen)


def external_targets(
    accessor: RepositoryAccessor,
    approval: ExternalApproval,
    ordered: Sequence[CommitRef],
    range_set: frozenset[CommitRef],
    change_id: str | None,
) -> frozenset[CommitRef]:
    """Commits an external approval applies to.

    A commit-keyed approval covers that commit and its in-range ancestors. A
    change-keyed approval covers the whole range when it names the change
    under audit. An approval with neither key covers the whole range.
    """
    if approval.commit:
        wanted = approval.commit.strip().lower()
        matches = [ref for ref in ordered if ref == wanted or (len(wanted) >= 7 and ref.startswith(wanted))]
        if len(matches) != 1:
            return frozenset()
        return in_range_ancestors(accessor, matches, range_set)

    if approval.change is not None:
        if change_id is None or approval.change.strip() != change_id.strip():
            return frozenset()
    return frozenset(ordered)


def _record_sort_key(record: ApprovalRecord) -> tuple[int, str, str]:
    return (_KIND_ORDER[record.kind], record.identity.key, record.source)
