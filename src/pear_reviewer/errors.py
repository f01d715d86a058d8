"""Error taxonomy for pear-reviewer audit runs."""

from __future__ import annotations

REASON_REPOSITORY_UNAVAILABLE = "REPOSITORY_UNAVAILABLE"
REASON_REF_NOT_FOUND = "REF_NOT_FOUND"
REASON_NO_COMMON_ANCESTOR = "NO_COMMON_ANCESTOR"
REASON_COLLECTOR_DATA_MISSING = "COLLECTOR_DATA_MISSING"
REASON_RENDER_FAILURE = "RENDER_FAILURE"
REASON_ACCESSOR_FAILURE = "ACCESSOR_FAILURE"


class AuditError(RuntimeError):
    """Base class for errors raised by the audit engine and its accessor."""

    reason_code: str = "AUDIT_ERROR"

    def __init__(self, message: str, reason_code: str | None = None) -> None:
        super().__init__(message)
        if reason_code is not None:
            self.reason_code = reason_code


class RepositoryUnavailable(AuditError):
    """Raised when the target path is not a readable git repository."""

    reason_code = REASON_REPOSITORY_UNAVAILABLE


class RefNotFound(AuditError):
    """Raised when a named ref does not resolve to a commit."""

    reason_code = REASON_REF_NOT_FOUND

    def __init__(self, ref: str, detail: str | None = None) -> None:
        message = f"ref not found: {ref}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.ref = ref


class NoCommonAncestor(AuditError):
    """Raised when base and head share no history (shallow clone or unrelated histories)."""

    reason_code = REASON_NO_COMMON_ANCESTOR

    def __init__(self, base: str, head: str) -> None:
        super().__init__(
            f"no common ancestor between {base} and {head} "
            "(shallow clone or unrelated histories?)"
        )
        self.base = base
        self.head = head


class CollectorDataMissing(AuditError):
    """Raised when provenance data for a commit cannot be retrieved.

    The engine absorbs this into an indeterminate verdict for the affected
    paths instead of aborting the run.
    """

    reason_code = REASON_COLLECTOR_DATA_MISSING

    def __init__(self, commit: str, detail: str | None = None) -> None:
        message = f"provenance data missing for commit {commit}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.commit = commit


class RenderFailure(AuditError):
    """Raised when a report cannot be rendered. Indicates a programming error."""

    reason_code = REASON_RENDER_FAILURE


class AccessorError(AuditError):
    """Raised when an underlying git invocation fails."""

    reason_code = REASON_ACCESSOR_FAILURE
