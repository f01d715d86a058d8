"""Report assembly and rendering.

Rendering is a pure data-to-text transformation; delivery (stdout, file,
pull request comment) is the caller's concern.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pear_reviewer import __version__
from pear_reviewer.artifacts.canonical_json import canonical_dumps
from pear_reviewer.audit.policy import involved_identities
from pear_reviewer.audit.types import (
    ChangeUnit,
    CommitRef,
    Provenance,
    Report,
    ReportEntry,
    ReportSummary,
    Verdict,
    VerdictStatus,
)
from pear_reviewer.errors import RenderFailure
from pear_reviewer.schemas.validator import validate_data

COMMENT_MARKER = "<!-- written by pear-reviewer -->"
REPORT_SCHEMA = "audit_report"
SCHEMA_VERSION = "1.0"
_SHORT_SHA = 12


def build_report(
    verdicts: Sequence[tuple[ChangeUnit, Verdict]],
    provenance: Provenance,
    *,
    base: CommitRef,
    head: CommitRef,
    merge_base: CommitRef,
    category: str | None = None,
    base_ref: str | None = None,
    head_ref: str | None = None,
    patterns: Sequence[str] = (),
) -> Report:
    """Sort verdicts by path and attach summary counts."""
    entries: list[ReportEntry] = []
    seen: set[str] = set()
    for unit, verdict in sorted(verdicts, key=lambda pair: pair[0].path):
        if unit.path in seen:
            raise RenderFailure(f"duplicate change unit for path: {unit.path}")
        seen.add(unit.path)
        entries.append(
            ReportEntry(unit=unit, verdict=verdict, identities=involved_identities(unit, provenance))
        )

    counts = {status: 0 for status in VerdictStatus}
    for entry in entries:
        counts[entry.verdict.status] += 1

    return Report(
        entries=tuple(entries),
        summary=ReportSummary(
            total=len(entries),
            compliant=counts[VerdictStatus.COMPLIANT],
            violation=counts[VerdictStatus.VIOLATION],
            indeterminate=counts[VerdictStatus.INDETERMINATE],
        ),
        base=base,
        head=head,
        merge_base=merge_base,
        category=category,
        base_ref=base_ref,
        head_ref=head_ref,
        patterns=tuple(patterns),
    )


def report_to_dict(report: Report) -> dict[str, Any]:
    """Convert a report to its JSON payload."""
    return {
        "schema_version": SCHEMA_VERSION,
        "tool_version": __version__,
        "category": report.category,
        "status": "pass" if report.passed else "fail",
        "refs": {
            "base": report.base,
            "head": report.head,
            "merge_base": report.merge_base,
            "base_ref": report.base_ref,
            "head_ref": report.head_ref,
        },
        "patterns": list(report.patterns),
        "summary": {
            "total": report.summary.total,
            "compliant": report.summary.compliant,
            "violation": report.summary.violation,
            "indeterminate": report.summary.indeterminate,
        },
        "entries": [
            {
                "path": entry.unit.path,
                "kind": entry.unit.kind.value,
                "old_path": entry.unit.old_path,
                "commits": list(entry.unit.commits),
                "unresolved_commits": list(entry.unit.unresolved),
                "verdict": entry.verdict.status.value,
                "reason": entry.verdict.reason,
                "identities": list(entry.identities),
            }
            for entry in report.entries
        ],
    }


def render_json(report: Report) -> str:
    """Canonical JSON, validated against the packaged report schema."""
    payload = report_to_dict(report)
    try:
        validate_data(payload, REPORT_SCHEMA)
    except (ValueError, KeyError) as exc:
        raise RenderFailure(f"report failed schema validation: {exc}") from exc
    return canonical_dumps(payload) + "\n"


def render_markdown(report: Report) -> str:
    """Human-readable report suitable for a pull request comment."""
    summary = report.summary
    if report.passed:
        status = "PASS ✓"
    else:
        status = f"FAIL ✗ ({summary.violation} violation(s), {summary.indeterminate} indeterminate)"

    lines = [
        COMMENT_MARKER,
        "# Double Approval Report",
        "",
        f"**Status:** {status}",
    ]
    if report.category:
        lines.append(f"**Category:** {report.category}")
    lines.extend(
        [
            f"**Base:** {_ref_label(report.base_ref, report.base)}",
            f"**Head:** {_ref_label(report.head_ref, report.head)}",
            f"**Merge base:** `{_short(report.merge_base)}`",
        ]
    )
    if report.patterns:
        lines.append("**Patterns:** " + ", ".join(f"`{p}`" for p in report.patterns))

    lines.extend(
        [
            "",
            "## Summary",
            "",
            f"- Paths checked: {summary.total}",
            f"- Compliant: {summary.compliant}",
            f"- Violation: {summary.violation}",
            f"- Indeterminate: {summary.indeterminate}",
            "",
            "## Paths",
            "",
        ]
    )

    if not report.entries:
        lines.append("*(no sensitive paths changed)*")
    else:
        lines.append("| Path | Change | Commits | Verdict |")
        lines.append("|------|--------|---------|---------|")
        for entry in report.entries:
            commits = ", ".join(f"`{_short(ref, 7)}`" for ref in entry.unit.commits) or "-"
            lines.append(
                f"| {_path_label(entry.unit)} | {entry.unit.kind.value} | {commits} | {entry.verdict} |"
            )

    violations = [e for e in report.entries if e.verdict.status == VerdictStatus.VIOLATION]
    if violations:
        lines.extend(["", "## Violations", ""])
        lines.extend(_detail_line(entry) for entry in violations)

    indeterminate = [e for e in report.entries if e.verdict.status == VerdictStatus.INDETERMINATE]
    if indeterminate:
        lines.extend(["", "## Indeterminate", ""])
        lines.extend(_detail_line(entry) for entry in indeterminate)

    lines.append("")
    return "\n".join(lines)


def _detail_line(entry: ReportEntry) -> str:
    identities = ", ".join(entry.identities) if entry.identities else "none"
    line = f"- `{entry.unit.path}`: {entry.verdict.reason}; identities: {identities}"
    if entry.unit.unresolved:
        missing = ", ".join(f"`{_short(ref, 7)}`" for ref in entry.unit.unresolved)
        line += f"; parent history missing for {missing}"
    return line


def _path_label(unit: ChangeUnit) -> str:
    if unit.old_path:
        return f"`{unit.path}` (from `{unit.old_path}`)"
    return f"`{unit.path}`"


def _ref_label(name: str | None, sha: str) -> str:
    if name and name != sha:
        return f"{name} (`{_short(sha)}`)"
    return f"`{_short(sha)}`"


def _short(sha: str, length: int = _SHORT_SHA) -> str:
    return sha[:length]
