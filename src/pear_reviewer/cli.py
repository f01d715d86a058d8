"""pear-reviewer CLI - double approval audit for a pending change."""

from __future__ import annotations

import os
from enum import Enum
from functools import partial
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from pear_reviewer import __version__
from pear_reviewer.artifacts.canonical_json import sha256_text
from pear_reviewer.audit.engine import run_audit
from pear_reviewer.audit.report import render_json, render_markdown
from pear_reviewer.config import ConfigError, load_config, load_external_approvals
from pear_reviewer.errors import AuditError, RefNotFound
from pear_reviewer.git.repository import GitRepository, open_repository
from pear_reviewer.platform.github import PlatformError, fetch_commit_approvals, fetch_pull_request_approvals

EXIT_TERMINAL_ERROR = 1
EXIT_VIOLATIONS = 3
GITHUB_OUTPUT_NAME = "comment"

app = typer.Typer(
    name="pear-reviewer",
    help="Verify that changes to sensitive paths were authored and approved by two distinct people.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Report rendering format."""

    MARKDOWN = "markdown"
    JSON = "json"


def _version_option_callback(value: bool) -> None:
    """Handle eager --version option."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _resolve_base(repo: GitRepository, base: str) -> str:
    """Return ``base`` or, in CI checkouts without local branches, ``origin/<base>``."""
    try:
        repo.resolve_ref(base)
    except RefNotFound:
        if "/" in base or base == "HEAD":
            raise
    else:
        return base

    fallback = f"origin/{base}"
    try:
        repo.resolve_ref(fallback)
    except RefNotFound:
        raise RefNotFound(base, f"also tried {fallback}") from None
    return fallback


def _write_github_output(text: str) -> None:
    target = os.environ.get("GITHUB_OUTPUT")
    if not target:
        raise typer.BadParameter("--github-output requires the GITHUB_OUTPUT environment variable")
    delimiter = f"pear-reviewer-{sha256_text(text)[:16]}"
    with open(target, "a", encoding="utf-8") as handle:
        handle.write(f"{GITHUB_OUTPUT_NAME}<<{delimiter}\n{text.rstrip(chr(10))}\n{delimiter}\n")


@app.command()
def audit(
    category: str = typer.Argument(
        ...,
        metavar="CATEGORY",
        help="Sensitive path category to audit (e.g. helm-chart, repo).",
    ),
    repo_path: Path = typer.Option(
        Path("."),
        "--repo",
        envvar="GITHUB_WORKSPACE",
        help="Repository to audit (defaults to $GITHUB_WORKSPACE or the current directory).",
    ),
    base: str = typer.Option(
        "",
        "--base",
        envvar="GITHUB_BASE_REF",
        show_envvar=False,
        help="Base ref the change will merge into (defaults to $GITHUB_BASE_REF).",
    ),
    head: str = typer.Option(
        "HEAD",
        "--head",
        envvar="GITHUB_HEAD_REF",
        show_envvar=False,
        help="Head ref of the proposed change (defaults to $GITHUB_HEAD_REF or HEAD).",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="Configuration file (defaults to .pear-reviewer.yaml in the repository).",
    ),
    approvals_path: Path | None = typer.Option(
        None,
        "--approvals",
        help="YAML/JSON file with externally supplied approvals.",
    ),
    pr_number: int | None = typer.Option(
        None,
        "--pr",
        help="Pull request number whose reviews count as approvals (requires gh).",
    ),
    repository: str | None = typer.Option(
        None,
        "--repository",
        envvar="GITHUB_REPOSITORY",
        show_envvar=False,
        help="owner/name of the hosting repository for --pr and --associated-prs.",
    ),
    associated_prs: bool = typer.Option(
        False,
        "--associated-prs",
        help="Also count reviews on the pull requests associated with each audited commit (requires gh).",
    ),
    change_id: str | None = typer.Option(
        None,
        "--change-id",
        help="Identifier of the change request; change-keyed approvals must match it.",
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.MARKDOWN,
        "--format",
        case_sensitive=False,
        help="Report format.",
    ),
    out: Path | None = typer.Option(
        None,
        "--out",
        help="Write the report to this file instead of stdout.",
    ),
    github_output: bool = typer.Option(
        False,
        "--github-output",
        help="Also append the report as step output `comment` to $GITHUB_OUTPUT.",
    ),
    fail_on_violation: bool = typer.Option(
        False,
        "--fail-on-violation",
        help=f"Exit {EXIT_VIOLATIONS} when any path is in violation or indeterminate.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print analysis progress to stderr.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show pear-reviewer version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Audit CATEGORY paths changed between the merge base of BASE and HEAD, and HEAD."""
    _ = version
    if not base.strip():
        raise typer.BadParameter("a base ref is required (--base or $GITHUB_BASE_REF)", param_hint="--base")
    head = head.strip() or "HEAD"

    try:
        repo = open_repository(repo_path)
        config_file = load_config(repo.root, config_path)
        effective_change_id = change_id or (str(pr_number) if pr_number is not None else None)
        config = config_file.audit_config(category, change_id=effective_change_id)

        if approvals_path is not None:
            config = config.with_approvals(load_external_approvals(approvals_path))
        if pr_number is not None:
            if verbose:
                console.print(f"[dim]fetching reviews for pull request #{pr_number}[/dim]")
            config = config.with_approvals(
                fetch_pull_request_approvals(repo.root, pr_number, repository=repository)
            )

        base_ref = _resolve_base(repo, base.strip())
        reporter = (lambda message: console.print(f"[dim]{message}[/dim]")) if verbose else None
        approval_source = None
        if associated_prs:
            approval_source = partial(fetch_commit_approvals, repo.root, repository=repository)
        report = run_audit(
            repo,
            base_ref,
            head,
            config,
            category=category,
            reporter=reporter,
            approval_source=approval_source,
        )
        rendered = render_json(report) if output_format == OutputFormat.JSON else render_markdown(report)
    except (AuditError, ConfigError, PlatformError) as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(EXIT_TERMINAL_ERROR) from exc

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(rendered, encoding="utf-8")
        if verbose:
            console.print(f"[cyan]Report:[/cyan] {out}")
    else:
        typer.echo(rendered, nl=False)

    if github_output:
        _write_github_output(render_markdown(report))

    if verbose:
        summary = report.summary
        console.print(
            f"[bold]{summary.total}[/bold] checked, "
            f"[green]{summary.compliant} compliant[/green], "
            f"[red]{summary.violation} violation[/red], "
            f"[yellow]{summary.indeterminate} indeterminate[/yellow]"
        )

    if fail_on_violation and not report.passed:
        raise typer.Exit(EXIT_VIOLATIONS)


def main() -> None:
    app()
