"""Pull request review approvals from GitHub via the ``gh`` CLI."""

from __future__ import annotations

import json
import re
import shutil
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path

from pear_reviewer.audit.types import ExternalApproval
from pear_reviewer.git.exec import ExecError, run_command

# Review states that change a reviewer's standing; COMMENTED reviews do not.
_DECISIVE_STATES = {"APPROVED", "CHANGES_REQUESTED", "DISMISSED"}
_REPOSITORY = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_REVIEW_FIELDS = "{user: .user.login, state: .state, commit_id: .commit_id, submitted_at: .submitted_at}"
# Upper bound on concurrent ``gh api`` calls.
MAX_PARALLEL_REQUESTS = 5


class PlatformError(RuntimeError):
    """Raised when review state cannot be fetched from the hosting platform."""


def fetch_pull_request_approvals(
    repo_root: Path,
    pr_number: int,
    *,
    repository: str | None = None,
) -> tuple[ExternalApproval, ...]:
    """Fetch the current review decision of every reviewer on a pull request.

    Args:
        repo_root: Local clone used by ``gh`` to infer the repository
        pr_number: Pull request number
        repository: Optional ``owner/name`` overriding the inferred repository

    Returns:
        One ExternalApproval per reviewer, keyed by the reviewed commit
    """
    if pr_number < 1:
        raise PlatformError(f"invalid pull request number: {pr_number}")
    argv = [
        _gh_path(),
        "api",
        f"repos/{_slug(repository)}/pulls/{pr_number}/reviews",
        "--paginate",
        "--jq",
        f".[] | {_REVIEW_FIELDS}",
    ]
    try:
        result = run_command(argv, cwd=repo_root)
    except ExecError as exc:
        raise PlatformError(f"failed to fetch reviews for pull request #{pr_number}: {exc}") from exc
    return parse_reviews(result.stdout)


def associated_pull_requests(
    repo_root: Path,
    sha: str,
    *,
    repository: str | None = None,
) -> tuple[int, ...]:
    """Numbers of the pull requests GitHub associates with one commit."""
    argv = [_gh_path(), "api", f"repos/{_slug(repository)}/commits/{sha}/pulls", "--jq", ".[].number"]
    try:
        result = run_command(argv, cwd=repo_root)
    except ExecError as exc:
        raise PlatformError(f"failed to look up pull requests for commit {sha[:12]}: {exc}") from exc

    numbers: list[int] = []
    for line in result.stdout.split():
        try:
            numbers.append(int(line))
        except ValueError as exc:
            raise PlatformError(f"unexpected pull request number: {line!r}") from exc
    return tuple(numbers)


def fetch_commit_approvals(
    repo_root: Path,
    commits: Sequence[str],
    *,
    repository: str | None = None,
    max_workers: int = MAX_PARALLEL_REQUESTS,
) -> tuple[ExternalApproval, ...]:
    """Reviews of every pull request associated with any of ``commits``.

    Each commit is looked up once and each pull request fetched once; at most
    ``max_workers`` ``gh`` calls run at the same time. Results are ordered by
    pull request number, so the output does not depend on request timing.
    """
    if not commits:
        return ()
    lookup = partial(associated_pull_requests, repo_root, repository=repository)
    reviews = partial(fetch_pull_request_approvals, repo_root, repository=repository)

    workers = max(1, min(max_workers, len(commits)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pear-github") as pool:
        numbers = sorted({number for found in pool.map(lookup, dict.fromkeys(commits)) for number in found})
        batches = list(pool.map(reviews, numbers))
    return tuple(approval for batch in batches for approval in batch)


def _gh_path() -> str:
    gh_path = shutil.which("gh")
    if not gh_path:
        raise PlatformError("gh CLI not found on PATH; install it or pass --approvals instead")
    return gh_path


def _slug(repository: str | None) -> str:
    if repository is None:
        return "{owner}/{repo}"
    if not _REPOSITORY.match(repository):
        raise PlatformError(f"invalid repository `{repository}`; expected owner/name")
    return repository


def parse_reviews(stdout: str) -> tuple[ExternalApproval, ...]:
    """Reduce a JSON-lines review stream to the latest decisive review per reviewer."""
    latest: dict[str, tuple[str, ExternalApproval]] = {}
    for line in stdout.splitlines():
        if not line.strip():
            continue
        try:
            review = json.loads(line)
        except json.JSONDecodeError as exc:
            raise PlatformError(f"unexpected review payload: {line!r}") from exc

        user = review.get("user")
        state = str(review.get("state") or "").upper()
        commit_id = review.get("commit_id")
        if not user or not commit_id or state not in _DECISIVE_STATES:
            continue
        submitted_at = str(review.get("submitted_at") or "")
        approval = ExternalApproval(reviewer=str(user), commit=str(commit_id), state=state.lower())

        key = str(user).casefold()
        previous = latest.get(key)
        if previous is None or submitted_at >= previous[0]:
            latest[key] = (submitted_at, approval)

    return tuple(approval for _, approval in sorted(latest.values(), key=lambda item: item[1].reviewer.casefold()))
