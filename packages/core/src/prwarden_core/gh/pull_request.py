from __future__ import annotations

import asyncio
import logging
import re
from itertools import islice

from github import Github, GithubException

from prwarden_core.errors import PreconditionError, TransientError
from prwarden_core.fingerprint import content_hash
from prwarden_core.models import FileDiff, PullRequestMetadata, ReviewContext, Side
from prwarden_core.utils.code import is_code_file, is_excluded

logger = logging.getLogger(__name__)

_SHA_MARKER_RE = re.compile(r"<!-- prwarden-sha: ([0-9a-f]{40}) -->")
_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pull_requests(repo, state: str = "open"):
    return repo.get_pulls(state=state)


def sha_marker(head_sha: str) -> str:
    return f"<!-- prwarden-sha: {head_sha} -->"


def get_last_reviewed_sha(pr) -> str | None:
    """Return the most recent HEAD SHA stored by prwarden in a review body, or None."""
    last_sha = None
    for review in pr.get_reviews():
        match = _SHA_MARKER_RE.search(review.body or "")
        if match:
            last_sha = match.group(1)
    return last_sha


async def call_github(func, *args, **kwargs):
    """Run a blocking PyGithub call off the event loop.

    Rate limiting (429) and server errors (5xx) are raised as TransientError so
    a Retrier can back off; other GithubExceptions propagate unchanged.
    """
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except GithubException as e:
        status = e.status or 0
        if status == 429 or status >= 500:
            raise TransientError(f"GitHub returned {status}: {e.data}") from e
        raise


def build_review_context(repo_name: str, pr, max_commit_messages: int = 50) -> ReviewContext:
    """Collect the revision pointers and metadata a review needs.

    Raises PreconditionError before any further API call when the iteration
    (commit count) or the base/head SHAs are missing.
    """
    iteration = pr.commits or 0
    base_sha = pr.base.sha if pr.base is not None else None
    head_sha = pr.head.sha if pr.head is not None else None
    if iteration < 1:
        raise PreconditionError(f"{repo_name}#{pr.number} has no commits; nothing to review.")
    if not base_sha or not head_sha:
        raise PreconditionError(f"{repo_name}#{pr.number} is missing its base or head revision.")

    commit_messages = [c.commit.message for c in islice(pr.get_commits(), max_commit_messages)]
    return ReviewContext(
        repo=repo_name,
        number=pr.number,
        iteration=iteration,
        base_sha=base_sha,
        head_sha=head_sha,
        metadata=PullRequestMetadata(
            title=pr.title or "",
            description=pr.body or "",
            commit_messages=commit_messages,
        ),
        is_draft=bool(pr.draft),
    )


def get_commentable_lines(patch: str) -> dict[Side, frozenset[int]]:
    """Return, per side, the file line numbers GitHub accepts a review comment on.

    Added lines are commentable on the RIGHT (new file), removed lines on the
    LEFT (original file) and context lines on both. Lines outside every hunk
    are not part of the diff and are rejected by the API.
    """
    left: set[int] = set()
    right: set[int] = set()
    old_line: int | None = None
    new_line: int | None = None
    for line in patch.splitlines():
        match = _HUNK_RE.match(line)
        if match:
            old_line, new_line = int(match.group(1)), int(match.group(2))
            continue
        if old_line is None or new_line is None or line.startswith("\\"):
            continue  # before the first hunk, or "\ No newline at end of file"
        if line.startswith("+"):
            right.add(new_line)
            new_line += 1
        elif line.startswith("-"):
            left.add(old_line)
            old_line += 1
        else:
            left.add(old_line)
            right.add(new_line)
            old_line += 1
            new_line += 1
    return {Side.LEFT: frozenset(left), Side.RIGHT: frozenset(right)}


def get_file_diffs(pr, exclude: list[str] | None = None) -> tuple[list[FileDiff], list[str]]:
    """Return (diffs to review, skipped filenames), ordered by filename.

    Excluded and non-code files are skipped. GitHub omits the patch for binary
    files (and for very large diffs); those come back flagged as binary.
    """
    exclude = exclude or []
    diffs: list[FileDiff] = []
    skipped: list[str] = []
    for f in sorted(pr.get_files(), key=lambda f: f.filename):
        if is_excluded(f.filename, exclude) or not is_code_file(f.filename):
            logger.debug("Skipping %s (excluded or not code)", f.filename)
            skipped.append(f.filename)
            continue
        patch = f.patch or ""
        lines = get_commentable_lines(patch)
        diffs.append(
            FileDiff(
                path=f.filename,
                text=patch,
                content_hash=content_hash(patch),
                is_binary=f.patch is None,
                is_deleted=f.status == "removed",
                left_lines=lines[Side.LEFT],
                right_lines=lines[Side.RIGHT],
            )
        )
    return diffs, skipped
