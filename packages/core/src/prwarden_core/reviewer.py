"""Core PR review orchestration."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from github import GithubException
from rich.console import Console

from prwarden_core.config import load_policy
from prwarden_core.gh.comment_store import GitHubCommentStore, ShadowCommentStore
from prwarden_core.gh.pull_request import (
    build_review_context,
    call_github,
    get_file_diffs,
    get_last_reviewed_sha,
    get_pull,
    get_repo,
    sha_marker,
)
from prwarden_core.models import FileFailure, PlanResult, Severity
from prwarden_core.planner import ReviewPlanner
from prwarden_core.providers.anthropic import AnthropicReviewer
from prwarden_core.providers.openai import OpenAIReviewer
from prwarden_core.reconciler import ReconcileOutcome, ThreadReconciler
from prwarden_core.utils.resilience import build_retrier

console = Console()
logger = logging.getLogger(__name__)

APPROVE = "APPROVE"
REQUEST_CHANGES = "REQUEST_CHANGES"


@dataclass
class ReviewSummary:
    """Result returned by run_review: the verdict plus what changed on the PR."""

    repo: str
    pr_number: int
    head_sha: str
    iteration: int
    event: str  # "APPROVE" | "REQUEST_CHANGES"
    error_count: int = 0
    warning_count: int = 0
    total_findings: int = 0
    reviewed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)
    outcome: ReconcileOutcome | None = None
    shadow: bool = False
    reviewed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def _get_reviewer(config: dict):
    model = config["model"]
    retrier = build_retrier("AI provider", config, "ai_circuit")
    if model == "anthropic":
        return AnthropicReviewer(api_key=config["anthropic_api_key"], retrier=retrier)
    if model == "openai":
        return OpenAIReviewer(api_key=config["openai_api_key"], retrier=retrier)
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")


def _determine_event(result: PlanResult) -> str:
    return APPROVE if result.approve else REQUEST_CHANGES


def _build_summary(result: PlanResult, outcome: ReconcileOutcome | None, elapsed_seconds: float) -> str:
    """Build the top-level review body posted as the GitHub review description."""
    info_count = sum(1 for f in result.findings if f.severity == Severity.INFO)

    elapsed_min = elapsed_seconds / 60
    time_str = f"{int(elapsed_seconds)}s" if elapsed_min < 1 else f"{elapsed_min:.1f} min"

    lines = [f"## Review summary (iteration {result.iteration})\n"]

    if result.error_count:
        verdict = f"{result.error_count} error(s) — changes required."
    elif result.warning_count > result.warn_budget:
        verdict = f"{result.warning_count} warning(s), above the budget of {result.warn_budget} — changes required."
    elif result.findings:
        verdict = f"{result.warning_count} warning(s) within the budget of {result.warn_budget}."
    else:
        verdict = "No issues found. The changes look good."
    lines.append(f"> {verdict}\n")

    lines.append("| Error | Warn | Info |")
    lines.append("|:-----:|:----:|:----:|")
    lines.append(f"| {result.error_count or '—'} | {result.warning_count or '—'} | {info_count or '—'} |\n")

    lines.append(
        f"**{len(result.reviewed_files)}** file(s) reviewed"
        + (f", **{len(result.skipped_files)}** skipped" if result.skipped_files else "")
        + (f", **{len(result.failures)}** failed" if result.failures else "")
        + f" · reviewed in {time_str}"
    )

    if outcome is not None:
        lines.append(
            f"\n_Threads: {outcome.created} new, {outcome.retriggered} re-triggered, {outcome.resolved} resolved._"
        )

    if result.failures:
        lines.append("\n**Could not review:**")
        for failure in result.failures:
            label = failure.path or "PR metadata"
            lines.append(f"- `{label}` ({failure.kind}): {failure.message}")

    return "\n".join(lines)


def print_plan(result: PlanResult) -> None:
    """Print the findings of a plan to the terminal."""
    _severity_color = {Severity.ERROR: "red", Severity.WARN: "yellow", Severity.INFO: "blue"}
    if not result.findings:
        console.print("[green]No findings.[/green]")
    for f in result.findings:
        color = _severity_color.get(f.severity, "white")
        where = f"{f.file_path}:{f.line_start}" if f.file_path else "PR metadata"
        console.print(
            f"[{color}]{f.severity.value.upper()}[/{color}] [bold cyan]{where}[/bold cyan]  "
            f"{f.category.value}: {f.title}"
        )
    for failure in result.failures:
        style = "magenta" if failure.kind == "malformed" else "red"
        console.print(f"[{style}]{failure.kind.upper()}[/{style}] {failure.path or 'PR metadata'}: {failure.message}")


async def review_pull_request(
    repo: str,
    pr_number: int,
    config: dict,
    auto_confirm: bool = False,
    shadow: bool = False,
    force: bool = False,
    repo_obj=None,
) -> ReviewSummary | None:
    """Run the full review pipeline for one pull request.

    Returns None on early exits: draft skip, declined confirmation, or a head
    that already carries a verdict when ``skip_reviewed_head`` is set. Raises
    PreconditionError when the PR has no reviewable revision, before any diff
    is fetched.
    """
    this_repo = repo_obj if repo_obj is not None else get_repo(repo, token=config["github_token"])

    try:
        this_pr = get_pull(this_repo, pr_number)
    except GithubException:
        raise ValueError(f"PR #{pr_number} not found in {repo}.")

    if this_pr.draft and not config.get("review_draft_prs", False):
        console.print(
            "[yellow]Skipping draft PR. Set review_draft_prs: true in .prwarden.yml to review drafts.[/yellow]"
        )
        return None

    head_sha = this_pr.head.sha
    if config.get("skip_reviewed_head", False) and not force and get_last_reviewed_sha(this_pr) == head_sha:
        console.print("[yellow]No new commits since the last review. Nothing to do (use --force to re-run).[/yellow]")
        return None

    context = build_review_context(repo, this_pr, config.get("max_commit_messages", 50))
    diffs, skipped = get_file_diffs(this_pr, config.get("exclude", []))
    for name in skipped:
        console.print(f"  Skipping: {name}")

    github_retrier = build_retrier("GitHub", config, "github_circuit")
    store = GitHubCommentStore(this_repo, this_pr)
    if shadow:
        store = ShadowCommentStore(store)
    threads = await github_retrier.run(store.list_threads)
    logger.debug("Found %d existing thread(s) on %s#%d", len(threads), repo, pr_number)

    reviewer = _get_reviewer(config)
    policy = load_policy(config)
    console.print(f"Reviewing {len(diffs)} file(s) of {repo}#{pr_number} (iteration {context.iteration})...")
    review_start = time.monotonic()

    result = await ReviewPlanner(reviewer, config).plan(context, context.iteration, diffs, threads, policy)
    result.skipped_files[:0] = skipped
    event = _determine_event(result)
    print_plan(result)

    if not shadow and not auto_confirm:
        prompt = f"Post {len(result.findings)} finding(s) as {event}? (y/n): "
        answer = (await asyncio.to_thread(input, prompt)).strip().lower()
        if answer != "y":
            return None

    outcome = await ThreadReconciler(store, github_retrier).reconcile(result, threads)

    summary = ReviewSummary(
        repo=repo,
        pr_number=pr_number,
        head_sha=head_sha,
        iteration=context.iteration,
        event=event,
        error_count=result.error_count,
        warning_count=result.warning_count,
        total_findings=len(result.findings),
        reviewed_files=result.reviewed_files,
        skipped_files=result.skipped_files,
        failures=result.failures,
        outcome=outcome,
        shadow=shadow,
    )

    if shadow:
        console.print(f"[bold]Shadow review complete. Verdict would be {event}.[/bold]")
        return summary

    body = _build_summary(result, outcome, time.monotonic() - review_start) + f"\n{sha_marker(head_sha)}"
    await github_retrier.run(call_github, this_pr.create_review, body=body, event=event)
    color = "green" if event == APPROVE else "red"
    console.print(
        f"\n[{color}]Review posted: {event}.[/{color}] "
        f"{outcome.created} new thread(s), {outcome.retriggered} re-triggered, {outcome.resolved} resolved."
    )
    return summary


def run_review(
    repo: str,
    pr_number: int,
    config: dict,
    auto_confirm: bool = False,
    shadow: bool = False,
    force: bool = False,
    repo_obj=None,
) -> ReviewSummary | None:
    """Synchronous entry point used by the CLI."""
    return asyncio.run(
        review_pull_request(
            repo,
            pr_number,
            config,
            auto_confirm=auto_confirm,
            shadow=shadow,
            force=force,
            repo_obj=repo_obj,
        )
    )
