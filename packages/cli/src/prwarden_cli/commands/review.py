"""review command — review a pull request and sync its threads."""

from __future__ import annotations

import click
from rich.console import Console

from prwarden_core.errors import PrwardenError
from prwarden_core.gh.pull_request import get_pull_requests, get_repo
from prwarden_core.reviewer import run_review

console = Console()

_API_KEY_ENV = {"anthropic": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY"}


def _check_api_key(config: dict) -> None:
    provider = config["model"]
    env_var = _API_KEY_ENV.get(provider)
    if env_var and not config.get(f"{provider}_api_key"):
        raise click.UsageError(f"{env_var} environment variable is not set.")


def _pick_pull_request(this_repo) -> int | None:
    open_prs = list(get_pull_requests(this_repo))
    if not open_prs:
        console.print("[yellow]No open pull requests found.[/yellow]")
        return None
    console.print("\nOpen pull requests:")
    for pr in open_prs:
        console.print(f"  [bold]#{pr.number}[/bold]  {pr.title}")
    return click.prompt("\nPull request to review", type=int)


@click.command("review")
@click.option("--repo", required=True, help="Repository to review, as owner/name.")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number (prompts if omitted).")
@click.option(
    "--model",
    type=click.Choice(sorted(_API_KEY_ENV)),
    default=None,
    help="Reviewer provider (overrides the config file).",
)
@click.option("--policy", "policy_path", default=None, help="Markdown review policy (overrides the config file).")
@click.option("--yes", "-y", is_flag=True, help="Post without asking for confirmation.")
@click.option("--shadow", "-s", is_flag=True, help="Print the thread changes and verdict instead of posting them.")
@click.option(
    "--force",
    is_flag=True,
    help="Review even if skip_reviewed_head is set and the head commit already has a verdict.",
)
@click.pass_context
def review_cmd(ctx, repo, pr_number, model, policy_path, yes, shadow, force):
    """Review a pull request and reconcile findings with its comment threads.

    New findings open threads, findings reported again re-trigger their
    existing thread, and threads whose finding disappeared are marked fixed.
    The verdict is posted as APPROVE or REQUEST_CHANGES.

    \b
    Environment:
      GITHUB_TOKEN         GitHub token (falls back to `gh auth token`)
      ANTHROPIC_API_KEY    needed for --model anthropic
      OPENAI_API_KEY       needed for --model openai
    """
    from prwarden_core.config import load_config
    from prwarden_cli.auth import require_github_token

    config_path = ctx.obj.get("config_path", ".prwarden.yml") if ctx.obj else ".prwarden.yml"
    config = load_config(config_path, cli_overrides={"model": model, "policy": policy_path})
    config["github_token"] = require_github_token()
    _check_api_key(config)

    this_repo = get_repo(repo, token=config["github_token"])
    if pr_number is None:
        pr_number = _pick_pull_request(this_repo)
        if pr_number is None:
            return

    try:
        summary = run_review(
            repo=repo,
            pr_number=pr_number,
            config=config,
            auto_confirm=yes,
            shadow=shadow,
            force=force,
            repo_obj=this_repo,
        )
    except PrwardenError as e:
        raise click.ClickException(str(e))

    if summary is not None and summary.failures:
        console.print(f"[yellow]{len(summary.failures)} review(s) failed; see the summary above.[/yellow]")
