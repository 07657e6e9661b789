"""ledger command — show the findings recorded on a pull request."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from prwarden_core.formatter import parse_ledger
from prwarden_core.gh.comment_store import GitHubCommentStore
from prwarden_core.gh.pull_request import get_pull, get_repo

console = Console()

_SEVERITY_STYLE = {"Error": "red", "Warn": "yellow", "Info": "blue"}


@click.command("ledger")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
def ledger_cmd(repo: str, pr_number: int):
    """Print the ledger thread: every finding active at the last review."""
    from prwarden_cli.auth import require_github_token

    this_repo = get_repo(repo, token=require_github_token())
    store = GitHubCommentStore(this_repo, get_pull(this_repo, pr_number))
    threads = asyncio.run(store.list_threads())

    ledger = next((t for t in threads if t.is_ledger), None)
    if ledger is None or not ledger.comments:
        console.print(f"[yellow]No ledger found on {repo}#{pr_number}. Run `prwarden review` first.[/yellow]")
        return
    state = parse_ledger(ledger.comments[0].content)
    if state is None:
        raise click.ClickException(f"Ledger thread {ledger.id} is unreadable.")

    open_threads = sum(1 for t in threads if t.is_bot and not t.is_ledger and t.status.value in ("active", "pending"))
    console.print(f"\n[bold]Ledger for [cyan]{repo}#{pr_number}[/cyan][/bold]")
    console.print(f"  Updated:       {state.get('updatedAt', 'unknown')}")
    console.print(f"  Findings:      {len(state['fingerprints'])}")
    console.print(f"  Open threads:  {open_threads}")

    if not state["fingerprints"]:
        return
    table = Table(show_header=True)
    table.add_column("Severity", style="bold")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Fingerprint", style="dim")
    for entry in state["fingerprints"]:
        severity = entry.get("severity", "")
        style = _SEVERITY_STYLE.get(severity, "white")
        table.add_row(
            f"[{style}]{severity}[/{style}]",
            entry.get("filePath") or "(PR metadata)",
            str(entry.get("line", "")),
            str(entry.get("fingerprint", ""))[:12],
        )
    console.print(table)
