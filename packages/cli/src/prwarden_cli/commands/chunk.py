"""chunk command — preview how a diff is split before it is sent to the model."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from prwarden_core.chunker import chunk_diff
from prwarden_core.fingerprint import content_hash
from prwarden_core.models import FileDiff
from prwarden_core.utils.size import format_size, parse_size

console = Console()


@click.command("chunk")
@click.argument("diff_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--max-size",
    default="16KB",
    show_default=True,
    help='Maximum chunk size, e.g. 4000 or "16KB".',
)
@click.option("--show-content", is_flag=True, help="Print each chunk's content.")
def chunk_cmd(diff_file: Path, max_size: str, show_content: bool):
    """Split DIFF_FILE into chunks and list them."""
    try:
        limit = parse_size(max_size)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--max-size")
    if limit <= 0:
        raise click.BadParameter("must be positive", param_hint="--max-size")

    text = diff_file.read_text(encoding="utf-8", errors="replace")
    chunks = chunk_diff(FileDiff(path=diff_file.name, text=text, content_hash=content_hash(text)), limit)

    table = Table(title=f"{diff_file.name}: {len(chunks)} chunk(s) of at most {format_size(limit)}")
    table.add_column("#", justify="right")
    table.add_column("Start line", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Context")
    for chunk in chunks:
        table.add_row(str(chunk.index + 1), str(chunk.start_line), format_size(len(chunk.content)), chunk.context)
    console.print(table)

    if show_content:
        for chunk in chunks:
            console.rule(chunk.display_name)
            console.print(chunk.content, markup=False, highlight=False, end="")
