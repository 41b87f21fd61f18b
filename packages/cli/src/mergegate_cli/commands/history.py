"""history command: list finished sessions from the store."""

from __future__ import annotations

from collections import Counter

import click
from rich.console import Console
from rich.table import Table

console = Console()

_PHASE_STYLE = {
    "merged": "green",
    "aborted": "red",
    "blocked": "yellow",
}


@click.command("history")
@click.option("--branch", default=None, help="Filter by branch.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of sessions to show.")
@click.pass_context
def history_cmd(ctx, branch: str | None, limit: int):
    """Show archived review sessions, most recent first."""
    store = ctx.obj["store"]
    records = store.list_archived(branch=branch, limit=limit)
    if not records:
        console.print("[yellow]No archived sessions found.[/yellow]")
        return

    title = f"Session History: {branch}" if branch else "Session History"
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Session", style="bold", width=10)
    table.add_column("Branch", max_width=30)
    table.add_column("Outcome", width=10)
    table.add_column("Iterations", justify="right", width=10)
    table.add_column("Comments", justify="right", width=10)
    table.add_column("Dismissed", justify="right", width=10)
    table.add_column("Archived At", width=20)

    for r in records:
        style = _PHASE_STYLE.get(r.phase, "white")
        counts = Counter(c.get("classification") for c in r.comment_ledger)
        table.add_row(
            r.session_id[:8],
            r.branch,
            f"[{style}]{r.phase}[/{style}]",
            str(r.iteration_count),
            str(len(r.comment_ledger)),
            str(counts.get("dismissed", 0)),
            r.archived_at[:19].replace("T", " "),
        )

    console.print(table)
