"""status command: show a branch's active session."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

_CLASSIFICATION_STYLE = {
    "addressed": "green",
    "fixed": "green",
    "stale": "green",
    "dismissed": "dim",
    "confirmed": "red",
    "disputed": "yellow",
    "unclassified": "white",
}


@click.command("status")
@click.option("--branch", required=True, help="Branch whose active session to show.")
@click.pass_context
def status_cmd(ctx, branch: str):
    """Show the active checkpoint and comment ledger for a branch."""
    store = ctx.obj["store"]
    record = store.load(branch)
    if record is None:
        console.print(f"[yellow]No active session for {branch}.[/yellow]")
        return

    console.print(f"\n[bold]Session {record.session_id[:8]}[/bold] on [cyan]{branch}[/cyan]")
    console.print(f"  Phase:               {record.phase}")
    console.print(f"  Last completed step: {record.last_completed_step}")
    console.print(f"  Iteration:           {record.iteration_count}")
    console.print(f"  Updated at:          {record.updated_at[:19].replace('T', ' ')}")
    reason = record.state.get("reason")
    if reason:
        console.print(f"  Reason:              {reason}")

    if not record.comment_ledger:
        console.print("\n[dim]No comments ledgered yet.[/dim]")
        return

    table = Table(title="Comment Ledger", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold")
    table.add_column("Location", max_width=40)
    table.add_column("Source", width=8)
    table.add_column("Classification", width=14)
    table.add_column("Fix", width=8)
    for entry in record.comment_ledger:
        classification = entry.get("classification", "unclassified")
        style = _CLASSIFICATION_STYLE.get(classification, "white")
        line = entry.get("line_start")
        table.add_row(
            entry.get("id", ""),
            entry.get("file_path", "") + (f":{line}" if line else ""),
            entry.get("source", ""),
            f"[{style}]{classification}[/{style}]",
            (entry.get("fix_commit") or "")[:7],
        )
    console.print(table)
