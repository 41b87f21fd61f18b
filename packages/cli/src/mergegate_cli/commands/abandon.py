"""abandon command: archive a branch's active session without merging."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("abandon")
@click.option("--branch", required=True, help="Branch whose active session to abandon.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def abandon_cmd(ctx, branch: str, yes: bool):
    """Archive the active session for a branch so the next run starts fresh."""
    store = ctx.obj["store"]
    record = store.load(branch)
    if record is None:
        console.print(f"[yellow]No active session for {branch}.[/yellow]")
        return
    if not yes:
        click.confirm(
            f"Abandon session {record.session_id[:8]} on {branch} "
            f"(phase {record.phase}, iteration {record.iteration_count})?",
            abort=True,
        )
    store.archive(branch)
    console.print(f"[green]Abandoned session {record.session_id[:8]} on {branch}.[/green]")
