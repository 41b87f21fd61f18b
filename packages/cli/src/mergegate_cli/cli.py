"""CLI entry point for mergegate.

Commands:
  run      start or resume a review session on a branch and merge its PR
  status   show the active session checkpoint for a branch
  history  list finished (archived) sessions
  abandon  archive a branch's active session without merging
"""

from __future__ import annotations

import importlib.metadata
import logging
import sys

import click
from rich.console import Console

from mergegate_cli.commands.abandon import abandon_cmd
from mergegate_cli.commands.history import history_cmd
from mergegate_cli.commands.run import run_cmd
from mergegate_cli.commands.status import status_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .mergegate.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (default; store_path or .mergegate.db)
      store: gist   → GistStore   (requires gist_id and github_token)
      store: memory → MemoryStore (nothing survives the process)

    This factory lives in cli.py so neither mergegate_core nor
    mergegate_store know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "gist":
        from mergegate_store.gist import GistStore

        gist_id = config.get("gist_id")
        token = config.get("github_token")
        if not gist_id or not token:
            raise click.UsageError("store: gist requires gist_id in .mergegate.yml and a GitHub token.")
        return GistStore(gist_id=gist_id, token=token)

    if store_type == "memory":
        from mergegate_store.memory import MemoryStore

        return MemoryStore()

    if store_type == "sqlite":
        from mergegate_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".mergegate.db"))

    raise click.UsageError(f"Unknown store {store_type!r}. Choose 'sqlite', 'gist' or 'memory'.")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("mergegate"),
    prog_name="mergegate",
)
@click.option(
    "--config",
    "config_path",
    default=".mergegate.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="MERGEGATE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every state transition.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Review, fix, and merge a branch behind a bounded, resumable merge gate."""
    from mergegate_cli.auth import resolve_github_token
    from mergegate_core.config import load_config

    _setup_logging(verbose)

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(run_cmd)
main.add_command(status_cmd)
main.add_command(history_cmd)
main.add_command(abandon_cmd)
