"""run command: start or resume a review session and merge when the gate passes."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console

from mergegate_cli.checkpoints import StoreCheckpoints
from mergegate_core.errors import SessionBusyError
from mergegate_core.gh.pull_request import get_authenticated_login, get_pull, get_repo
from mergegate_core.gh.review_service import GitHubReviewService
from mergegate_core.models import Aborted, Blocked, Merged
from mergegate_core.orchestrator import build_orchestrator
from mergegate_core.vcs.git import GitRepository
from mergegate_store.base import StoreError

console = Console()

EXIT_MERGED = 0
EXIT_BLOCKED = 1
EXIT_ABORTED = 2


@click.command("run")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request to review and merge.")
@click.option("--branch", default=None, help="Branch under review. Defaults to the checked-out branch.")
@click.option("--base", default=None, help="Base branch. Overrides config file.")
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option("--shadow", "-s", is_flag=True, help="Run the whole loop without pushing or merging.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.option("--no-persist", is_flag=True, help="Keep checkpoints in memory only (no resume).")
@click.pass_context
def run_cmd(
    ctx,
    repo: str,
    pr_number: int,
    branch: str | None,
    base: str | None,
    model: str | None,
    shadow: bool,
    yes: bool,
    no_persist: bool,
):
    """Review a branch locally and externally, fix confirmed comments, and merge.

    Resumes the branch's active session if one exists. Exits 0 when merged,
    1 when blocked, and 2 when aborted at the iteration bound.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub personal access token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    """
    config = dict(ctx.obj["config"])
    for key, value in (("base", base), ("model", model)):
        if value is not None:
            config[key] = value

    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    for provider in {config["model"], config.get("judge_model") or config["model"]}:
        if provider == "anthropic" and not config.get("anthropic_api_key"):
            raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
        if provider == "openai" and not config.get("openai_api_key"):
            raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    vcs = GitRepository(".", remote=config["remote"])
    branch = branch or vcs.current_branch()

    try:
        pr = get_pull(get_repo(repo, token=token), pr_number)
    except GithubException as e:
        raise click.UsageError(f"PR #{pr_number} not found in {repo}: {e}")
    if pr.head.ref != branch:
        raise click.UsageError(f"PR #{pr_number} is for branch {pr.head.ref!r}, not {branch!r}.")

    try:
        self_login = get_authenticated_login(token)
    except GithubException:
        console.print("[yellow]Could not resolve the authenticated GitHub login; all PR comments will count.[/yellow]")
        self_login = None

    if not yes and not shadow:
        click.confirm(f"Review {branch} and merge PR #{pr_number} into {config['base']} once the gate passes?", abort=True)

    if no_persist:
        from mergegate_store.memory import MemoryStore

        store = MemoryStore()
    else:
        store = ctx.obj["store"]

    service = GitHubReviewService(
        pr,
        request_body=config["review_request_body"],
        reviewer_login=config.get("external_reviewer"),
        self_login=self_login,
    )
    orchestrator = build_orchestrator(config, branch, vcs, service, StoreCheckpoints(store), shadow=shadow)

    try:
        outcome = orchestrator.run()
    except (SessionBusyError, StoreError) as e:
        raise click.ClickException(str(e))

    if isinstance(outcome, Merged):
        ctx.exit(EXIT_MERGED)
    if isinstance(outcome, Blocked):
        console.print(f"[red]Blocked:[/red] {outcome.reason}")
        console.print(f"  last completed step: {outcome.last_completed_step}, iteration: {outcome.iteration_count}")
        ctx.exit(EXIT_BLOCKED)
    if isinstance(outcome, Aborted):
        console.print(f"[red]Aborted with {len(outcome.unresolved_comments)} unresolved comment(s):[/red]")
        for comment_id in outcome.unresolved_comments:
            console.print(f"  - {comment_id}")
        console.print(f"  last completed step: {outcome.last_completed_step}, iteration: {outcome.iteration_count}")
        ctx.exit(EXIT_ABORTED)
