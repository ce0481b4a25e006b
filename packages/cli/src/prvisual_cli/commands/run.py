"""run command — generate the visual for one pull request locally.

Uses the same engine and pipeline as the webhook server. Only the adapters
differ: a personal token instead of the GitHub App, and (with --dry-run)
no billing, no comment, and a throwaway in-memory store.
"""

from __future__ import annotations

import click
from rich.console import Console

from prvisual_core.events import InboundEvent
from prvisual_core.gh.pull_request import CommentPublisher, get_pull, get_pull_requests, get_repo

console = Console()


class DryRunPublisher(CommentPublisher):
    """Reads the real PR but prints the comment instead of posting it."""

    def upsert(self, body: str, existing_id: int | None = None) -> int:
        action = f"update comment {existing_id}" if existing_id else "create a new comment"
        console.print(f"\n[bold]Dry run, would {action}:[/bold]\n")
        console.print(body, markup=False, highlight=False)
        return existing_id or 0


def _event_from_pull(repo, pr, account_id: int) -> InboundEvent:
    return InboundEvent(
        account_id=account_id,
        repository_id=repo.id,
        repository=repo.full_name,
        number=pr.number,
        head_sha=pr.head.sha,
        action="opened",
        title=pr.title or "",
        description=pr.body or None,
    )


@click.command("run")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option(
    "--pr",
    "pr_number",
    type=int,
    default=None,
    help="Pull request number. Omit to list open PRs interactively.",
)
@click.option(
    "--installation",
    "account_id",
    type=int,
    default=0,
    show_default=True,
    help="Billing account (GitHub App installation id) to charge.",
)
@click.option(
    "--brief-provider",
    type=click.Choice(["gemini", "openai", "anthropic", "command"]),
    default=None,
    help="Brief provider. Overrides config file.",
)
@click.option("--dry-run", is_flag=True, help="Generate the image but print the comment instead of posting it.")
@click.pass_context
def run_cmd(
    ctx,
    repo: str,
    pr_number: int | None,
    account_id: int,
    brief_provider: str | None,
    dry_run: bool,
):
    """Generate an infographic for a pull request and post it as a comment.

    \b
    Required environment variables:
      GITHUB_TOKEN      GitHub personal access token (or use gh CLI)
      GEMINI_API_KEY    Or the key of the configured brief/image provider
    """
    from prvisual_cli.auth import resolve_github_token
    from prvisual_core.billing import StaticBilling
    from prvisual_core.config import missing_credentials
    from prvisual_core.services import build_engine, build_pipeline_factory, token_publisher_factory
    from prvisual_store.memory import MemoryStore

    config = dict(ctx.obj["config"])
    if brief_provider:
        config["brief_provider"] = brief_provider
    if dry_run:
        config["billing"] = "static"

    token = resolve_github_token()
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    config["github_token"] = token

    missing = missing_credentials(config, server=False)
    if missing:
        raise click.UsageError(f"Missing environment variable(s): {', '.join(missing)}")

    this_repo = get_repo(repo, token=token)

    if pr_number is None:
        prs = list(get_pull_requests(this_repo))
        if not prs:
            console.print("[yellow]No open pull requests found.[/yellow]")
            return
        console.print("\nOpen pull requests:")
        for pr in prs:
            console.print(f"  [bold]#{pr.number}[/bold]  {pr.title}")
        pr_number = click.prompt("\nEnter the pull request number", type=int)

    event = _event_from_pull(this_repo, get_pull(this_repo, pr_number), account_id)

    if dry_run:
        store = MemoryStore()
        pull = get_pull(this_repo, pr_number)

        def publisher_factory(_event):
            return DryRunPublisher(pull)

        pipeline_factory = build_pipeline_factory(config, store, publisher_factory, billing_factory=StaticBilling)
    else:
        store = ctx.obj["store"]
        pipeline_factory = build_pipeline_factory(config, store, token_publisher_factory(config))

    engine = build_engine(config, store, pipeline_factory)
    engine.submit_event(event)

    console.print(f"Generating visual for [bold]{repo}#{pr_number}[/bold] at [cyan]{event.short_sha}[/cyan]...")
    outcome = engine.run(event.idempotency_key)

    if outcome.succeeded:
        console.print(f"\n[green]Done.[/green] Image: {outcome.artifact_url}")
    else:
        console.print(f"\n[red]Failed:[/red] {outcome.reason}")
        ctx.exit(1)
