"""resume command — finish workflows left pending or processing."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("resume")
@click.pass_context
def resume_cmd(ctx):
    """Re-run interrupted workflows from their last completed step.

    Completed steps are not repeated, so resuming never regenerates an image
    or posts a second comment for work that already finished. Uses the GitHub
    App credentials when configured, otherwise a personal token.
    """
    from prvisual_cli.auth import resolve_github_token
    from prvisual_core.services import (
        app_publisher_factory,
        build_engine,
        build_pipeline_factory,
        token_publisher_factory,
    )

    config = dict(ctx.obj["config"])
    store = ctx.obj["store"]

    if config.get("github_app_id") and config.get("github_private_key"):
        publisher_factory = app_publisher_factory(config)
    else:
        token = resolve_github_token()
        if not token:
            raise click.UsageError("Set GITHUB_APP_ID and GITHUB_PRIVATE_KEY, or GITHUB_TOKEN, to resume workflows.")
        config["github_token"] = token
        publisher_factory = token_publisher_factory(config)

    engine = build_engine(config, store, build_pipeline_factory(config, store, publisher_factory))
    outcomes = engine.resume_pending()
    if not outcomes:
        console.print("[yellow]No interrupted workflows.[/yellow]")
        return

    for outcome in outcomes:
        if outcome.succeeded:
            console.print(f"[green]success[/green]  {outcome.workflow_id}  {outcome.artifact_url}")
        else:
            console.print(f"[red]failed[/red]   {outcome.workflow_id}  {outcome.reason}")
