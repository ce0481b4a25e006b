"""serve command — run the webhook server."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
@click.pass_context
def serve_cmd(ctx, host: str, port: int):
    """Receive GitHub webhooks and run a workflow for each PR revision.

    \b
    Required environment variables:
      GITHUB_WEBHOOK_SECRET   Secret configured on the GitHub App webhook
      GITHUB_APP_ID           GitHub App id
      GITHUB_PRIVATE_KEY      GitHub App private key (PEM)
      GEMINI_API_KEY          Or the key of the configured brief/image provider
      POLAR_API_KEY           Unless `billing: static` is configured
    """
    import uvicorn

    from prvisual_core.config import missing_credentials
    from prvisual_server.app import build_app

    config = ctx.obj["config"]
    missing = missing_credentials(config, server=True)
    if missing:
        raise click.UsageError(f"Missing environment variable(s): {', '.join(missing)}")

    app = build_app(config, store=ctx.obj["store"])
    console.print(f"[bold]PR Visual[/bold] listening on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None)
