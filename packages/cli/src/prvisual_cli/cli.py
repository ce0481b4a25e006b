"""CLI entry point for prvisual.

Commands:
  serve    — run the webhook server (hosted path)
  run      — generate the visual for one pull request from your machine
  history  — list workflow records from the store
  resume   — finish workflows interrupted by a crash or restart
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prvisual_cli.commands.history import history_cmd
from prvisual_cli.commands.resume import resume_cmd
from prvisual_cli.commands.run import run_cmd
from prvisual_cli.commands.serve import serve_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO; keep it for --verbose only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prvisual"),
    prog_name="prvisual",
)
@click.option(
    "--config",
    "config_path",
    default=".prvisual.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRVISUAL_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Turn pull requests into infographics, posted as a single PR comment."""
    from prvisual_core.config import load_config
    from prvisual_core.services import build_store

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)
    store = build_store(config)
    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.call_on_close(store.close)


main.add_command(serve_cmd)
main.add_command(run_cmd)
main.add_command(history_cmd)
main.add_command(resume_cmd)
