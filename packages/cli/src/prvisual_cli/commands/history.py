"""history command — display workflow records from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prvisual_store.models import WorkflowStatus

console = Console()

_STATUS_STYLE = {
    WorkflowStatus.PENDING: "dim",
    WorkflowStatus.PROCESSING: "yellow",
    WorkflowStatus.SUCCESS: "green",
    WorkflowStatus.FAILED: "red",
}


@click.command("history")
@click.option(
    "--status",
    type=click.Choice([s.value for s in WorkflowStatus]),
    default=None,
    help="Only show workflows in this state.",
)
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, status: str | None, limit: int):
    """Show recent workflows with their outcome.

    Failed workflows show the step and error that stopped them; entitlement
    denials show `no_billing` or `no_credits`.
    """
    store = ctx.obj["store"]
    records = store.list_workflows(WorkflowStatus(status) if status else None)
    if not records:
        console.print("[yellow]No workflow records found.[/yellow]")
        return

    # Most recent first, capped at --limit.
    records = list(reversed(records))[:limit]

    table = Table(title="Workflow History", show_header=True, header_style="bold cyan")
    table.add_column("Workflow", overflow="fold")
    table.add_column("Status", width=10)
    table.add_column("Result", overflow="fold")
    table.add_column("Updated At", width=20)

    for r in records:
        style = _STATUS_STYLE.get(r.status, "white")
        result = r.artifact_url if r.status == WorkflowStatus.SUCCESS else (r.error or "")
        table.add_row(
            r.id,
            f"[{style}]{r.status.value}[/{style}]",
            result,
            r.updated_at[:19].replace("T", " "),
        )

    console.print(table)
