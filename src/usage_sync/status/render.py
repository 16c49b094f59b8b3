"""Rich rendering helpers for workflow sync status."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..sync.schemas import WorkflowStatus
from .service import WorkflowSummary

TABLE_ROW_STYLES = ["white", "yellow"]
STATUS_STYLES: dict[WorkflowStatus, str] = {
    WorkflowStatus.PENDING: "cyan",
    WorkflowStatus.FINISHED: "green",
    WorkflowStatus.FAILED: "bold red",
    WorkflowStatus.CANCELLED: "dim",
}


def render_workflow_status(summaries: list[WorkflowSummary], console: Console) -> None:
    """Render one row per workflow with its checkpoint and stored record count."""
    if not summaries:
        console.print("No sync workflows found in the database.")
        return

    table = Table(title="Usage Sync Workflows", show_footer=True, footer_style="bold", title_justify="left")
    table.add_column("Workspace", footer="Total", justify="left")
    table.add_column("Status", justify="left")
    table.add_column("Created", justify="left")
    table.add_column("Last Processed", justify="left")
    table.add_column("Records", justify="right")
    table.add_column("Error", justify="left", overflow="fold")

    total_records = 0
    for index, summary in enumerate(summaries):
        total_records += summary.records_synced
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(
            escape(summary.workspace),
            f"[{STATUS_STYLES[summary.status]}]{summary.status.value}[/]",
            _format_timestamp(summary.created_at),
            _format_timestamp(summary.last_processed_at) if summary.last_processed_at else "never",
            f"{summary.records_synced:,}",
            escape(summary.error or ""),
            style=style,
        )

    table.columns[4].footer = f"{total_records:,}"
    console.print(table)


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z")
