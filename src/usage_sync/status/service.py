"""Collect per-workflow sync status from the local store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..sync.repository import SyncRepository
from ..sync.schemas import WorkflowStatus


@dataclass(frozen=True)
class WorkflowSummary:
    """One status table row."""

    workspace: str
    status: WorkflowStatus
    created_at: datetime
    last_processed_at: datetime | None
    records_synced: int
    error: str | None


def collect_workflow_summaries(repository: SyncRepository) -> list[WorkflowSummary]:
    """Join every workflow with the number of usage records stored for it."""
    summaries: list[WorkflowSummary] = []
    for workflow in repository.list_workflows():
        stats = repository.get_usage_stats(workflow.workspace)
        summaries.append(
            WorkflowSummary(
                workspace=workflow.workspace,
                status=workflow.status,
                created_at=workflow.created_at,
                last_processed_at=workflow.last_processed_at,
                records_synced=stats.records_count,
                error=workflow.error,
            )
        )
    return summaries
