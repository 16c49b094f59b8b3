"""Collaborator protocols the sync engine is written against."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Protocol

from .schemas import UsageRecord, UsageStats, Workflow, WorkflowStatus


class CostSource(Protocol):
    """Read access to usage records for a workspace."""

    def get_usage_stats(self, workspace: str, since: datetime | None) -> UsageStats:
        """Return record count and earliest record time, optionally after `since`."""
        ...

    def get_usage(self, workspace: str, start_time: datetime, end_time: datetime) -> list[UsageRecord]:
        """Return usage records starting within `[start_time, end_time)`."""
        ...


class Persistence(Protocol):
    """Durable store for workflow state and synced usage records."""

    def list_workflows(self, statuses: Sequence[WorkflowStatus] | None = None) -> list[Workflow]: ...

    def create_workflow(self, workspace: str) -> Workflow: ...

    def get_workflow(self, workspace: str) -> Workflow | None: ...

    def set_workflow_status(self, workspace: str, status: WorkflowStatus, error: str | None = None) -> None: ...

    def record_workflow_error(self, workspace: str, message: str) -> None: ...

    def append_usage_and_advance_checkpoint(
        self,
        workspace: str,
        records: Sequence[UsageRecord],
        checkpoint: datetime,
    ) -> None:
        """Insert records and move the workflow checkpoint in one transaction."""
        ...


CostSourceFactory = Callable[[str], CostSource]
