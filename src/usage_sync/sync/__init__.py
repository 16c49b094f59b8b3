"""Workflow orchestration and incremental usage sync engine."""

from .config import RunnerConfig
from .controller import WorkflowController
from .runner import Runner
from .schemas import RunnerProgress, UsageRecord, UsageStats, Workflow, WorkflowStatus

__all__ = [
    "RunnerConfig",
    "RunnerProgress",
    "Runner",
    "UsageRecord",
    "UsageStats",
    "Workflow",
    "WorkflowController",
    "WorkflowStatus",
]
