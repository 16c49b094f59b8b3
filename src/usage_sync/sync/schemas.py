"""Typed schemas used by the usage sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class WorkflowStatus(str, Enum):
    """Lifecycle status of one workspace sync workflow."""

    PENDING = "pending"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Workflow:
    """Persisted identity and state of one workspace's sync process."""

    workspace: str
    status: WorkflowStatus
    created_at: datetime
    updated_at: datetime
    last_processed_at: datetime | None = None
    error: str | None = None

    @property
    def id(self) -> str:
        """Return the registry key of this workflow."""
        return self.workspace


@dataclass(frozen=True)
class UsageRecord:
    """One billed unit of consumption reported by a cost source."""

    record_id: str
    resource: str
    quantity: float
    unit: str
    sku: str
    rate: float
    currency: str
    start_time: datetime
    end_time: datetime
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UsageStats:
    """Aggregate snapshot of usage available for a workspace."""

    records_count: int
    first_record_time: datetime | None


@dataclass(frozen=True)
class RunnerProgress:
    """Progress update published after each committed batch."""

    workspace: str
    processed_records: int
    total_records: int | None
    last_processed_at: datetime


@dataclass(frozen=True)
class DedupeResult:
    """Deduplication output and counters for one fetched batch."""

    records: list[UsageRecord]
    duplicate_records_skipped: int
