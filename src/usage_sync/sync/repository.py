"""DuckDB repository for workflow state and synced usage records."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
import logging
from pathlib import Path
import threading
from typing import Any

import duckdb
import orjson

from usage_sync_internal.database import parse_db_timestamp, require_db_timestamp

from .errors import CheckpointRegressionError, PersistenceError, WorkflowNotFoundError
from .schemas import UsageRecord, UsageStats, Workflow, WorkflowStatus

LOGGER = logging.getLogger(__name__)

_WORKFLOW_COLUMNS = """
    workspace,
    status,
    CAST(created_at AS VARCHAR),
    CAST(updated_at AS VARCHAR),
    CAST(last_processed_at AS VARCHAR),
    error
"""

_USAGE_COLUMNS = """
    record_id,
    resource,
    metadata,
    quantity,
    unit,
    sku,
    rate,
    currency,
    CAST(start_time AS VARCHAR),
    CAST(end_time AS VARCHAR)
"""


class SyncRepository:
    """DuckDB-backed store for workflow checkpoints and usage records.

    A single connection is shared by every runner thread; each operation runs
    on its own cursor so concurrent workflows get independent transactions.
    """

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        self._connection = duckdb.connect(str(database_path))
        self._cursor_lock = threading.Lock()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._connection.close()

    def ensure_schema(self) -> None:
        """Create sync tables when missing."""
        with self._cursor() as cursor:
            _ = cursor.execute(
                """
CREATE TABLE IF NOT EXISTS workflow_state (
    workspace VARCHAR PRIMARY KEY,
    status VARCHAR NOT NULL,
    error VARCHAR,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_processed_at TIMESTAMPTZ
)
                """
            )
            _ = cursor.execute(
                """
CREATE TABLE IF NOT EXISTS usage_records (
    workspace VARCHAR NOT NULL,
    record_id VARCHAR NOT NULL,
    resource VARCHAR NOT NULL,
    metadata VARCHAR NOT NULL,
    quantity DOUBLE NOT NULL,
    unit VARCHAR NOT NULL,
    sku VARCHAR NOT NULL,
    rate DOUBLE NOT NULL,
    currency VARCHAR NOT NULL,
    start_time TIMESTAMPTZ NOT NULL,
    end_time TIMESTAMPTZ NOT NULL,
    ingested_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (workspace, record_id)
)
                """
            )

    @contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        try:
            with self._cursor_lock:
                cursor = self._connection.cursor()
        except duckdb.Error as exc:
            raise PersistenceError(f"DuckDB connection unavailable for {self._database_path}: {exc}") from exc
        try:
            yield cursor
        except duckdb.Error as exc:
            raise PersistenceError(f"DuckDB operation failed on {self._database_path}: {exc}") from exc
        finally:
            cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Open a DB transaction scope on a fresh cursor."""
        with self._cursor() as cursor:
            _ = cursor.execute("BEGIN TRANSACTION")
            try:
                yield cursor
            except Exception:
                _ = cursor.execute("ROLLBACK")
                raise
            else:
                _ = cursor.execute("COMMIT")

    def list_workflows(self, statuses: Sequence[WorkflowStatus] | None = None) -> list[Workflow]:
        """List workflows, optionally restricted to the given statuses."""
        query = f"SELECT {_WORKFLOW_COLUMNS} FROM workflow_state"
        params: list[Any] = []
        if statuses:
            placeholders = ", ".join("?" for _ in statuses)
            query += f" WHERE status IN ({placeholders})"
            params.extend(status.value for status in statuses)
        query += " ORDER BY workspace"

        with self._cursor() as cursor:
            rows = cursor.execute(query, params).fetchall()
        return [_row_to_workflow(row) for row in rows]

    def get_workflow(self, workspace: str) -> Workflow | None:
        """Fetch one workflow by workspace."""
        with self._cursor() as cursor:
            row = cursor.execute(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflow_state WHERE workspace = ?",
                [workspace],
            ).fetchone()
        if row is None:
            return None
        return _row_to_workflow(row)

    def create_workflow(self, workspace: str) -> Workflow:
        """Insert a pending workflow, or reset an existing one to pending keeping its checkpoint."""
        with self.transaction() as cursor:
            row = cursor.execute(
                f"""
INSERT INTO workflow_state (workspace, status)
VALUES (?, ?)
ON CONFLICT (workspace)
DO UPDATE SET
    status = EXCLUDED.status,
    error = NULL,
    updated_at = NOW()
RETURNING {_WORKFLOW_COLUMNS}
                """,
                [workspace, WorkflowStatus.PENDING.value],
            ).fetchone()
        if row is None:
            raise PersistenceError(f"Workflow upsert returned no row for workspace {workspace}.")
        return _row_to_workflow(row)

    def set_workflow_status(self, workspace: str, status: WorkflowStatus, error: str | None = None) -> None:
        """Set workflow status and error message."""
        with self._cursor() as cursor:
            rows = cursor.execute(
                """
UPDATE workflow_state
SET status = ?, error = ?, updated_at = NOW()
WHERE workspace = ?
RETURNING workspace
                """,
                [status.value, error, workspace],
            ).fetchall()
        if not rows:
            raise WorkflowNotFoundError(f"Workflow not found for workspace: {workspace}")

    def record_workflow_error(self, workspace: str, message: str) -> None:
        """Store the latest sync error without touching status or checkpoint."""
        with self._cursor() as cursor:
            rows = cursor.execute(
                """
UPDATE workflow_state
SET error = ?, updated_at = NOW()
WHERE workspace = ?
RETURNING workspace
                """,
                [message, workspace],
            ).fetchall()
        if not rows:
            raise WorkflowNotFoundError(f"Workflow not found for workspace: {workspace}")

    def append_usage_and_advance_checkpoint(
        self,
        workspace: str,
        records: Sequence[UsageRecord],
        checkpoint: datetime,
    ) -> None:
        """Insert usage rows with conflict-ignore semantics and move the checkpoint, atomically."""
        with self.transaction() as cursor:
            row = cursor.execute(
                "SELECT CAST(last_processed_at AS VARCHAR) FROM workflow_state WHERE workspace = ?",
                [workspace],
            ).fetchone()
            if row is None:
                raise WorkflowNotFoundError(f"Workflow not found for workspace: {workspace}")
            previous_checkpoint = parse_db_timestamp(row[0])
            if previous_checkpoint is not None and checkpoint < previous_checkpoint:
                raise CheckpointRegressionError(
                    f"Checkpoint for workspace {workspace} would move from "
                    f"{previous_checkpoint.isoformat()} back to {checkpoint.isoformat()}."
                )

            _insert_usage_records(cursor, workspace, records)
            _ = cursor.execute(
                """
UPDATE workflow_state
SET last_processed_at = ?, error = NULL, updated_at = NOW()
WHERE workspace = ?
                """,
                [checkpoint, workspace],
            )
        LOGGER.debug(
            "Committed %d usage records for workspace %s with checkpoint %s.",
            len(records),
            workspace,
            checkpoint.isoformat(),
        )

    def get_usage(self, workspace: str, start_time: datetime, end_time: datetime) -> list[UsageRecord]:
        """Read synced usage records starting within `[start_time, end_time)`."""
        with self._cursor() as cursor:
            rows = cursor.execute(
                f"""
SELECT {_USAGE_COLUMNS}
FROM usage_records
WHERE workspace = ? AND start_time >= ? AND start_time < ?
ORDER BY start_time, record_id
                """,
                [workspace, start_time, end_time],
            ).fetchall()
        return [row_to_usage_record(row) for row in rows]

    def get_resources_usage(
        self,
        workspace: str,
        resources: Sequence[str],
        start_time: datetime,
        end_time: datetime,
    ) -> list[UsageRecord]:
        """Read synced usage records for the given resource types."""
        if not resources:
            return []
        placeholders = ", ".join("?" for _ in resources)
        with self._cursor() as cursor:
            rows = cursor.execute(
                f"""
SELECT {_USAGE_COLUMNS}
FROM usage_records
WHERE workspace = ? AND start_time >= ? AND start_time < ? AND resource IN ({placeholders})
ORDER BY start_time, record_id
                """,
                [workspace, start_time, end_time, *resources],
            ).fetchall()
        return [row_to_usage_record(row) for row in rows]

    def get_usage_stats(self, workspace: str, since: datetime | None = None) -> UsageStats:
        """Return synced record count and earliest start time, optionally after `since`."""
        query = """
SELECT COUNT(*), CAST(MIN(start_time) AS VARCHAR)
FROM usage_records
WHERE workspace = ?
        """
        params: list[Any] = [workspace]
        if since is not None:
            query += " AND start_time > ?"
            params.append(since)
        with self._cursor() as cursor:
            row = cursor.execute(query, params).fetchone()
        if row is None:
            return UsageStats(records_count=0, first_record_time=None)
        return UsageStats(records_count=int(row[0]), first_record_time=parse_db_timestamp(row[1]))


def _insert_usage_records(
    cursor: duckdb.DuckDBPyConnection,
    workspace: str,
    records: Sequence[UsageRecord],
) -> None:
    if not records:
        return
    _ = cursor.executemany(
        """
INSERT INTO usage_records (
    workspace,
    record_id,
    resource,
    metadata,
    quantity,
    unit,
    sku,
    rate,
    currency,
    start_time,
    end_time
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (workspace, record_id) DO NOTHING
        """,
        [
            [
                workspace,
                record.record_id,
                record.resource,
                orjson.dumps(record.metadata, option=orjson.OPT_SORT_KEYS).decode("utf-8"),
                record.quantity,
                record.unit,
                record.sku,
                record.rate,
                record.currency,
                record.start_time,
                record.end_time,
            ]
            for record in records
        ],
    )


def row_to_usage_record(row: tuple[Any, ...]) -> UsageRecord:
    """Map a `usage_records` row selected with timestamps cast to VARCHAR."""
    metadata = orjson.loads(row[2]) if row[2] else {}
    return UsageRecord(
        record_id=str(row[0]),
        resource=str(row[1]),
        metadata={str(key): str(value) for key, value in metadata.items()},
        quantity=float(row[3]),
        unit=str(row[4]),
        sku=str(row[5]),
        rate=float(row[6]),
        currency=str(row[7]),
        start_time=require_db_timestamp(row[8]),
        end_time=require_db_timestamp(row[9]),
    )


def _row_to_workflow(row: tuple[Any, ...]) -> Workflow:
    return Workflow(
        workspace=str(row[0]),
        status=WorkflowStatus(row[1]),
        created_at=require_db_timestamp(row[2]),
        updated_at=require_db_timestamp(row[3]),
        last_processed_at=parse_db_timestamp(row[4]),
        error=str(row[5]) if row[5] is not None else None,
    )
