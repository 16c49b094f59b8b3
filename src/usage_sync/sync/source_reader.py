"""Read-only DuckDB cost source for workspace usage records."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
import threading
from typing import Any

import duckdb

from usage_sync_internal.database import parse_db_timestamp

from .errors import SourceDatabaseError, SourceSchemaError
from .repository import row_to_usage_record
from .schemas import UsageRecord, UsageStats

REQUIRED_TABLES: tuple[str, ...] = ("usage_records",)


class DuckDBCostSource:
    """Serve usage windows and stats from a DuckDB file with a `usage_records` table."""

    def __init__(self, source_db_path: Path) -> None:
        self._source_db_path = source_db_path
        self._connection = _connect_read_only(source_db_path)
        self._cursor_lock = threading.Lock()

    def close(self) -> None:
        """Close DuckDB connection."""
        self._connection.close()

    def ensure_schema(self) -> None:
        """Validate required source tables exist."""
        placeholders = ", ".join("?" for _ in REQUIRED_TABLES)
        with self._cursor() as cursor:
            rows = cursor.execute(
                f"""
SELECT table_name
FROM information_schema.tables
WHERE table_name IN ({placeholders})
                """,
                list(REQUIRED_TABLES),
            ).fetchall()
        existing = {str(row[0]) for row in rows}
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            missing_csv = ", ".join(missing)
            raise SourceSchemaError(f"Missing required table(s) in source database: {missing_csv}")

    def get_usage_stats(self, workspace: str, since: datetime | None) -> UsageStats:
        """Return record count and earliest start time for a workspace."""
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

    def get_usage(self, workspace: str, start_time: datetime, end_time: datetime) -> list[UsageRecord]:
        """Return usage records whose start time falls in `[start_time, end_time)`."""
        with self._cursor() as cursor:
            rows = cursor.execute(
                """
SELECT
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
FROM usage_records
WHERE workspace = ? AND start_time >= ? AND start_time < ?
ORDER BY start_time, record_id
                """,
                [workspace, start_time, end_time],
            ).fetchall()
        return [row_to_usage_record(row) for row in rows]

    @contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        try:
            with self._cursor_lock:
                cursor = self._connection.cursor()
        except duckdb.Error as exc:
            raise SourceDatabaseError(f"Source database {self._source_db_path} is unavailable: {exc}") from exc
        try:
            yield cursor
        except duckdb.CatalogException as exc:
            raise SourceSchemaError(f"Source database {self._source_db_path} is missing tables: {exc}") from exc
        except duckdb.Error as exc:
            raise SourceDatabaseError(f"Failed to read source database {self._source_db_path}: {exc}") from exc
        finally:
            cursor.close()


def _connect_read_only(source_db_path: Path) -> duckdb.DuckDBPyConnection:
    if not source_db_path.exists():
        raise SourceDatabaseError(f"Source database not found: {source_db_path}")

    try:
        return duckdb.connect(str(source_db_path.expanduser()), read_only=True)
    except duckdb.Error as exc:
        raise SourceDatabaseError(f"Failed to open source database {source_db_path}: {exc}") from exc
