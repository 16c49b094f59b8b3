"""Tests for the DuckDB cost source and an end-to-end sync against it."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import duckdb
import pytest
from fakes import FIXED_NOW, make_record, wait_until

from usage_sync.sync.config import RunnerConfig
from usage_sync.sync.controller import WorkflowController
from usage_sync.sync.errors import SourceDatabaseError, SourceSchemaError
from usage_sync.sync.repository import SyncRepository
from usage_sync.sync.schemas import UsageRecord, WorkflowStatus
from usage_sync.sync.source_reader import DuckDBCostSource

JAN_1 = datetime(2024, 1, 1, tzinfo=UTC)
WEEK = timedelta(days=7)


def _build_source_db(path: Path, records_by_workspace: dict[str, list[UsageRecord]]) -> None:
    """Write a source file with the same `usage_records` layout the repository uses."""
    repository = SyncRepository(path)
    try:
        repository.ensure_schema()
        for workspace, records in records_by_workspace.items():
            _ = repository.create_workflow(workspace)
            repository.append_usage_and_advance_checkpoint(workspace, records, FIXED_NOW)
    finally:
        repository.close()


def test_source_reader_returns_half_open_window(tmp_path: Path) -> None:
    """Records starting exactly at the window end belong to the next window."""
    source_db = tmp_path / "billing.duckdb"
    _build_source_db(
        source_db,
        {
            "acme": [make_record("r1", JAN_1), make_record("r2", JAN_1 + WEEK)],
            "beta": [make_record("b1", JAN_1)],
        },
    )

    source = DuckDBCostSource(source_db)
    try:
        source.ensure_schema()
        first = source.get_usage("acme", JAN_1, JAN_1 + WEEK)
        second = source.get_usage("acme", JAN_1 + WEEK, JAN_1 + 2 * WEEK)
    finally:
        source.close()

    assert [record.record_id for record in first] == ["r1"]
    assert [record.record_id for record in second] == ["r2"]
    assert first[0].end_time == JAN_1 + timedelta(hours=1)
    assert first[0].sku == "PREMIUM_SQL_COMPUTE"


def test_source_reader_stats_respect_since(tmp_path: Path) -> None:
    """Stats count records strictly after `since` and report the earliest start time."""
    source_db = tmp_path / "billing.duckdb"
    _build_source_db(
        source_db,
        {"acme": [make_record("r1", JAN_1), make_record("r2", JAN_1 + WEEK)]},
    )

    source = DuckDBCostSource(source_db)
    try:
        everything = source.get_usage_stats("acme", None)
        later = source.get_usage_stats("acme", JAN_1)
        unknown = source.get_usage_stats("ghost", None)
    finally:
        source.close()

    assert (everything.records_count, everything.first_record_time) == (2, JAN_1)
    assert (later.records_count, later.first_record_time) == (1, JAN_1 + WEEK)
    assert (unknown.records_count, unknown.first_record_time) == (0, None)


def test_source_reader_raises_for_missing_database(tmp_path: Path) -> None:
    """Opening a source path that does not exist fails fast."""
    with pytest.raises(SourceDatabaseError):
        _ = DuckDBCostSource(tmp_path / "missing.duckdb")


def test_source_reader_raises_for_missing_required_tables(tmp_path: Path) -> None:
    """Schema validation should fail when `usage_records` is absent."""
    source_db = tmp_path / "billing.duckdb"
    connection = duckdb.connect(str(source_db))
    try:
        _ = connection.execute("CREATE TABLE invoices (id VARCHAR PRIMARY KEY)")
    finally:
        connection.close()

    source = DuckDBCostSource(source_db)
    try:
        with pytest.raises(SourceSchemaError):
            source.ensure_schema()
        with pytest.raises(SourceSchemaError):
            _ = source.get_usage("acme", JAN_1, JAN_1 + WEEK)
    finally:
        source.close()


def test_controller_syncs_source_into_repository(tmp_path: Path) -> None:
    """A registered workspace copies every source record and checkpoints past the last one."""
    source_db = tmp_path / "billing.duckdb"
    records = [make_record(f"r{index}", JAN_1 + index * timedelta(days=5)) for index in range(6)]
    _build_source_db(source_db, {"acme": records, "beta": [make_record("b1", JAN_1)]})

    repository = SyncRepository(tmp_path / "usage.duckdb")
    repository.ensure_schema()
    source = DuckDBCostSource(source_db)
    controller = WorkflowController(
        persistence=repository,
        cost_source_factory=lambda _workspace: source,
        config=RunnerConfig(batch_interval=timedelta(days=30), poll_interval=timedelta(milliseconds=5)),
        clock=lambda: FIXED_NOW,
    )
    try:
        _ = controller.register("acme")
        assert wait_until(lambda: repository.get_usage_stats("acme").records_count == len(records))
        controller.cancel("acme")

        stored = repository.get_usage("acme", JAN_1, FIXED_NOW)
        workflow = repository.get_workflow("acme")
        beta_stats = repository.get_usage_stats("beta")
    finally:
        controller.shutdown()
        source.close()
        repository.close()

    assert [record.record_id for record in stored] == [record.record_id for record in records]
    assert workflow is not None
    assert workflow.status == WorkflowStatus.CANCELLED
    assert workflow.last_processed_at == JAN_1 + timedelta(days=30)
    assert beta_stats.records_count == 0
