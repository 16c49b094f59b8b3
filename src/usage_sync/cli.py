"""CLI entrypoints for usage sync tooling."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
import time

import typer
from rich.console import Console

from usage_sync_internal.paths import get_default_database_path

from .status.render import render_workflow_status
from .status.service import collect_workflow_summaries
from .sync.config import DEFAULT_BATCH_INTERVAL, DEFAULT_POLL_INTERVAL, RunnerConfig
from .sync.controller import WorkflowController
from .sync.errors import SyncError
from .sync.repository import SyncRepository
from .sync.source_reader import DuckDBCostSource

LOGGER = logging.getLogger(__name__)
DEFAULT_DATABASE_PATH = get_default_database_path()

TYPER_APP = typer.Typer(help="Workspace usage sync tooling.")


@TYPER_APP.callback()
def main() -> None:
    """Root CLI callback."""


@TYPER_APP.command("run")
def run_command(
    source_db: Path = typer.Option(
        ...,
        "--source-db",
        "-s",
        help="DuckDB file with a usage_records table to sync from.",
    ),
    database_path: Path = typer.Option(
        DEFAULT_DATABASE_PATH,
        "--database-path",
        "-d",
        help="DuckDB file path for workflow state and synced usage records.",
    ),
    workspaces: list[str] = typer.Option(
        [],
        "--workspace",
        "-w",
        help="Workspace to register. Repeat for several. Pending workflows are always resumed.",
    ),
    poll_interval: float = typer.Option(
        DEFAULT_POLL_INTERVAL.total_seconds(),
        "--poll-interval",
        help="Seconds to wait between sync iterations.",
    ),
    batch_interval_hours: float = typer.Option(
        DEFAULT_BATCH_INTERVAL.total_seconds() / 3600,
        "--batch-interval-hours",
        help="Size of each fetched usage window in hours.",
    ),
    duration: float = typer.Option(
        0.0,
        "--duration",
        help="Stop after this many seconds. 0 runs until interrupted.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Sync usage records for registered workspaces until interrupted.

    Note: this command is mostly for internal debugging purposes.
    """
    _configure_logging(verbose)
    try:
        config = RunnerConfig(
            batch_interval=timedelta(hours=batch_interval_hours),
            poll_interval=timedelta(seconds=poll_interval),
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    database_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        cost_source = DuckDBCostSource(source_db)
    except SyncError as exc:
        raise typer.BadParameter(str(exc)) from exc
    try:
        cost_source.ensure_schema()
    except SyncError as exc:
        cost_source.close()
        raise typer.BadParameter(str(exc)) from exc

    repository = SyncRepository(database_path)
    try:
        repository.ensure_schema()
        controller = WorkflowController(
            persistence=repository,
            cost_source_factory=lambda _workspace: cost_source,
            config=config,
        )
        _sync_until_stopped(controller, workspaces, duration)
        summaries = collect_workflow_summaries(repository)
    except SyncError as exc:
        typer.echo(f"error={exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        repository.close()
        cost_source.close()

    render_workflow_status(summaries, Console())


@TYPER_APP.command("status")
def status_command(
    database_path: Path = typer.Option(
        DEFAULT_DATABASE_PATH,
        "--database-path",
        "-d",
        help="DuckDB file path for workflow state and synced usage records.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Print every sync workflow with its checkpoint and stored record count."""
    _configure_logging(verbose)
    if not database_path.exists():
        raise typer.BadParameter(f"Database file not found: {database_path}")

    repository = SyncRepository(database_path)
    try:
        repository.ensure_schema()
        summaries = collect_workflow_summaries(repository)
    except SyncError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        repository.close()

    render_workflow_status(summaries, Console())


def _sync_until_stopped(controller: WorkflowController, workspaces: list[str], duration: float) -> None:
    """Resume pending workflows, register new ones, and stop every runner on the way out."""
    try:
        resumed = controller.init()
        LOGGER.info("Resumed %d pending workflows.", resumed)
        for workspace in workspaces:
            if controller.is_running(workspace):
                continue
            _ = controller.register(workspace)
        _wait_for_stop(duration)
    finally:
        controller.shutdown()


def _wait_for_stop(duration: float) -> None:
    """Block the main thread until the duration elapses or the user interrupts."""
    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        while deadline is None or time.monotonic() < deadline:
            remaining = 1.0 if deadline is None else min(1.0, max(deadline - time.monotonic(), 0.0))
            time.sleep(remaining)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; stopping workflows.")


def _configure_logging(verbose: bool) -> None:
    """Initialize default logging for CLI usage."""
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
    )


def module_cli_entry_point():
    TYPER_APP()
