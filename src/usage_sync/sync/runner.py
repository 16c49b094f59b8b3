"""Incremental sync loop for one workspace workflow."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import UTC, datetime
import logging
import queue
import threading

from .config import RunnerConfig
from .contracts import CostSource, Persistence
from .dedupe import dedupe_usage_records
from .registry import CancellationToken
from .schemas import RunnerProgress, UsageStats, Workflow

LOGGER = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Runner:
    """Pulls fixed-size usage windows from a cost source and commits them with the checkpoint.

    The loop only stops when its cancellation token fires. Fetch and persist
    failures are logged and the same window is retried on the next cycle.
    """

    def __init__(
        self,
        workflow: Workflow,
        cost_source: CostSource,
        persistence: Persistence,
        cancel_token: CancellationToken,
        config: RunnerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._workflow = workflow
        self._cost_source = cost_source
        self._persistence = persistence
        self._cancel_token = cancel_token
        self._config = config or RunnerConfig()
        self._clock = clock or _utc_now
        self._done = threading.Event()
        self._progress: queue.Queue[RunnerProgress] = queue.Queue(maxsize=self._config.progress_buffer_size)
        self._processed_records = 0
        self._total_records: int | None = None

    @property
    def workflow(self) -> Workflow:
        """Return the latest in-memory snapshot of the served workflow."""
        return self._workflow

    @property
    def workspace(self) -> str:
        return self._workflow.workspace

    @property
    def processed_records(self) -> int:
        return self._processed_records

    def is_done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop has exited; return False on timeout."""
        return self._done.wait(timeout)

    def progress_updates(self, timeout: float = 0.5) -> Iterator[RunnerProgress]:
        """Yield progress updates until the runner has stopped and the buffer is drained."""
        while True:
            try:
                yield self._progress.get(timeout=timeout)
            except queue.Empty:
                if self._done.is_set() and self._progress.empty():
                    return

    def run(self) -> None:
        """Execute the sync loop on the calling thread until cancelled."""
        LOGGER.info("Starting usage sync for workspace %s.", self.workspace)
        try:
            window_start = self._resolve_start_time()
            if window_start is None:
                return
            while not self._cancel_token.wait(self._poll_seconds):
                window_start = self._run_iteration(window_start)
        finally:
            LOGGER.info(
                "Usage sync stopped for workspace %s after %d records.",
                self.workspace,
                self._processed_records,
            )
            self._done.set()

    @property
    def _poll_seconds(self) -> float:
        return self._config.poll_interval.total_seconds()

    def _resolve_start_time(self) -> datetime | None:
        """Pick the first window start.

        With a checkpoint the stats call only supplies the progress total, so a
        failure leaves the total unknown. Without one the stats call is retried
        every poll interval until it succeeds or the runner is cancelled.
        """
        last_processed_at = self._workflow.last_processed_at
        stats: UsageStats | None = None
        while stats is None:
            try:
                stats = self._cost_source.get_usage_stats(self.workspace, last_processed_at)
            except Exception as exc:
                LOGGER.error("Failed to get usage stats for workspace %s: %s", self.workspace, exc)
                self._record_error(f"usage stats: {exc}")
                if last_processed_at is not None:
                    return last_processed_at
                if self._cancel_token.wait(self._poll_seconds):
                    return None

        self._total_records = stats.records_count
        if last_processed_at is not None:
            return last_processed_at
        if stats.first_record_time is not None:
            return stats.first_record_time
        return self._clock() - self._config.batch_interval

    def _run_iteration(self, window_start: datetime) -> datetime:
        """Process one window and return the start of the next one."""
        window_end = min(window_start + self._config.batch_interval, self._clock())
        if window_end <= window_start:
            return window_start

        try:
            records = self._cost_source.get_usage(self.workspace, window_start, window_end)
        except Exception as exc:
            LOGGER.error(
                "Failed to get usage records for workspace %s in [%s, %s): %s",
                self.workspace,
                window_start.isoformat(),
                window_end.isoformat(),
                exc,
            )
            self._record_error(f"fetch usage: {exc}")
            return window_start

        if not records:
            LOGGER.info(
                "No usage records for workspace %s in [%s, %s).",
                self.workspace,
                window_start.isoformat(),
                window_end.isoformat(),
            )
            return window_end

        dedupe_result = dedupe_usage_records(records)
        if dedupe_result.duplicate_records_skipped:
            LOGGER.warning(
                "Dropped %d duplicate usage records for workspace %s.",
                dedupe_result.duplicate_records_skipped,
                self.workspace,
            )

        try:
            self._persistence.append_usage_and_advance_checkpoint(self.workspace, dedupe_result.records, window_end)
        except Exception as exc:
            LOGGER.error("Failed to persist usage batch for workspace %s: %s", self.workspace, exc)
            self._record_error(f"persist usage: {exc}")
            return window_start

        self._processed_records += len(dedupe_result.records)
        self._workflow = replace(self._workflow, last_processed_at=window_end, error=None)
        self._publish_progress(
            RunnerProgress(
                workspace=self.workspace,
                processed_records=self._processed_records,
                total_records=self._total_records,
                last_processed_at=window_end,
            )
        )
        LOGGER.info(
            "Synced %d usage records for workspace %s up to %s.",
            self._processed_records,
            self.workspace,
            window_end.isoformat(),
        )
        return window_end

    def _publish_progress(self, progress: RunnerProgress) -> None:
        """Enqueue an update, evicting the oldest one when the buffer is full."""
        while True:
            try:
                self._progress.put_nowait(progress)
                return
            except queue.Full:
                try:
                    _ = self._progress.get_nowait()
                except queue.Empty:
                    continue
                LOGGER.debug("Progress buffer full for workspace %s; dropped oldest update.", self.workspace)

    def _record_error(self, message: str) -> None:
        self._workflow = replace(self._workflow, error=message)
        try:
            self._persistence.record_workflow_error(self.workspace, message)
        except Exception as exc:
            LOGGER.warning("Failed to record error for workspace %s: %s", self.workspace, exc)

