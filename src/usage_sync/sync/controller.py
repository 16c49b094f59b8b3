"""Process-wide controller for workspace sync runners."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime
import logging
import threading

from .config import RunnerConfig
from .contracts import CostSource, CostSourceFactory, Persistence
from .errors import CostSourceUnavailableError, SyncError, WorkflowNotRunningError
from .registry import CancellationToken, WorkflowDescriptor, WorkflowRegistry
from .runner import Runner
from .schemas import RunnerProgress, Workflow, WorkflowStatus

LOGGER = logging.getLogger(__name__)


class WorkflowController:
    """Registers, restores, and cancels one background runner per workspace."""

    def __init__(
        self,
        persistence: Persistence,
        cost_source_factory: CostSourceFactory,
        config: RunnerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._persistence = persistence
        self._cost_source_factory = cost_source_factory
        self._config = config or RunnerConfig()
        self._clock = clock
        self._registry = WorkflowRegistry()

    def init(self) -> int:
        """Start a runner for every pending workflow and return how many were started."""
        started = 0
        for workflow in self._persistence.list_workflows([WorkflowStatus.PENDING]):
            try:
                with self._registry.reserve(workflow.id):
                    self._start_workflow(workflow)
            except SyncError as exc:
                LOGGER.error("Failed to resume workflow for workspace %s: %s", workflow.workspace, exc)
                continue
            started += 1
        LOGGER.info("Resumed %d pending workflows.", started)
        return started

    def register(self, workspace: str) -> Workflow:
        """Persist a pending workflow for `workspace` and launch its runner in the background.

        The id is reserved before anything is written, so registering a
        workspace that is already running fails without touching its state.
        """
        with self._registry.reserve(workspace):
            workflow = self._persistence.create_workflow(workspace)
            self._start_workflow(workflow)
        LOGGER.info("Registered workflow for workspace %s.", workspace)
        return workflow

    def cancel(self, workspace: str, timeout: float | None = None) -> None:
        """Stop the runner for `workspace`, wait for it to drain, and mark the workflow cancelled."""
        descriptor = self._registry.get(workspace)
        if descriptor is None:
            raise WorkflowNotRunningError(f"Workflow not running: {workspace}")

        self._drain(descriptor, timeout)
        # Write the status while still registered so a concurrent register is refused.
        try:
            self._persistence.set_workflow_status(workspace, WorkflowStatus.CANCELLED)
        except SyncError as exc:
            LOGGER.error("Failed to mark workflow for workspace %s as cancelled: %s", workspace, exc)
        finally:
            _ = self._registry.remove(descriptor.id, expected=descriptor)
        LOGGER.info("Cancelled workflow for workspace %s.", workspace)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop every runner without changing persisted status, so `init()` resumes them."""
        descriptors = self._registry.descriptors()
        for descriptor in descriptors:
            descriptor.cancel_token.cancel()
        for descriptor in descriptors:
            self._drain(descriptor, timeout)
            _ = self._registry.remove(descriptor.id, expected=descriptor)
        LOGGER.info("Stopped %d workflows.", len(descriptors))

    def progress(self, workspace: str) -> Iterator[RunnerProgress]:
        """Return a read-only stream of progress updates for an active workflow."""
        descriptor = self._registry.get(workspace)
        if descriptor is None:
            raise WorkflowNotRunningError(f"Workflow not running: {workspace}")
        return descriptor.runner.progress_updates()

    def active_workflows(self) -> list[str]:
        """Return ids of workflows whose runners are active."""
        return self._registry.ids()

    def is_running(self, workspace: str) -> bool:
        return workspace in self._registry

    def _start_workflow(self, workflow: Workflow) -> None:
        """Launch a runner; the caller must hold the registry reservation for `workflow.id`."""
        cost_source = self._resolve_cost_source(workflow.workspace)
        cancel_token = CancellationToken()
        runner = Runner(
            workflow=workflow,
            cost_source=cost_source,
            persistence=self._persistence,
            cancel_token=cancel_token,
            config=self._config,
            clock=self._clock,
        )
        thread = threading.Thread(target=runner.run, name=f"usage-sync-{workflow.workspace}", daemon=True)
        descriptor = WorkflowDescriptor(
            workflow=workflow,
            runner=runner,
            cancel_token=cancel_token,
            thread=thread,
        )
        self._registry.add(descriptor, reserved=True)
        thread.start()

    def _resolve_cost_source(self, workspace: str) -> CostSource:
        try:
            return self._cost_source_factory(workspace)
        except Exception as exc:
            message = f"Cost source unavailable for workspace {workspace}: {exc}"
            try:
                self._persistence.set_workflow_status(workspace, WorkflowStatus.FAILED, error=message)
            except SyncError as persist_exc:
                LOGGER.error("Failed to mark workflow for workspace %s as failed: %s", workspace, persist_exc)
            raise CostSourceUnavailableError(message) from exc

    def _drain(self, descriptor: WorkflowDescriptor, timeout: float | None) -> None:
        descriptor.cancel_token.cancel()
        if not descriptor.runner.wait(timeout):
            raise TimeoutError(f"Runner for workspace {descriptor.id} did not stop within {timeout} seconds.")
        descriptor.thread.join(timeout)
