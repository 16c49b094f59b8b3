"""Cancellation tokens and the process-wide registry of active runners."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
import threading
from typing import TYPE_CHECKING

from .errors import WorkflowAlreadyRunningError
from .schemas import Workflow

if TYPE_CHECKING:
    from .runner import Runner


class CancellationToken:
    """One-way cancellation signal shared between a controller and one runner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Safe to call more than once."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to `timeout` seconds; return True as soon as cancellation is requested."""
        return self._event.wait(timeout)


@dataclass(frozen=True)
class WorkflowDescriptor:
    """An active runner together with its cancellation handle and worker thread."""

    workflow: Workflow
    runner: Runner
    cancel_token: CancellationToken
    thread: threading.Thread

    @property
    def id(self) -> str:
        return self.workflow.id


class WorkflowRegistry:
    """Lock-guarded mapping of workflow id to active descriptor.

    An id can also be reserved while its runner is being prepared; a reserved
    id refuses other reservations and adds from anyone but the holder.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._descriptors: dict[str, WorkflowDescriptor] = {}
        self._reserved: set[str] = set()

    @contextmanager
    def reserve(self, workflow_id: str) -> Iterator[None]:
        """Hold `workflow_id` for the duration of the block.

        Raises `WorkflowAlreadyRunningError` when the id is active or already
        reserved. The reservation is released on exit, whether or not the
        block registered a descriptor.
        """
        with self._lock:
            if workflow_id in self._descriptors or workflow_id in self._reserved:
                raise WorkflowAlreadyRunningError(f"Workflow already running: {workflow_id}")
            self._reserved.add(workflow_id)
        try:
            yield
        finally:
            with self._lock:
                self._reserved.discard(workflow_id)

    def add(self, descriptor: WorkflowDescriptor, reserved: bool = False) -> None:
        """Register a descriptor, refusing a second one for the same id.

        Pass `reserved=True` when the caller holds the id through `reserve()`.
        """
        with self._lock:
            if descriptor.id in self._descriptors:
                raise WorkflowAlreadyRunningError(f"Workflow already running: {descriptor.id}")
            if descriptor.id in self._reserved and not reserved:
                raise WorkflowAlreadyRunningError(f"Workflow is being started: {descriptor.id}")
            self._descriptors[descriptor.id] = descriptor

    def get(self, workflow_id: str) -> WorkflowDescriptor | None:
        with self._lock:
            return self._descriptors.get(workflow_id)

    def remove(self, workflow_id: str, expected: WorkflowDescriptor | None = None) -> WorkflowDescriptor | None:
        """Remove and return a descriptor.

        When `expected` is given, the entry is only removed if it is still that
        descriptor, so a late remover cannot evict a newer registration.
        """
        with self._lock:
            current = self._descriptors.get(workflow_id)
            if current is None:
                return None
            if expected is not None and current is not expected:
                return None
            del self._descriptors[workflow_id]
            return current

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._descriptors)

    def descriptors(self) -> list[WorkflowDescriptor]:
        with self._lock:
            return list(self._descriptors.values())

    def __contains__(self, workflow_id: object) -> bool:
        with self._lock:
            return workflow_id in self._descriptors

    def __len__(self) -> int:
        with self._lock:
            return len(self._descriptors)
