"""Cluster resource bookkeeping and capacity-based task placement."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable

logger = logging.getLogger(__name__)


class ExecutorStatus(IntEnum):
    """Lifecycle status of an executor."""

    INITING = 0
    RUNNING = 1
    DISCONNECTED = 2
    TOMBSTONE = 3


@dataclass
class ExecutorResource:
    """Resource accounting for one executor."""

    executor_id: str
    addr: str
    capacity: int
    status: ExecutorStatus = ExecutorStatus.INITING
    # The most resource the executor may use: the total cost of its tasks.
    reserved: int = 0
    # Resource actually in use; may exceed ``reserved`` if estimates are off.
    used: int = 0

    def _free(self) -> int:
        return self.capacity - max(self.used, self.reserved)


@dataclass(frozen=True)
class ScheduleTask:
    """A task asking to be placed, with the resource it costs."""

    task_id: int
    cost: int


@dataclass(frozen=True)
class ScheduleResult:
    """Where a task was placed."""

    executor_id: str
    addr: str


class UnknownExecutorError(KeyError):
    """Raised when an executor id is not registered."""

    def __init__(self, executor_id: str) -> None:
        super().__init__(executor_id)
        self.executor_id = executor_id

    def __str__(self) -> str:
        return f"unknown executor id: {self.executor_id}"


class CapacityResourceManager:
    """Tracks executor resources and places tasks by remaining capacity."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._executors: dict[str, ExecutorResource] = {}

    def register(self, executor_id: str, addr: str, capacity: int) -> None:
        """Add an executor that has joined the cluster."""
        with self._lock:
            self._executors[executor_id] = ExecutorResource(
                executor_id=executor_id, addr=addr, capacity=capacity
            )
        logger.info(
            "executor resource is registered: id=%s capacity=%d", executor_id, capacity
        )

    def unregister(self, executor_id: str) -> None:
        """Forget an executor that has left; unknown ids are ignored."""
        with self._lock:
            self._executors.pop(executor_id, None)
        logger.info("executor resource is unregistered: id=%s", executor_id)

    def update(
        self, executor_id: str, used: int, reserved: int, status: ExecutorStatus
    ) -> None:
        """Record an executor's usage and status."""
        with self._lock:
            try:
                resource = self._executors[executor_id]
            except KeyError:
                raise UnknownExecutorError(executor_id) from None
            resource.used = used
            resource.reserved = reserved
            resource.status = ExecutorStatus(status)

    def available_resources(self) -> list[ExecutorResource]:
        """Running executors with capacity left above both usage and reservation."""
        with self._lock:
            return self._available()

    def _available(self) -> list[ExecutorResource]:
        return [
            resource
            for resource in self._executors.values()
            if resource.status == ExecutorStatus.RUNNING
            and resource.capacity > resource.reserved
            and resource.capacity > resource.used
        ]

    def allocate(
        self, tasks: Iterable[ScheduleTask]
    ) -> dict[int, ScheduleResult] | None:
        """Map each task id to an executor, or return None if any task cannot fit.

        Executors are tried round-robin, starting where the previous task was
        placed; placement does not consume the executor's capacity.
        """
        with self._lock:
            resources = self._available()
            if not resources:
                return None
            result: dict[int, ScheduleResult] = {}
            idx = 0
            for task in tasks:
                start = idx
                while True:
                    resource = resources[idx]
                    if resource._free() >= task.cost:
                        result[task.task_id] = ScheduleResult(
                            executor_id=resource.executor_id, addr=resource.addr
                        )
                        break
                    idx = (idx + 1) % len(resources)
                    if idx == start:
                        return None
            return result