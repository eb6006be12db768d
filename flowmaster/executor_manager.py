"""Executor registry: registration, heartbeats, liveness and placement."""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Iterable

from flowmaster.resource import (
    CapacityResourceManager,
    ExecutorStatus,
    ScheduleResult,
    ScheduleTask,
    UnknownExecutorError,
)

logger = logging.getLogger(__name__)


class NodeType(IntEnum):
    """Role of a node registered in the cluster."""

    UNKNOWN = 0
    SERVER_MASTER = 1
    EXECUTOR = 2


@dataclass
class NodeInfo:
    """Identity, address and capacity of a cluster node."""

    id: str
    addr: str = ""
    capability: int = 0
    type: NodeType = NodeType.EXECUTOR

    def to_json(self) -> str:
        """Serialise the node information as a JSON document."""
        return json.dumps(
            {
                "type": int(self.type),
                "id": self.id,
                "addr": self.addr,
                "cap": self.capability,
            }
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> NodeInfo:
        """Build node information from a JSON document.

        Raises ValueError if the document is malformed.
        """
        raw = json.loads(data)
        if not isinstance(raw, dict):
            raise ValueError("node info must be a JSON object")
        return cls(
            id=str(raw.get("id", "")),
            addr=str(raw.get("addr", "")),
            capability=int(raw.get("cap", 0)),
            type=NodeType(raw.get("type", NodeType.UNKNOWN)),
        )


class ErrorCode(IntEnum):
    """Error codes carried in responses to executors and clients."""

    UNKNOWN_EXECUTOR = 1
    TOMBSTONE_EXECUTOR = 2
    MASTER_NOT_READY = 3
    INVALID_META_STORE_TYPE = 4


@dataclass
class HeartbeatResponse:
    """Reply to an executor heartbeat; ``err`` is None on success."""

    err: ErrorCode | None = None
    message: str = ""
    addrs: list[str] = field(default_factory=list)
    leader: str = ""


class DuplicateExecutorError(Exception):
    """Raised when a newly allocated executor id is already registered."""

    def __init__(self, executor_id: str) -> None:
        super().__init__(f"executor already registered: {executor_id}")
        self.executor_id = executor_id


@dataclass(eq=False)
class Executor:
    """Liveness state of one executor instance."""

    info: NodeInfo
    heartbeat_ttl: float
    status: ExecutorStatus = ExecutorStatus.INITING
    last_update: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    def check_alive(self) -> bool:
        """Return whether the executor is alive, marking it tombstone if expired."""
        with self._lock:
            if self.status == ExecutorStatus.TOMBSTONE:
                return False
            if self.last_update + self.heartbeat_ttl < time.monotonic():
                self.status = ExecutorStatus.TOMBSTONE
                return False
            return True

    def _beat(self, ttl: float, status: ExecutorStatus) -> bool:
        with self._lock:
            if self.status == ExecutorStatus.TOMBSTONE:
                return False
            self.last_update = time.monotonic()
            self.heartbeat_ttl = ttl
            self.status = status
            return True


class ExecutorManager:
    """Holds every executor with its liveness, status and resource usage.

    Durations are in seconds. ``on_remove`` is called with the executor id
    and the wall-clock time whenever an executor is dropped.
    """

    def __init__(
        self,
        init_heartbeat_ttl: float,
        keep_alive_interval: float,
        on_remove: Callable[[str, float], None] | None = None,
    ) -> None:
        self.init_heartbeat_ttl = init_heartbeat_ttl
        self.keep_alive_interval = keep_alive_interval
        self._on_remove = on_remove
        self._lock = threading.Lock()
        self._executors: dict[str, Executor] = {}
        self._resources = CapacityResourceManager()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    def handle_heartbeat(
        self,
        executor_id: str,
        status: ExecutorStatus | int,
        ttl_ms: int,
        resource_usage: int,
    ) -> HeartbeatResponse:
        """Apply a heartbeat; unknown and tombstone executors get an error reply."""
        logger.debug("handle heartbeat from %s", executor_id)
        with self._lock:
            executor = self._executors.get(executor_id)
        if executor is None:
            return HeartbeatResponse(
                err=ErrorCode.UNKNOWN_EXECUTOR,
                message=f"unknown executor id: {executor_id}",
            )
        new_status = ExecutorStatus(status)
        if not executor._beat(ttl_ms / 1000, new_status):
            return HeartbeatResponse(
                err=ErrorCode.TOMBSTONE_EXECUTOR,
                message=f"executor is tombstone: {executor_id}",
            )
        # Reservations are not reported yet, so usage stands in for both.
        self._resources.update(executor_id, resource_usage, resource_usage, new_status)
        return HeartbeatResponse()

    def register_executor(self, info: NodeInfo) -> None:
        """Add an executor to both the registry and the resource manager."""
        logger.info("register executor: %s", info)
        executor = Executor(info=info, heartbeat_ttl=self.init_heartbeat_ttl)
        with self._lock:
            self._executors[info.id] = executor
        self._resources.register(info.id, info.addr, info.capability)

    def allocate_new_executor(self, address: str, capability: int) -> NodeInfo:
        """Give a joining executor a fresh id and register it."""
        logger.info("allocate new executor: addr=%s capability=%d", address, capability)
        info = NodeInfo(id=str(uuid.uuid4()), addr=address, capability=capability)
        with self._lock:
            if info.id in self._executors:
                raise DuplicateExecutorError(info.id)
        self.register_executor(info)
        return info

    def allocate(
        self, tasks: Iterable[ScheduleTask]
    ) -> dict[int, ScheduleResult] | None:
        """Place tasks on executors; None if the cluster lacks resources."""
        return self._resources.allocate(tasks)

    def executor_ids(self) -> list[str]:
        """Ids of the registered executors."""
        with self._lock:
            return list(self._executors)

    def check_alive_once(self) -> str | None:
        """Drop the first executor found dead and return its id, if any."""
        with self._lock:
            executors = list(self._executors.items())
        for executor_id, executor in executors:
            if not executor.check_alive():
                self._remove(executor_id)
                return executor_id
        return None

    def _remove(self, executor_id: str) -> None:
        logger.info("begin to remove executor: %s", executor_id)
        with self._lock:
            if self._executors.pop(executor_id, None) is None:
                raise UnknownExecutorError(executor_id)
            self._resources.unregister(executor_id)
        if self._on_remove is not None:
            self._on_remove(executor_id, time.time())

    def reset_from_json(self, values: Iterable[str | bytes]) -> None:
        """Re-register executors from stored node information documents."""
        for value in values:
            info = NodeInfo.from_json(value)
            if info.type == NodeType.EXECUTOR:
                self.register_executor(info)

    def start(self) -> None:
        """Start checking executor liveness in the background."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._check_alive_loop, name="executor-check-alive", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background liveness check and wait for it to end."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _check_alive_loop(self) -> None:
        while not self._stopping.wait(self.keep_alive_interval):
            try:
                self.check_alive_once()
            except UnknownExecutorError as exc:
                logger.info("check alive meet error: %s", exc)
        logger.info("check alive finished")