"""State machine of job masters: wait-ack, online and pending."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class JobMeta:
    """Metadata describing a job master."""

    id: str
    tp: str = ""
    config: bytes = b""


class WorkerNotFoundError(KeyError):
    """Raised when a worker id is not in the expected state."""

    def __init__(self, worker_id: str) -> None:
        super().__init__(worker_id)
        self.worker_id = worker_id

    def __str__(self) -> str:
        return f"worker not found: {self.worker_id}"


class JobFsm:
    """Tracks running job masters as they move between states.

    A dispatched job waits for acknowledgement; it becomes online when its
    worker comes up, pending when the worker goes offline or dispatching
    fails, and waits for acknowledgement again once redispatched.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._pending: dict[str, JobMeta] = {}
        self._wait_ack: dict[str, JobMeta] = {}
        self._online: dict[str, JobMeta] = {}

    def job_dispatched(self, job: JobMeta) -> None:
        """Record a newly dispatched job as waiting for acknowledgement."""
        with self._lock:
            self._wait_ack[job.id] = job

    def iter_pending_jobs(self, dispatch: Callable[[JobMeta], str]) -> None:
        """Redispatch every pending job; ``dispatch`` returns the new job id.

        An exception from ``dispatch`` stops the pass and leaves that job and
        the ones not yet reached pending.
        """
        with self._lock:
            for old_id, job in list(self._pending.items()):
                new_id = dispatch(job)
                del self._pending[old_id]
                job.id = new_id
                self._wait_ack[new_id] = job
                logger.info("job master recovered: %s", job)

    def job_online(self, worker_id: str) -> None:
        """Move a job from waiting for acknowledgement to online."""
        with self._lock:
            try:
                job = self._wait_ack.pop(worker_id)
            except KeyError:
                raise WorkerNotFoundError(worker_id) from None
            self._online[worker_id] = job

    def job_offline(self, worker_id: str) -> None:
        """Move an online job to pending; other workers are ignored."""
        with self._lock:
            job = self._online.pop(worker_id, None)
            if job is None:
                logger.warning("non-online worker offline, ignore it: %s", worker_id)
                return
            self._pending[worker_id] = job

    def job_dispatch_failed(self, worker_id: str) -> None:
        """Move a job whose dispatch failed back to pending."""
        with self._lock:
            try:
                job = self._wait_ack.pop(worker_id)
            except KeyError:
                raise WorkerNotFoundError(worker_id) from None
            self._pending[worker_id] = job

    def pending_job_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_ack_job_count(self) -> int:
        with self._lock:
            return len(self._wait_ack)

    def online_job_count(self) -> int:
        with self._lock:
            return len(self._online)