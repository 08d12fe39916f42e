"""Process-local registry of jobs currently executing in this worker."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class AbortHandle:
    """Cancellation token handed to the executor for one job."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._event = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    def wait(self, timeout_seconds: float) -> bool:
        """Sleep up to ``timeout_seconds``; returns True as soon as aborted."""

        return self._event.wait(max(0.0, timeout_seconds))


class RunningJobRegistry:
    """Map of job id to abort handle, shared by the worker and its listener thread.

    Only jobs that this process is executing are present, so a cancellation
    event for any other job is a no-op here.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, AbortHandle] = {}

    def register(self, job_id: str) -> AbortHandle:
        handle = AbortHandle(job_id)
        with self._lock:
            self._handles[job_id] = handle
        return handle

    def abort(self, job_id: str) -> bool:
        """Trigger and remove the handle for ``job_id``; False when it is not running here."""

        with self._lock:
            handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        handle.abort()
        logger.info("Abort signalled for running job %s", job_id)
        return True

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._handles.pop(job_id, None)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
