"""Exceptions raised by the job store, producer and executors."""

from __future__ import annotations


class JobStoreError(RuntimeError):
    """Base error for job store contract violations."""


class DuplicateJobIdError(JobStoreError):
    """A job with the same id already exists."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job already exists: {job_id}")
        self.job_id = job_id


class JobNotFoundError(JobStoreError):
    """No job row matches the id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidStatusTransitionError(ValueError):
    """Requested status write would regress the job lifecycle."""


class TaskAborted(RuntimeError):
    """Executor stopped because its cancellation token was set."""


class BackendRunError(RuntimeError):
    """Executor infrastructure failure (command missing, unreadable output)."""
