"""Use-case services for the producer side: submit, cancel, status."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from jobline.orchestrator.models import JobCreate, JobKind, JobView
from jobline.orchestrator.queue import SqliteJobQueue
from jobline.orchestrator.repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CancelResult:
    """Outcome of a cancel request.

    ``applied`` is False when the job had already finished or was already
    cancelled; the request still succeeds.
    """

    job_id: str
    applied: bool


class JobService:
    """Coordinates the job store insert and the queue publish."""

    def __init__(self, *, repository: JobRepository, queue: SqliteJobQueue) -> None:
        self.repository = repository
        self.queue = queue

    def submit(self, kind: JobKind, input: dict[str, Any]) -> JobView:  # noqa: A002
        """Persist a queued job, then publish its id.

        The row is committed before the message exists, so a consumer never
        receives an id it cannot load. A crash between the two steps leaves a
        queued row that ``JobRepository.fail_stale_queued`` cleans up.
        """

        job = self.repository.insert_job(
            JobCreate(job_id=uuid4().hex, kind=kind, input=dict(input)),
        )
        message_id = self.queue.enqueue(job.job_id)
        logger.info("Submitted %s job %s (message %s)", kind.value, job.job_id, message_id)
        return job

    def cancel(self, job_id: str) -> CancelResult:
        applied = self.repository.set_cancelled(job_id=job_id)
        if applied:
            logger.info("Cancelled job %s", job_id)
        else:
            logger.info("Cancel for job %s had no effect; job already finished", job_id)
        return CancelResult(job_id=job_id, applied=applied)

    def status(self, job_id: str) -> JobView:
        return self.repository.require_job(job_id)
