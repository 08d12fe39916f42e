"""Per-message job processing shared by the worker and the batch consumer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from jobline.orchestrator.backend.base import TaskBackend
from jobline.orchestrator.errors import TaskAborted
from jobline.orchestrator.models import (
    JobStatus,
    JobView,
    QueueReference,
    build_conversation_state,
    error_output,
)
from jobline.orchestrator.registry import AbortHandle, RunningJobRegistry
from jobline.orchestrator.repository import JobRepository
from jobline.storage.common import utc_now

logger = logging.getLogger(__name__)


class ProcessOutcome(str, Enum):
    """What happened to one delivered message."""

    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"
    SKIPPED = "skipped"
    RETRY = "retry"

    @property
    def acknowledge(self) -> bool:
        return self != ProcessOutcome.RETRY


@dataclass(slots=True)
class ProcessResult:
    outcome: ProcessOutcome
    job_id: str | None
    error: str | None = None


class JobProcessor:
    """Load, start, execute and finish the job behind one queue reference.

    Store and queue failures are not caught here: the caller leaves the
    message unacknowledged so it is redelivered after its visibility timeout.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        backend: TaskBackend,
        worker_id: str,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.worker_id = worker_id

    def process(
        self,
        ref: QueueReference,
        *,
        registry: RunningJobRegistry | None = None,
        final_attempt: bool = True,
    ) -> ProcessResult:
        """Process one message.

        With ``final_attempt`` False an executor failure is reported as
        ``RETRY`` and the job is left ``processing`` for the next delivery.
        """

        if ref.job_id is None:
            logger.warning("Skipping malformed message %s", ref.message_id)
            return ProcessResult(outcome=ProcessOutcome.SKIPPED, job_id=None)

        job = self.repository.get_job(ref.job_id)
        if job is None:
            logger.warning("Skipping message %s: job %s not found", ref.message_id, ref.job_id)
            return ProcessResult(outcome=ProcessOutcome.SKIPPED, job_id=ref.job_id)
        if job.cancelled:
            logger.info("Skipping job %s: cancelled before start", job.job_id)
            return ProcessResult(outcome=ProcessOutcome.SKIPPED, job_id=job.job_id)
        if job.status.is_terminal:
            logger.info(
                "Skipping job %s: already %s (redelivery)",
                job.job_id,
                job.status.value,
            )
            return ProcessResult(outcome=ProcessOutcome.SKIPPED, job_id=job.job_id)

        if registry is not None:
            handle = registry.register(job.job_id)
        else:
            handle = AbortHandle(job.job_id)
        try:
            return self._run(job=job, handle=handle, final_attempt=final_attempt)
        finally:
            if registry is not None:
                registry.discard(job.job_id)

    def _run(self, *, job: JobView, handle: AbortHandle, final_attempt: bool) -> ProcessResult:
        started = self.repository.update_status(
            job_id=job.job_id,
            status=JobStatus.PROCESSING,
            worker_id=self.worker_id,
        )
        if not started:
            logger.info("Skipping job %s: cancelled before start", job.job_id)
            return ProcessResult(outcome=ProcessOutcome.SKIPPED, job_id=job.job_id)

        state = build_conversation_state(job)
        try:
            result = self.backend.execute(state, handle)
        except Exception as error:  # noqa: BLE001
            if handle.is_cancelled:
                logger.info("Job %s aborted during execution", job.job_id)
                return ProcessResult(outcome=ProcessOutcome.ABORTED, job_id=job.job_id)
            if isinstance(error, TaskAborted):
                logger.warning("Job %s aborted by its executor without a cancel", job.job_id)
            return self._fail(job=job, error=error, final_attempt=final_attempt)

        if handle.is_cancelled:
            logger.info("Job %s cancelled during execution; result discarded", job.job_id)
            return ProcessResult(outcome=ProcessOutcome.ABORTED, job_id=job.job_id)

        written = self.repository.update_status(
            job_id=job.job_id,
            status=JobStatus.COMPLETED,
            output=result,
        )
        if not written:
            return self._refused(job_id=job.job_id, writing=JobStatus.COMPLETED)
        logger.info("Job %s completed", job.job_id)
        return ProcessResult(outcome=ProcessOutcome.COMPLETED, job_id=job.job_id)

    def _fail(self, *, job: JobView, error: Exception, final_attempt: bool) -> ProcessResult:
        message = str(error) or type(error).__name__
        if not final_attempt:
            logger.warning("Job %s failed, will be retried: %s", job.job_id, message)
            return ProcessResult(outcome=ProcessOutcome.RETRY, job_id=job.job_id, error=message)

        written = self.repository.update_status(
            job_id=job.job_id,
            status=JobStatus.FAILED,
            output=error_output(message, at=utc_now()),
        )
        if not written:
            return self._refused(job_id=job.job_id, writing=JobStatus.FAILED)
        logger.warning("Job %s failed: %s", job.job_id, message)
        return ProcessResult(outcome=ProcessOutcome.FAILED, job_id=job.job_id, error=message)

    def _refused(self, *, job_id: str, writing: JobStatus) -> ProcessResult:
        """Classify a refused final write by re-reading the row."""

        current = self.repository.require_job(job_id)
        if current.cancelled:
            logger.info("Job %s cancelled before %s was recorded", job_id, writing.value)
            return ProcessResult(outcome=ProcessOutcome.ABORTED, job_id=job_id)
        logger.info(
            "Job %s already %s by another delivery; %s not recorded",
            job_id,
            current.status.value,
            writing.value,
        )
        return ProcessResult(outcome=ProcessOutcome.SKIPPED, job_id=job_id)
