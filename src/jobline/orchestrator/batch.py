"""Stateless per-invocation batch consumer with partial-batch failure reports."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from jobline.orchestrator.backend.base import TaskBackend
from jobline.orchestrator.models import QueueReference
from jobline.orchestrator.processor import JobProcessor, ProcessOutcome
from jobline.orchestrator.queue import SqliteJobQueue
from jobline.orchestrator.repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResponse:
    """Message ids the queue must redeliver; everything else succeeded."""

    batch_item_failures: list[str] = field(default_factory=list)
    processed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchItemFailures": [
                {"itemIdentifier": message_id} for message_id in self.batch_item_failures
            ],
        }


class BatchConsumer:
    """Process each reference of a batch independently.

    There is no running-job registry here, so a cancellation that arrives
    mid-execution is only observed when the result is about to be written.
    Executor errors are reported for redelivery until the message reaches its
    last allowed delivery, at which point the job is recorded as failed.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        backend: TaskBackend,
        worker_id: str,
        max_receive_count: int,
    ) -> None:
        self.processor = JobProcessor(repository=repository, backend=backend, worker_id=worker_id)
        self.max_receive_count = max_receive_count

    def handle(self, refs: list[QueueReference]) -> BatchResponse:
        response = BatchResponse(processed=len(refs))
        for ref in refs:
            final_attempt = ref.receive_count >= self.max_receive_count
            try:
                result = self.processor.process(ref, final_attempt=final_attempt)
            except SQLAlchemyError:
                logger.exception("Store error while processing message %s", ref.message_id)
                response.batch_item_failures.append(ref.message_id)
                continue
            if result.outcome == ProcessOutcome.RETRY:
                response.batch_item_failures.append(ref.message_id)
        return response


def invoke_batch(
    queue: SqliteJobQueue,
    consumer: BatchConsumer,
    *,
    max_items: int,
    retry_delay_seconds: float = 0,
) -> BatchResponse:
    """Simulate one serverless trigger: receive, handle, settle every message."""

    refs = queue.receive(max_items=max_items, wait_seconds=0)
    if not refs:
        return BatchResponse()

    response = consumer.handle(refs)
    failed = set(response.batch_item_failures)
    for ref in refs:
        if ref.message_id in failed:
            queue.release(ref, delay_seconds=retry_delay_seconds)
        else:
            queue.acknowledge(ref)
    if failed:
        logger.warning("Batch of %d finished with %d failure(s)", len(refs), len(failed))
    return response
