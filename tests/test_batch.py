from __future__ import annotations

from typing import Any

import allure

from jobline.orchestrator.backend import EchoBackend
from jobline.orchestrator.batch import BatchConsumer, BatchResponse, invoke_batch
from jobline.orchestrator.models import JobKind, JobStatus
from jobline.orchestrator.queue import SqliteJobQueue
from jobline.orchestrator.repository import JobRepository
from jobline.orchestrator.services import JobService

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Batch Consumer"),
]


class ThreadFailingBackend:
    """Fails every job whose thread id is ``bad``."""

    def __init__(self) -> None:
        self.calls = 0

    def execute(self, state, token) -> dict[str, Any]:
        self.calls += 1
        if state.thread_id == "bad":
            raise RuntimeError("executor exploded")
        return {"response": state.thread_id}


def _submit(service: JobService, thread_id: str) -> str:
    job = service.submit(
        JobKind.MESSAGE,
        {"llmId": "m", "threadId": thread_id, "message": "hi"},
    )
    return job.job_id


def _consumer(repository: JobRepository, backend, *, max_receive_count: int = 5) -> BatchConsumer:
    return BatchConsumer(
        repository=repository,
        backend=backend,
        worker_id="batch-test",
        max_receive_count=max_receive_count,
    )


def test_batch_reports_only_failed_items(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
    service: JobService,
) -> None:
    good = _submit(service, "good")
    bad = _submit(service, "bad")
    consumer = _consumer(repository, ThreadFailingBackend())

    response = invoke_batch(job_queue, consumer, max_items=10)

    assert response.processed == 2
    assert len(response.batch_item_failures) == 1
    assert repository.require_job(good).status == JobStatus.COMPLETED
    assert repository.require_job(bad).status == JobStatus.PROCESSING

    redelivered = job_queue.receive(max_items=10)
    assert [ref.job_id for ref in redelivered] == [bad]
    assert redelivered[0].message_id == response.batch_item_failures[0]


def test_failed_item_is_recorded_failed_on_last_delivery(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
    service: JobService,
) -> None:
    bad = _submit(service, "bad")
    consumer = _consumer(repository, ThreadFailingBackend(), max_receive_count=2)

    first = invoke_batch(job_queue, consumer, max_items=5)
    second = invoke_batch(job_queue, consumer, max_items=5)

    assert len(first.batch_item_failures) == 1
    assert second.batch_item_failures == []
    stored = repository.require_job(bad)
    assert stored.status == JobStatus.FAILED
    assert stored.output is not None
    assert stored.output["error"] == "executor exploded"
    assert job_queue.counts().visible == 0
    assert job_queue.counts().in_flight == 0


def test_jobs_in_one_batch_keep_their_own_output(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
    service: JobService,
) -> None:
    first = service.submit(
        JobKind.MESSAGE,
        {"llmId": "m", "threadId": "thread-a", "message": "first question"},
    )
    second = service.submit(
        JobKind.MESSAGE,
        {"llmId": "m", "threadId": "thread-b", "message": "second question"},
    )

    response = invoke_batch(job_queue, _consumer(repository, EchoBackend()), max_items=10)

    assert response.processed == 2
    assert response.batch_item_failures == []
    assert first.job_id != second.job_id
    for job_id, thread_id, message in (
        (first.job_id, "thread-a", "first question"),
        (second.job_id, "thread-b", "second question"),
    ):
        stored = repository.require_job(job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.output is not None
        assert stored.output["response"] == message
        assert stored.output["thread_id"] == thread_id


def test_cancelled_and_missing_items_are_acknowledged(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
    service: JobService,
) -> None:
    cancelled = _submit(service, "cancel-me")
    service.cancel(cancelled)
    job_queue.enqueue("missing-job")
    backend = ThreadFailingBackend()

    response = invoke_batch(job_queue, _consumer(repository, backend), max_items=5)

    assert response.batch_item_failures == []
    assert backend.calls == 0
    assert repository.require_job(cancelled).status == JobStatus.CANCELLED
    counts = job_queue.counts()
    assert (counts.visible, counts.in_flight) == (0, 0)


def test_release_delay_postpones_redelivery(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
    service: JobService,
) -> None:
    _submit(service, "bad")

    invoke_batch(
        job_queue,
        _consumer(repository, ThreadFailingBackend()),
        max_items=5,
        retry_delay_seconds=60,
    )

    assert job_queue.receive() == []
    assert job_queue.counts().in_flight == 1


def test_empty_queue_returns_empty_response(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
) -> None:
    response = invoke_batch(job_queue, _consumer(repository, EchoBackend()), max_items=5)

    assert response == BatchResponse()


def test_handle_batch_directly(
    repository: JobRepository,
    job_queue: SqliteJobQueue,
    service: JobService,
) -> None:
    _submit(service, "good")
    _submit(service, "bad")
    refs = job_queue.receive(max_items=5)

    response = _consumer(repository, ThreadFailingBackend()).handle(refs)

    failed_ref = next(ref for ref in refs if ref.message_id in response.batch_item_failures)
    assert repository.require_job(failed_ref.job_id).status == JobStatus.PROCESSING
    assert response.to_dict() == {
        "batchItemFailures": [{"itemIdentifier": failed_ref.message_id}],
    }


def test_batch_response_serialises_failures() -> None:
    response = BatchResponse(batch_item_failures=["m-1", "m-2"], processed=3)

    assert response.to_dict() == {
        "batchItemFailures": [{"itemIdentifier": "m-1"}, {"itemIdentifier": "m-2"}],
    }

