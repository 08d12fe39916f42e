from __future__ import annotations

import threading
import time

import allure

from jobline.orchestrator.channel import CancellationChannel
from jobline.orchestrator.models import JobCreate, JobKind
from jobline.orchestrator.repository import JobRepository

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Cancellation"),
]


def _insert(repository: JobRepository, job_id: str) -> None:
    repository.insert_job(JobCreate(job_id=job_id, kind=JobKind.MESSAGE, input={}))


def test_subscription_only_sees_events_after_subscribe(repository: JobRepository) -> None:
    _insert(repository, "old")
    _insert(repository, "new")
    repository.set_cancelled(job_id="old")
    channel = CancellationChannel(repository.engine, poll_interval_seconds=0.01)

    subscription = channel.subscribe()
    assert subscription.poll() == []

    repository.set_cancelled(job_id="new")
    events = subscription.poll()

    assert [event.job_id for event in events] == ["new"]
    assert subscription.poll() == []


def test_every_subscription_receives_every_event(repository: JobRepository) -> None:
    _insert(repository, "job-1")
    channel = CancellationChannel(repository.engine, poll_interval_seconds=0.01)
    first = channel.subscribe()
    second = channel.subscribe()

    repository.set_cancelled(job_id="job-1")

    assert [event.job_id for event in first.poll()] == ["job-1"]
    assert [event.job_id for event in second.poll()] == ["job-1"]


def test_wait_blocks_until_event_arrives(repository: JobRepository) -> None:
    _insert(repository, "job-1")
    channel = CancellationChannel(repository.engine, poll_interval_seconds=0.01)
    subscription = channel.subscribe()

    timer = threading.Timer(0.1, repository.set_cancelled, kwargs={"job_id": "job-1"})
    timer.start()
    try:
        events = subscription.wait(3)
    finally:
        timer.cancel()

    assert [event.job_id for event in events] == ["job-1"]
    assert events[0].created_at.tzinfo is not None


def test_wait_returns_empty_on_timeout_and_after_close(repository: JobRepository) -> None:
    channel = CancellationChannel(repository.engine, poll_interval_seconds=0.01)
    subscription = channel.subscribe()

    assert subscription.wait(0.05) == []

    subscription.close()
    started = time.monotonic()
    assert subscription.wait(5) == []
    assert time.monotonic() - started < 1
    assert subscription.closed
