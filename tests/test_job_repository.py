from __future__ import annotations

import sqlite3
from datetime import timedelta
from pathlib import Path

import allure
import pytest

from jobline.orchestrator.channel import CancellationChannel
from jobline.orchestrator.errors import (
    DuplicateJobIdError,
    InvalidStatusTransitionError,
    JobNotFoundError,
)
from jobline.orchestrator.models import JobCreate, JobKind, JobStatus
from jobline.orchestrator.repository import JobRepository

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Job Store"),
]


def _insert(repository: JobRepository, job_id: str = "job-1") -> None:
    repository.insert_job(
        JobCreate(job_id=job_id, kind=JobKind.MESSAGE, input={"message": "hi"}),
    )


def test_insert_creates_queued_uncancelled_row(repository: JobRepository) -> None:
    job = repository.insert_job(
        JobCreate(job_id="job-1", kind=JobKind.TOOL, input={"llmId": "m"}),
    )

    assert job.status == JobStatus.QUEUED
    assert job.cancelled is False
    assert job.output is None
    assert job.kind == JobKind.TOOL
    assert job.created_at == job.updated_at
    assert job.created_at.tzinfo is not None

    loaded = repository.require_job("job-1")
    assert loaded.input == {"llmId": "m"}


def test_insert_rejects_duplicate_id(repository: JobRepository) -> None:
    _insert(repository)

    with pytest.raises(DuplicateJobIdError, match="job-1"):
        _insert(repository)


def test_get_job_returns_none_and_require_job_raises_for_unknown_id(
    repository: JobRepository,
) -> None:
    assert repository.get_job("missing") is None
    with pytest.raises(JobNotFoundError):
        repository.require_job("missing")


def test_update_status_moves_forward_and_advances_updated_at(repository: JobRepository) -> None:
    _insert(repository)
    created = repository.require_job("job-1")

    assert repository.update_status(
        job_id="job-1",
        status=JobStatus.PROCESSING,
        worker_id="w-1",
    )
    assert repository.update_status(
        job_id="job-1",
        status=JobStatus.COMPLETED,
        output={"response": "done"},
    )

    job = repository.require_job("job-1")
    assert job.status == JobStatus.COMPLETED
    assert job.output == {"response": "done"}
    assert job.worker_id == "w-1"
    assert job.updated_at >= created.updated_at


def test_update_status_never_regresses_terminal_job(repository: JobRepository) -> None:
    _insert(repository)
    repository.update_status(job_id="job-1", status=JobStatus.COMPLETED, output={"v": 1})

    assert not repository.update_status(job_id="job-1", status=JobStatus.PROCESSING)
    assert not repository.update_status(
        job_id="job-1",
        status=JobStatus.FAILED,
        output={"error": "late"},
    )

    job = repository.require_job("job-1")
    assert job.status == JobStatus.COMPLETED
    assert job.output == {"v": 1}


def test_update_status_rejects_queued_and_cancelled_targets(repository: JobRepository) -> None:
    _insert(repository)

    with pytest.raises(InvalidStatusTransitionError):
        repository.update_status(job_id="job-1", status=JobStatus.QUEUED)
    with pytest.raises(InvalidStatusTransitionError):
        repository.update_status(job_id="job-1", status=JobStatus.CANCELLED)


def test_update_status_raises_not_found_for_unknown_id(repository: JobRepository) -> None:
    with pytest.raises(JobNotFoundError):
        repository.update_status(job_id="missing", status=JobStatus.PROCESSING)


def test_set_cancelled_publishes_only_on_first_flip(repository: JobRepository) -> None:
    _insert(repository)
    channel = CancellationChannel(repository.engine)

    assert repository.set_cancelled(job_id="job-1") is True
    assert repository.set_cancelled(job_id="job-1") is False

    job = repository.require_job("job-1")
    assert job.cancelled is True
    assert job.status == JobStatus.CANCELLED
    events = channel.events_after(0)
    assert [event.job_id for event in events] == ["job-1"]


def test_worker_writes_are_refused_after_cancellation(repository: JobRepository) -> None:
    _insert(repository)
    repository.update_status(job_id="job-1", status=JobStatus.PROCESSING)
    repository.set_cancelled(job_id="job-1")

    assert not repository.update_status(
        job_id="job-1",
        status=JobStatus.COMPLETED,
        output={"response": "too late"},
    )
    assert not repository.update_status(
        job_id="job-1",
        status=JobStatus.FAILED,
        output={"error": "too late"},
    )

    job = repository.require_job("job-1")
    assert job.status == JobStatus.CANCELLED
    assert job.output is None


def test_set_cancelled_on_finished_job_is_silent_noop(repository: JobRepository) -> None:
    _insert(repository)
    repository.update_status(job_id="job-1", status=JobStatus.COMPLETED, output={"v": 1})

    assert repository.set_cancelled(job_id="job-1") is False

    job = repository.require_job("job-1")
    assert job.status == JobStatus.COMPLETED
    assert job.cancelled is False
    assert CancellationChannel(repository.engine).events_after(0) == []


def test_set_cancelled_raises_not_found_for_unknown_id(repository: JobRepository) -> None:
    with pytest.raises(JobNotFoundError):
        repository.set_cancelled(job_id="missing")


def test_list_jobs_filters_by_status(repository: JobRepository) -> None:
    _insert(repository, "job-a")
    _insert(repository, "job-b")
    repository.set_cancelled(job_id="job-b")

    assert {job.job_id for job in repository.list_jobs()} == {"job-a", "job-b"}
    cancelled = repository.list_jobs(status=JobStatus.CANCELLED)
    assert [job.job_id for job in cancelled] == ["job-b"]
    assert len(repository.list_jobs(limit=1)) == 1


def test_fail_stale_queued_only_touches_queued_jobs(repository: JobRepository) -> None:
    _insert(repository, "stale")
    _insert(repository, "running")
    repository.update_status(job_id="running", status=JobStatus.PROCESSING)

    failed = repository.fail_stale_queued(older_than=timedelta(0))

    assert failed == ["stale"]
    stale = repository.require_job("stale")
    assert stale.status == JobStatus.FAILED
    assert stale.output is not None
    assert "not picked up" in stale.output["error"]
    assert "timestamp" in stale.output
    assert repository.require_job("running").status == JobStatus.PROCESSING


def test_fail_stale_queued_ignores_recent_jobs(repository: JobRepository) -> None:
    _insert(repository)

    assert repository.fail_stale_queued(older_than=timedelta(hours=1)) == []
    assert repository.require_job("job-1").status == JobStatus.QUEUED


def test_alembic_schema_is_initialized_to_head(repository: JobRepository, db_path: Path) -> None:
    connection = sqlite3.connect(db_path)
    try:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchone()
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    finally:
        connection.close()

    assert version == ("20261019_0001",)
    assert {"jobs", "job_cancellation_events", "queue_messages"} <= tables


def test_init_schema_is_idempotent(repository: JobRepository) -> None:
    repository.init_schema()
    _insert(repository)
    repository.init_schema()

    assert repository.require_job("job-1").status == JobStatus.QUEUED
