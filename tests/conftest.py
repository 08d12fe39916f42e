"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from jobline.orchestrator.queue import SqliteJobQueue
from jobline.orchestrator.repository import JobRepository
from jobline.orchestrator.services import JobService


@pytest.fixture(autouse=True)
def _clean_jobline_env(monkeypatch):
    """Keep developer JOBLINE_* variables out of tests."""
    for name in list(os.environ):
        if name.startswith("JOBLINE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "jobline.db"


@pytest.fixture()
def repository(db_path: Path):
    repo = JobRepository(db_path)
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def job_queue(repository: JobRepository, db_path: Path):
    queue = SqliteJobQueue(
        db_path,
        visibility_timeout_seconds=30,
        max_receive_count=5,
        poll_interval_seconds=0.01,
    )
    yield queue
    queue.close()


@pytest.fixture()
def service(repository: JobRepository, job_queue: SqliteJobQueue) -> JobService:
    return JobService(repository=repository, queue=job_queue)


@pytest.fixture()
def message_input() -> dict[str, object]:
    return {
        "llmId": "gpt-test",
        "threadId": "thread-1",
        "message": "What changed last week?",
        "dataContexts": {"sales": {"rows": 3}},
        "graphs": [],
    }
