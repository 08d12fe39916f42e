"""Wiring of store, queue and executor from settings."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from jobline.config import ExecutorSettings, Settings
from jobline.orchestrator.backend import CommandBackend, EchoBackend, TaskBackend
from jobline.orchestrator.batch import BatchConsumer
from jobline.orchestrator.queue import SqliteJobQueue
from jobline.orchestrator.repository import JobRepository
from jobline.orchestrator.services import JobService
from jobline.orchestrator.worker import JobWorker


@dataclass(slots=True)
class Runtime:
    """Open store and queue handles plus the settings they came from."""

    settings: Settings
    repository: JobRepository
    queue: SqliteJobQueue

    @property
    def service(self) -> JobService:
        return JobService(repository=self.repository, queue=self.queue)

    def build_worker(self, backend: TaskBackend | None = None) -> JobWorker:
        worker_settings = self.settings.worker
        return JobWorker(
            repository=self.repository,
            queue=self.queue,
            backend=backend or build_backend(self.settings.executor),
            worker_id=worker_settings.worker_id,
            receive_wait_seconds=worker_settings.receive_wait_seconds,
            poll_interval_seconds=worker_settings.poll_interval_seconds,
            cancel_poll_interval_seconds=worker_settings.cancel_poll_interval_seconds,
        )

    def build_batch_consumer(self, backend: TaskBackend | None = None) -> BatchConsumer:
        return BatchConsumer(
            repository=self.repository,
            backend=backend or build_backend(self.settings.executor),
            worker_id=f"batch-{self.settings.worker.worker_id}",
            max_receive_count=self.settings.queue.max_receive_count,
        )


def build_backend(settings: ExecutorSettings) -> TaskBackend:
    if settings.backend == "command":
        return CommandBackend(
            command_template=settings.command_template,
            timeout_seconds=settings.timeout_seconds,
        )
    return EchoBackend(delay_seconds=settings.echo_delay_seconds)


def open_runtime(settings: Settings) -> Runtime:
    """Open handles and run migrations on both databases; caller must close."""

    settings.validate()
    repository = JobRepository(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    queue = SqliteJobQueue(
        settings.queue_db_path,
        queue_name=settings.queue.name,
        visibility_timeout_seconds=settings.queue.visibility_timeout_seconds,
        max_receive_count=settings.queue.max_receive_count,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    if settings.queue_db_path != settings.db_path:
        queue.init_schema()
    return Runtime(settings=settings, repository=repository, queue=queue)


def close_runtime(runtime: Runtime) -> None:
    runtime.queue.close()
    runtime.repository.close()


@contextmanager
def runtime_scope(settings: Settings) -> Iterator[Runtime]:
    runtime = open_runtime(settings)
    try:
        yield runtime
    finally:
        close_runtime(runtime)
