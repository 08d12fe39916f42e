"""Controllers for job CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from jobline.config import Settings
from jobline.orchestrator.batch import invoke_batch
from jobline.orchestrator.models import JobKind, JobStatus, JobView
from jobline.orchestrator.poller import DevPoller
from jobline.orchestrator.runtime import runtime_scope
from jobline.storage.alembic_runner import upgrade_head


@dataclass(slots=True)
class DbInitCommand:
    db_path: Path | None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None = 1


@dataclass(slots=True)
class BatchCommand:
    db_path: Path | None
    max_items: int | None


@dataclass(slots=True)
class PollCommand:
    db_path: Path | None
    max_cycles: int | None = None


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for job submission."""

    db_path: Path | None
    kind: JobKind
    input: dict[str, Any]


@dataclass(slots=True)
class JobIdCommand:
    """CLI input for cancel/status operations."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class ListJobsCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class QueueStatsCommand:
    db_path: Path | None
    dead_letters: int = 10


@dataclass(slots=True)
class ReapCommand:
    db_path: Path | None
    older_than_seconds: int


class JobCliController:
    """Coordinates store, queue and worker CLI operations."""

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        upgrade_head(settings.db_path)
        lines = [f"Job store ready: {settings.db_path}"]
        if settings.queue_db_path != settings.db_path:
            upgrade_head(settings.queue_db_path)
            lines.append(f"Queue store ready: {settings.queue_db_path}")
        return lines

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            worker = runtime.build_worker()
            if command.once:
                with worker.cancellation_listener():
                    summary = worker.run_once()
            else:
                summary = worker.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} aborted={summary.aborted} "
            f"skipped={summary.skipped} idle_polls={summary.idle_polls}",
        ]

    def run_batch(self, command: BatchCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            response = invoke_batch(
                runtime.queue,
                runtime.build_batch_consumer(),
                max_items=command.max_items or settings.worker.batch_size,
                retry_delay_seconds=settings.queue.retry_delay_seconds,
            )
        return [
            f"Batch summary: processed={response.processed} "
            f"failures={len(response.batch_item_failures)}",
            json.dumps(response.to_dict()),
        ]

    def run_poller(self, command: PollCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            summary = DevPoller(runtime=runtime).run(max_cycles=command.max_cycles)
        return [
            f"Poller summary: cycles={summary.cycles} processed={summary.processed} "
            f"batch_failures={summary.batch_failures} reaped={summary.reaped}",
        ]

    def submit(self, command: SubmitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            job = runtime.service.submit(command.kind, command.input)
        return [f"Job submitted: id={job.job_id} kind={job.kind.value} status={job.status.value}"]

    def cancel(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            result = runtime.service.cancel(command.job_id)
            job = runtime.repository.require_job(command.job_id)
        if result.applied:
            return [f"Job cancelled: id={job.job_id}"]
        return [f"Job {job.job_id} already {job.status.value}; nothing to cancel."]

    def status(self, command: JobIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            job = runtime.service.status(command.job_id)
        return _render_job(job)

    def list_jobs(self, command: ListJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = JobStatus(command.status) if command.status else None
        with runtime_scope(settings) as runtime:
            jobs = runtime.repository.list_jobs(status=status, limit=command.limit)
        if not jobs:
            return ["No jobs found."]
        return [
            f"{job.job_id} kind={job.kind.value} status={job.status.value} "
            f"cancelled={str(job.cancelled).lower()} created_at={job.created_at.isoformat()}"
            for job in jobs
        ]

    def queue_stats(self, command: QueueStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            counts = runtime.queue.counts()
            dead_letters = runtime.queue.list_dead_letters(limit=command.dead_letters)
        lines = [
            f"Queue {settings.queue.name}: visible={counts.visible} "
            f"in_flight={counts.in_flight} dead_lettered={counts.dead_lettered}",
        ]
        for message_id, job_id, receive_count in dead_letters:
            lines.append(
                f"dead-letter message={message_id} job={job_id or '-'} deliveries={receive_count}",
            )
        return lines

    def reap(self, command: ReapCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with runtime_scope(settings) as runtime:
            failed = runtime.repository.fail_stale_queued(
                older_than=timedelta(seconds=command.older_than_seconds),
            )
        if not failed:
            return ["No stale queued jobs."]
        return [f"Failed stale queued job: {job_id}" for job_id in failed]


def _render_job(job: JobView) -> list[str]:
    lines = [
        f"Job: {job.job_id}",
        f"Kind: {job.kind.value}",
        f"Status: {job.status.value}",
        f"Cancelled: {str(job.cancelled).lower()}",
        f"Worker: {job.worker_id or '-'}",
        f"Created: {job.created_at.isoformat()}",
        f"Updated: {job.updated_at.isoformat()}",
    ]
    if job.output is not None:
        lines.append(f"Output: {json.dumps(job.output, ensure_ascii=False, sort_keys=True)}")
    return lines
