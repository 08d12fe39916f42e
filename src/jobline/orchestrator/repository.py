"""Job store repository: durable job records and the cancellation outbox."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from jobline.orchestrator.errors import (
    DuplicateJobIdError,
    InvalidStatusTransitionError,
    JobNotFoundError,
)
from jobline.orchestrator.models import (
    ACTIVE_STATUSES,
    JobCreate,
    JobKind,
    JobStatus,
    JobView,
    error_output,
)
from jobline.storage.alembic_runner import upgrade_head
from jobline.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from jobline.storage.sqlmodel_models import Job, JobCancellationEvent

logger = logging.getLogger(__name__)

_WORKER_WRITABLE_STATUSES = frozenset(
    {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
)


class JobRepository:
    """Job persistence facade backed by SQLModel + SQLite.

    Field ownership is split between two writers: workers move ``status`` and
    ``output`` through :meth:`update_status`, cancel handlers flip
    ``cancelled`` through :meth:`set_cancelled`. Both are single conditional
    ``UPDATE`` statements, so no row locking beyond SQLite's own is needed.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def insert_job(self, payload: JobCreate) -> JobView:
        """Insert a new queued job; the id must be fresh."""

        now = utc_now()
        with Session(self.engine) as session:
            row = Job(
                job_id=payload.job_id,
                kind=payload.kind.value,
                status=JobStatus.QUEUED.value,
                input=payload.input,
                output=None,
                cancelled=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateJobIdError(payload.job_id) from error
            session.refresh(row)
            return _to_job_view(row)

    def get_job(self, job_id: str) -> JobView | None:
        """Return the current row, or None when the id is unknown."""

        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                return None
            return _to_job_view(row)

    def require_job(self, job_id: str) -> JobView:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def update_status(
        self,
        *,
        job_id: str,
        status: JobStatus,
        output: dict[str, Any] | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Atomically move an active, non-cancelled job to ``status``.

        Returns False when the write is refused because the job is already
        terminal or has been cancelled. Raises JobNotFoundError when no row
        exists.
        """

        if status not in _WORKER_WRITABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Workers cannot write status={status.value}; "
                "cancellation goes through set_cancelled.",
            )

        now = utc_now()
        values: dict[str, Any] = {
            "status": status.value,
            "updated_at": to_db_datetime(now),
        }
        if output is not None:
            values["output"] = output
        if worker_id is not None:
            values["worker_id"] = worker_id

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status).in_([value.value for value in ACTIVE_STATUSES]),
                    col(Job.cancelled).is_(False),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                if session.get(Job, job_id) is None:
                    raise JobNotFoundError(job_id)
                return False
            session.commit()
            return True

    def set_cancelled(self, *, job_id: str) -> bool:
        """Flip ``cancelled`` and publish the cancellation event in one transaction.

        Only the false to true edge of an active job publishes; repeated calls
        and calls on finished jobs return False without writing anything.
        """

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status).in_([value.value for value in ACTIVE_STATUSES]),
                    col(Job.cancelled).is_(False),
                )
                .values(
                    cancelled=True,
                    status=JobStatus.CANCELLED.value,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                if session.get(Job, job_id) is None:
                    raise JobNotFoundError(job_id)
                return False
            session.add(JobCancellationEvent(job_id=job_id, created_at=now))
            session.commit()
            return True

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(Job).order_by(col(Job.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(Job.status == status.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def fail_stale_queued(self, *, older_than: timedelta) -> list[str]:
        """Fail jobs that never left ``queued`` within ``older_than``.

        A crash between the producer's insert and enqueue leaves a row that no
        queue message will ever reference.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - older_than)
        failed: list[str] = []
        with Session(self.engine) as session:
            candidates = session.exec(
                select(Job.job_id).where(
                    Job.status == JobStatus.QUEUED.value,
                    col(Job.cancelled).is_(False),
                    col(Job.created_at) <= cutoff,
                ),
            ).all()
            for job_id in candidates:
                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == job_id,
                        col(Job.status) == JobStatus.QUEUED.value,
                        col(Job.cancelled).is_(False),
                    )
                    .values(
                        status=JobStatus.FAILED.value,
                        output=error_output(
                            f"Job was not picked up within {int(older_than.total_seconds())}s.",
                            at=now,
                        ),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount == 1:
                    failed.append(job_id)
            session.commit()
        if failed:
            logger.warning("Failed %d stale queued job(s): %s", len(failed), ", ".join(failed))
        return failed


def _to_job_view(row: Job) -> JobView:
    return JobView(
        job_id=row.job_id,
        kind=JobKind(row.kind),
        status=JobStatus(row.status),
        input=dict(row.input or {}),
        output=row.output,
        cancelled=bool(row.cancelled),
        worker_id=row.worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
