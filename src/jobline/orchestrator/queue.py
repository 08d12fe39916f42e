"""Durable at-least-once queue of job references backed by SQLite."""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from jobline.orchestrator.models import QueueCounts, QueueReference
from jobline.storage.alembic_runner import upgrade_head
from jobline.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    utc_now,
)
from jobline.storage.sqlmodel_models import QueueMessage

logger = logging.getLogger(__name__)


class SqliteJobQueue:
    """Point-to-point queue with visibility timeout and dead-lettering.

    A received message is hidden for ``visibility_timeout_seconds``; if it is
    not acknowledged in time it becomes visible again, which is how a crashed
    consumer's work gets redelivered. Messages delivered ``max_receive_count``
    times without acknowledgement are moved to the dead-letter state instead
    of being delivered again.
    """

    def __init__(  # noqa: PLR0913
        self,
        db_path: Path,
        *,
        queue_name: str = "llm-jobs",
        visibility_timeout_seconds: int = 900,
        max_receive_count: int = 5,
        poll_interval_seconds: float = 0.1,
        busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.queue_name = queue_name
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.max_receive_count = max_receive_count
        self.poll_interval_seconds = poll_interval_seconds
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._stop = threading.Event()

    def close(self) -> None:
        """Wake blocked receivers and release DB resources."""

        self._stop.set()
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def enqueue(self, job_id: str, *, delay_seconds: float = 0) -> str:
        """Publish a ``{"id": job_id}`` reference and return its message id."""

        now = utc_now()
        message_id = uuid4().hex
        with Session(self.engine) as session:
            session.add(
                QueueMessage(
                    message_id=message_id,
                    queue_name=self.queue_name,
                    body=json.dumps({"id": job_id}),
                    receipt_handle=None,
                    receive_count=0,
                    visible_after=now + timedelta(seconds=delay_seconds),
                    created_at=now,
                ),
            )
            session.commit()
        return message_id

    def receive(self, *, max_items: int = 1, wait_seconds: float = 0) -> list[QueueReference]:
        """Long-poll for up to ``max_items`` visible messages."""

        if max_items <= 0:
            raise ValueError("max_items must be positive.")
        deadline = time.monotonic() + max(0.0, wait_seconds)
        while True:
            received = self._claim_visible(max_items=max_items)
            if received:
                return received
            remaining = deadline - time.monotonic()
            if remaining <= 0 or self._stop.is_set():
                return []
            self._stop.wait(min(self.poll_interval_seconds, remaining))

    def acknowledge(self, ref: QueueReference) -> bool:
        """Permanently remove a received message.

        Returns False when the receipt is stale, i.e. the visibility timeout
        expired and the message was handed to another receiver.
        """

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(QueueMessage).where(
                    col(QueueMessage.message_id) == ref.message_id,
                    col(QueueMessage.receipt_handle) == ref.receipt_handle,
                ),
            )
            session.commit()
        if result.rowcount != 1:
            logger.warning("Stale receipt for message %s; not acknowledged", ref.message_id)
            return False
        return True

    def release(self, ref: QueueReference, *, delay_seconds: float = 0) -> bool:
        """Make a received message visible again after ``delay_seconds``."""

        visible_after = utc_now() + timedelta(seconds=max(0.0, delay_seconds))
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueMessage)
                .where(
                    col(QueueMessage.message_id) == ref.message_id,
                    col(QueueMessage.receipt_handle) == ref.receipt_handle,
                )
                .values(
                    receipt_handle=None,
                    visible_after=to_db_datetime(visible_after),
                ),
            )
            session.commit()
        return result.rowcount == 1

    def counts(self) -> QueueCounts:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            rows = session.exec(
                select(
                    col(QueueMessage.dead_lettered_at).is_not(None),
                    col(QueueMessage.visible_after) <= now,
                    func.count(),
                )
                .where(QueueMessage.queue_name == self.queue_name)
                .group_by(
                    col(QueueMessage.dead_lettered_at).is_not(None),
                    col(QueueMessage.visible_after) <= now,
                ),
            ).all()
        counts = QueueCounts()
        for dead, visible, total in rows:
            if dead:
                counts.dead_lettered += total
            elif visible:
                counts.visible += total
            else:
                counts.in_flight += total
        return counts

    def list_dead_letters(self, *, limit: int = 50) -> list[tuple[str, str | None, int]]:
        """Return ``(message_id, job_id, receive_count)`` for dead-lettered messages."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueMessage)
                .where(
                    QueueMessage.queue_name == self.queue_name,
                    col(QueueMessage.dead_lettered_at).is_not(None),
                )
                .order_by(col(QueueMessage.dead_lettered_at).desc())
                .limit(limit),
            ).all()
        return [(row.message_id, _parse_job_id(row.body), row.receive_count) for row in rows]

    def _claim_visible(self, *, max_items: int) -> list[QueueReference]:
        now = to_db_datetime(utc_now())
        hidden_until = now + timedelta(seconds=self.visibility_timeout_seconds)
        received: list[QueueReference] = []
        with Session(self.engine) as session:
            # Writes come first so the transaction holds the write lock before it reads.
            self._dead_letter_exhausted(session=session, now=now)
            for _ in range(max_items):
                receipt_handle = uuid4().hex
                next_visible = (
                    select(QueueMessage.message_id)
                    .where(
                        QueueMessage.queue_name == self.queue_name,
                        col(QueueMessage.dead_lettered_at).is_(None),
                        col(QueueMessage.visible_after) <= now,
                    )
                    .order_by(col(QueueMessage.created_at).asc())
                    .limit(1)
                    .scalar_subquery()
                )
                claimed = session.exec(
                    sa_update(QueueMessage)
                    .where(col(QueueMessage.message_id) == next_visible)
                    .values(
                        receipt_handle=receipt_handle,
                        receive_count=col(QueueMessage.receive_count) + 1,
                        visible_after=hidden_until,
                    ),
                )
                if claimed.rowcount != 1:
                    break
                row = session.exec(
                    select(QueueMessage).where(QueueMessage.receipt_handle == receipt_handle),
                ).one()
                received.append(
                    QueueReference(
                        message_id=row.message_id,
                        receipt_handle=receipt_handle,
                        receive_count=row.receive_count,
                        job_id=_parse_job_id(row.body),
                    ),
                )
            session.commit()
        return received

    def _dead_letter_exhausted(self, *, session: Session, now: datetime) -> None:
        moved = session.exec(
            sa_update(QueueMessage)
            .where(
                QueueMessage.queue_name == self.queue_name,
                col(QueueMessage.dead_lettered_at).is_(None),
                col(QueueMessage.visible_after) <= now,
                col(QueueMessage.receive_count) >= self.max_receive_count,
            )
            .values(dead_lettered_at=now, receipt_handle=None),
        )
        if moved.rowcount == 0:
            return
        rows = session.exec(
            select(QueueMessage).where(
                QueueMessage.queue_name == self.queue_name,
                QueueMessage.dead_lettered_at == now,
            ),
        ).all()
        for row in rows:
            logger.warning(
                "Message %s (job %s) dead-lettered after %d deliveries",
                row.message_id,
                _parse_job_id(row.body),
                row.receive_count,
            )


def _parse_job_id(body: str) -> str | None:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    job_id = payload.get("id")
    if not isinstance(job_id, str) or not job_id:
        return None
    return job_id
