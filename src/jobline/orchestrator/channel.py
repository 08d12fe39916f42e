"""Cancellation channel: broadcast subscription over the job store outbox."""

from __future__ import annotations

import threading
import time

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from jobline.orchestrator.models import CancellationEvent
from jobline.storage.common import to_utc_aware_datetime
from jobline.storage.sqlmodel_models import JobCancellationEvent


class CancellationChannel:
    """Publish/subscribe view of ``job_cancellation_events``.

    Events are published by :meth:`JobRepository.set_cancelled` inside the
    same transaction that flips the flag; this class only reads them.
    """

    def __init__(self, engine: Engine, *, poll_interval_seconds: float = 0.25) -> None:
        self.engine = engine
        self.poll_interval_seconds = poll_interval_seconds

    def subscribe(self) -> CancellationSubscription:
        """Start a subscription that sees only events published from now on."""

        return CancellationSubscription(channel=self, last_event_id=self.latest_event_id())

    def latest_event_id(self) -> int:
        with Session(self.engine) as session:
            latest = session.exec(select(func.max(JobCancellationEvent.event_id))).one()
        return int(latest or 0)

    def events_after(self, event_id: int, *, limit: int = 100) -> list[CancellationEvent]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(JobCancellationEvent)
                .where(col(JobCancellationEvent.event_id) > event_id)
                .order_by(col(JobCancellationEvent.event_id).asc())
                .limit(limit),
            ).all()
        return [
            CancellationEvent(
                event_id=row.event_id or 0,
                job_id=row.job_id,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]


class CancellationSubscription:
    """Cursor over the outbox; every subscription receives every event."""

    def __init__(self, *, channel: CancellationChannel, last_event_id: int) -> None:
        self.channel = channel
        self.last_event_id = last_event_id
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def poll(self) -> list[CancellationEvent]:
        """Return events published since the previous call without waiting."""

        events = self.channel.events_after(self.last_event_id)
        if events:
            self.last_event_id = events[-1].event_id
        return events

    def wait(self, timeout_seconds: float) -> list[CancellationEvent]:
        """Block until at least one event arrives, the timeout elapses or close()."""

        deadline = time.monotonic() + max(0.0, timeout_seconds)
        while not self.closed:
            events = self.poll()
            if events:
                return events
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []
            self._closed.wait(min(self.channel.poll_interval_seconds, remaining))
        return []
