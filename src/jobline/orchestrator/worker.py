"""Long-running queue worker with a standing cancellation subscription."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from jobline.orchestrator.backend.base import TaskBackend
from jobline.orchestrator.channel import CancellationChannel, CancellationSubscription
from jobline.orchestrator.processor import JobProcessor, ProcessOutcome
from jobline.orchestrator.queue import SqliteJobQueue
from jobline.orchestrator.registry import RunningJobRegistry
from jobline.orchestrator.repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    aborted: int = 0
    skipped: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.aborted += other.aborted
        self.skipped += other.skipped
        self.idle_polls += other.idle_polls


class JobWorker:
    """Consumes queue references one at a time and executes their jobs.

    A background listener thread follows the cancellation channel and aborts
    the job currently registered in :attr:`registry`, if it is the one being
    cancelled.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        queue: SqliteJobQueue,
        backend: TaskBackend,
        worker_id: str,
        receive_wait_seconds: float = 1.0,
        poll_interval_seconds: float = 1.0,
        cancel_poll_interval_seconds: float = 0.25,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.worker_id = worker_id
        self.receive_wait_seconds = receive_wait_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.registry = RunningJobRegistry()
        self.channel = CancellationChannel(
            repository.engine,
            poll_interval_seconds=cancel_poll_interval_seconds,
        )
        self.processor = JobProcessor(repository=repository, backend=backend, worker_id=worker_id)
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, *, signal_name: str | None = None) -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name
        if signal_name is not None:
            logger.info("Received %s; stopping after the current job", signal_name)

    def run_once(self) -> WorkerRunSummary:
        """Receive and process at most one reference.

        Store and queue errors propagate and leave the message unacknowledged.
        """

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        refs = self.queue.receive(max_items=1, wait_seconds=self.receive_wait_seconds)
        if not refs:
            summary.idle_polls = 1
            return summary

        ref = refs[0]
        summary.processed = 1
        result = self.processor.process(ref, registry=self.registry, final_attempt=True)
        if result.outcome.acknowledge:
            self.queue.acknowledge(ref)

        if result.outcome == ProcessOutcome.COMPLETED:
            summary.completed = 1
        elif result.outcome == ProcessOutcome.FAILED:
            summary.failed = 1
        elif result.outcome == ProcessOutcome.ABORTED:
            summary.aborted = 1
        else:
            summary.skipped = 1
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until stopped, ``max_jobs`` processed or ``max_idle_polls`` empty receives.

        Args:
            max_jobs: Stop after processing this many references (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty receives
                (None = keep polling until stopped).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with (
            stop_signal_handlers(lambda name: self.request_stop(signal_name=name)),
            self.cancellation_listener(),
        ):
            while True:
                if self._stop_requested:
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                try:
                    summary = self.run_once()
                except SQLAlchemyError:
                    logger.exception(
                        "Worker %s: store error; message left for redelivery",
                        self.worker_id,
                    )
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    continue
                consecutive_idle = 0

    @contextmanager
    def cancellation_listener(self) -> Iterator[CancellationSubscription]:
        """Follow the cancellation channel on a background thread while open."""

        subscription = self.channel.subscribe()
        thread = threading.Thread(
            target=self._listen,
            args=(subscription,),
            name=f"jobline-cancel-listener-{self.worker_id}",
            daemon=True,
        )
        thread.start()
        try:
            yield subscription
        finally:
            subscription.close()
            thread.join(timeout=5)

    def _listen(self, subscription: CancellationSubscription) -> None:
        while not subscription.closed:
            try:
                self._deliver_cancellations(subscription)
            except Exception:  # noqa: BLE001
                logger.exception("Cancellation listener error; retrying")
                time.sleep(self.channel.poll_interval_seconds)

    def _deliver_cancellations(self, subscription: CancellationSubscription) -> None:
        events = subscription.wait(self.channel.poll_interval_seconds * 4)
        for event in events:
            if not self.registry.abort(event.job_id):
                logger.debug("Cancellation for job %s is not running here", event.job_id)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))


@contextmanager
def stop_signal_handlers(on_stop: Callable[[str], None]) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``on_stop`` while the block runs."""

    if threading.current_thread() is not threading.main_thread():
        # Signal handlers can only be installed in main thread.
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        on_stop(name)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
