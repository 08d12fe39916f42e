"""Local/dev polling harness that stands in for the production trigger."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from jobline.orchestrator.backend.base import TaskBackend
from jobline.orchestrator.batch import invoke_batch
from jobline.orchestrator.runtime import Runtime
from jobline.orchestrator.worker import stop_signal_handlers

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PollerSummary:
    cycles: int = 0
    processed: int = 0
    batch_failures: int = 0
    reaped: int = 0


class DevPoller:
    """Drive either the continuous worker or the batch consumer on a timer.

    ``settings.worker.continuous`` selects the mode. In batch mode every
    cycle is one simulated trigger invocation of up to ``batch_size``
    messages.
    """

    def __init__(self, *, runtime: Runtime, backend: TaskBackend | None = None) -> None:
        self.runtime = runtime
        self.settings = runtime.settings
        self.continuous = self.settings.worker.continuous
        self.worker = runtime.build_worker(backend) if self.continuous else None
        self.consumer = None if self.continuous else runtime.build_batch_consumer(backend)
        self._stop_requested = False

    def request_stop(self, *, signal_name: str | None = None) -> None:
        self._stop_requested = True
        if self.worker is not None:
            self.worker.request_stop(signal_name=signal_name)
        if signal_name is not None:
            logger.info("Received %s; poller stopping", signal_name)

    def run(self, *, max_cycles: int | None = None) -> PollerSummary:
        summary = PollerSummary()
        mode = "continuous" if self.continuous else "batch"
        logger.info("Dev poller started in %s mode", mode)
        with stop_signal_handlers(lambda name: self.request_stop(signal_name=name)):
            while not self._stop_requested:
                if max_cycles is not None and summary.cycles >= max_cycles:
                    break
                self.run_cycle(summary)
                if self._stop_requested:
                    break
                self._sleep_with_stop(self.settings.worker.poll_interval_seconds)
        logger.info(
            "Dev poller stopped: cycles=%d processed=%d reaped=%d",
            summary.cycles,
            summary.processed,
            summary.reaped,
        )
        return summary

    def run_cycle(self, summary: PollerSummary) -> None:
        summary.cycles += 1
        if self.worker is not None:
            worker_summary = self.worker.run_loop(max_idle_polls=1)
            summary.processed += worker_summary.processed
            if self.worker.stop_requested:
                self._stop_requested = True
        elif self.consumer is not None:
            response = invoke_batch(
                self.runtime.queue,
                self.consumer,
                max_items=self.settings.worker.batch_size,
                retry_delay_seconds=self.settings.queue.retry_delay_seconds,
            )
            summary.processed += response.processed
            summary.batch_failures += len(response.batch_item_failures)

        queued_timeout = self.settings.worker.queued_timeout_seconds
        if queued_timeout > 0:
            reaped = self.runtime.repository.fail_stale_queued(
                older_than=timedelta(seconds=queued_timeout),
            )
            summary.reaped += len(reaped)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))
