"""Backend interface for task execution."""

from __future__ import annotations

from typing import Any, Protocol

from jobline.orchestrator.models import ConversationState


class CancellationToken(Protocol):
    """Abort signal observed by a running executor."""

    @property
    def is_cancelled(self) -> bool:
        """True once the job has been cancelled."""

    def wait(self, timeout_seconds: float) -> bool:
        """Sleep up to ``timeout_seconds``, returning early (True) on cancellation."""


class TaskBackend(Protocol):
    """Protocol implemented by task executors."""

    def execute(self, state: ConversationState, token: CancellationToken) -> dict[str, Any]:
        """Run the task and return its JSON-serialisable result.

        Raises TaskAborted when ``token`` fires before the result is ready.
        """
