"""Deterministic in-process executor for local runs and tests."""

from __future__ import annotations

import logging
from typing import Any

from jobline.orchestrator.backend.base import CancellationToken
from jobline.orchestrator.errors import TaskAborted
from jobline.orchestrator.models import ConversationState

logger = logging.getLogger(__name__)


class EchoBackend:
    """Reply with the last message content after an optional delay."""

    def __init__(self, *, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds

    def execute(self, state: ConversationState, token: CancellationToken) -> dict[str, Any]:
        if self.delay_seconds > 0 and token.wait(self.delay_seconds):
            raise TaskAborted(f"Execution aborted for thread {state.thread_id}")
        if token.is_cancelled:
            raise TaskAborted(f"Execution aborted for thread {state.thread_id}")
        return echo_response(state)


def echo_response(state: ConversationState) -> dict[str, Any]:
    last = state.messages[-1].content if state.messages else ""
    return {
        "response": last,
        "llm_id": state.llm_id,
        "thread_id": state.thread_id,
        "message_count": len(state.messages),
    }
