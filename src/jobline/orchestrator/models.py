"""Domain models for the job store, queue and executor boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobKind(str, Enum):
    """Closed set of job input shapes."""

    MESSAGE = "message"
    TOOL = "tool"


class JobStatus(str, Enum):
    """Human-facing job lifecycle states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


@dataclass(slots=True)
class JobCreate:
    """Input payload for inserting a job row."""

    job_id: str
    kind: JobKind
    input: dict[str, Any]


@dataclass(slots=True)
class JobView:
    """Readable job row for services, workers and the HTTP layer."""

    job_id: str
    kind: JobKind
    status: JobStatus
    input: dict[str, Any]
    output: dict[str, Any] | None
    cancelled: bool
    worker_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class CancellationEvent:
    """One notification published on the false to true edge of ``cancelled``."""

    event_id: int
    job_id: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class QueueReference:
    """A received queue message; only ``job_id`` travels in the body."""

    message_id: str
    receipt_handle: str
    receive_count: int
    job_id: str | None


@dataclass(slots=True)
class QueueCounts:
    """Queue depth split by visibility."""

    visible: int = 0
    in_flight: int = 0
    dead_lettered: int = 0


@dataclass(slots=True)
class ConversationMessage:
    """One message handed to the task executor."""

    role: str
    content: Any
    tool_call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


@dataclass(slots=True)
class ConversationState:
    """Executor input assembled from a job's kind-specific input."""

    llm_id: str
    thread_id: str
    messages: list[ConversationMessage]
    data_contexts: dict[str, Any] | list[Any] = field(default_factory=dict)
    graphs: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "llm_id": self.llm_id,
            "thread_id": self.thread_id,
            "messages": [message.to_dict() for message in self.messages],
            "data_contexts": self.data_contexts,
            "graphs": self.graphs,
        }


def build_conversation_state(job: JobView) -> ConversationState:
    """Translate a job input into the executor's conversation state.

    A ``tool`` job whose content is a list (for example an image description
    returned by the client) cannot be sent back as a tool message, so the tool
    call is answered with ``"ok"`` and the list follows as a human message.
    """

    payload = job.input
    llm_id = str(payload.get("llmId", ""))
    thread_id = str(payload.get("threadId", ""))

    if job.kind == JobKind.TOOL:
        tool_message = payload.get("message") or {}
        content = tool_message.get("content")
        tool_call_id = str(tool_message.get("tool_call_id", ""))
        messages: list[ConversationMessage] = []
        if isinstance(content, list):
            messages.append(
                ConversationMessage(role="tool", content="ok", tool_call_id=tool_call_id),
            )
            messages.append(ConversationMessage(role="human", content=content))
        else:
            messages.append(
                ConversationMessage(role="tool", content=content, tool_call_id=tool_call_id),
            )
        return ConversationState(llm_id=llm_id, thread_id=thread_id, messages=messages)

    return ConversationState(
        llm_id=llm_id,
        thread_id=thread_id,
        messages=[ConversationMessage(role="human", content=payload.get("message", ""))],
        data_contexts=payload.get("dataContexts") or {},
        graphs=payload.get("graphs") or [],
    )


def error_output(message: str, *, at: datetime) -> dict[str, Any]:
    """Structured ``output`` stored for failed jobs."""

    return {"error": message, "timestamp": at.isoformat()}
