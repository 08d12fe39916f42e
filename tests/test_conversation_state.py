from __future__ import annotations

from datetime import UTC, datetime

import allure

from jobline.orchestrator.models import (
    JobKind,
    JobStatus,
    JobView,
    build_conversation_state,
    error_output,
)

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Conversation State"),
]

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _job(kind: JobKind, payload: dict[str, object]) -> JobView:
    return JobView(
        job_id="job-1",
        kind=kind,
        status=JobStatus.QUEUED,
        input=payload,
        output=None,
        cancelled=False,
        worker_id=None,
        created_at=_NOW,
        updated_at=_NOW,
    )


def test_message_job_becomes_single_human_message_with_context() -> None:
    state = build_conversation_state(
        _job(
            JobKind.MESSAGE,
            {
                "llmId": "gpt-test",
                "threadId": "t-1",
                "message": "Summarise sales",
                "dataContexts": {"sales": {"rows": 3}},
                "graphs": [{"type": "bar"}],
            },
        ),
    )

    assert state.llm_id == "gpt-test"
    assert state.thread_id == "t-1"
    assert [message.to_dict() for message in state.messages] == [
        {"role": "human", "content": "Summarise sales"},
    ]
    assert state.data_contexts == {"sales": {"rows": 3}}
    assert state.graphs == [{"type": "bar"}]


def test_tool_job_with_text_content_becomes_tool_message() -> None:
    state = build_conversation_state(
        _job(
            JobKind.TOOL,
            {
                "llmId": "gpt-test",
                "threadId": "t-1",
                "message": {"content": "42 rows", "tool_call_id": "call-1"},
            },
        ),
    )

    assert [message.to_dict() for message in state.messages] == [
        {"role": "tool", "content": "42 rows", "tool_call_id": "call-1"},
    ]
    assert state.data_contexts == {}
    assert state.graphs == []


def test_tool_job_with_list_content_is_acknowledged_then_forwarded_as_human() -> None:
    content = [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}}]
    state = build_conversation_state(
        _job(
            JobKind.TOOL,
            {
                "llmId": "gpt-test",
                "threadId": "t-1",
                "message": {"content": content, "tool_call_id": "call-9"},
            },
        ),
    )

    assert [message.to_dict() for message in state.messages] == [
        {"role": "tool", "content": "ok", "tool_call_id": "call-9"},
        {"role": "human", "content": content},
    ]


def test_state_serialises_for_command_backends() -> None:
    state = build_conversation_state(
        _job(JobKind.MESSAGE, {"llmId": "m", "threadId": "t", "message": "hi"}),
    )

    assert state.to_dict() == {
        "llm_id": "m",
        "thread_id": "t",
        "messages": [{"role": "human", "content": "hi"}],
        "data_contexts": {},
        "graphs": [],
    }


def test_error_output_carries_message_and_timestamp() -> None:
    assert error_output("boom", at=_NOW) == {
        "error": "boom",
        "timestamp": "2026-10-19T12:00:00+00:00",
    }


def test_terminal_statuses() -> None:
    assert not JobStatus.QUEUED.is_terminal
    assert not JobStatus.PROCESSING.is_terminal
    assert JobStatus.COMPLETED.is_terminal
    assert JobStatus.FAILED.is_terminal
    assert JobStatus.CANCELLED.is_terminal
