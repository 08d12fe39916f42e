"""Request and response bodies for the jobs API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageJobInput(BaseModel):
    """Fresh user utterance plus its conversational context."""

    model_config = ConfigDict(extra="allow")

    llmId: str = Field(min_length=1)  # noqa: N815
    threadId: str = Field(min_length=1)  # noqa: N815
    message: str
    dataContexts: dict[str, Any] | list[Any] | None = None  # noqa: N815
    graphs: list[Any] | None = None


class ToolMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str | list[Any]
    tool_call_id: str = Field(min_length=1)


class ToolJobInput(BaseModel):
    """Tool-call result fed back to the executor."""

    model_config = ConfigDict(extra="allow")

    llmId: str = Field(min_length=1)  # noqa: N815
    threadId: str = Field(min_length=1)  # noqa: N815
    message: ToolMessage


class CancelRequest(BaseModel):
    id: str = Field(min_length=1)


class SubmitResponse(BaseModel):
    id: str
    status: str


class CancelResponse(BaseModel):
    id: str
    status: str
    message: str


class StatusResponse(BaseModel):
    id: str
    status: str
    output: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: str
    details: Any = None
