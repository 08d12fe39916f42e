"""SQLModel ORM tables for the job store and queue."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Text, false
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_status_created", "status", "created_at"),)

    job_id: str = Field(primary_key=True)
    kind: str = Field(index=True)
    status: str
    input: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    output: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    cancelled: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=false()),
    )
    worker_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobCancellationEvent(SQLModel, table=True):
    """Outbox row written in the same transaction as the cancelled flip."""

    __tablename__ = "job_cancellation_events"  # type: ignore[bad-override]

    event_id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueMessage(SQLModel, table=True):
    __tablename__ = "queue_messages"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_messages_visible", "queue_name", "dead_lettered_at", "visible_after"),
    )

    message_id: str = Field(primary_key=True)
    queue_name: str
    body: str = Field(sa_column=Column(Text, nullable=False))
    receipt_handle: str | None = None
    receive_count: int = Field(default=0)
    visible_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    dead_lettered_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
