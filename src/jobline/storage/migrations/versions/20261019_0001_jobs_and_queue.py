"""Job store, cancellation outbox and queue message tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("input", sa.JSON(), nullable=False),
        sa.Column("output", sa.JSON(), nullable=True),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("idx_jobs_status_created", "jobs", ["status", "created_at"])
    op.create_index("ix_jobs_kind", "jobs", ["kind"])

    op.create_table(
        "job_cancellation_events",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index(
        "ix_job_cancellation_events_job_id",
        "job_cancellation_events",
        ["job_id"],
    )

    op.create_table(
        "queue_messages",
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("queue_name", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("receipt_handle", sa.String(), nullable=True),
        sa.Column("receive_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("visible_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("message_id"),
    )
    op.create_index(
        "idx_queue_messages_visible",
        "queue_messages",
        ["queue_name", "dead_lettered_at", "visible_after"],
    )


def downgrade() -> None:
    op.drop_index("idx_queue_messages_visible", table_name="queue_messages")
    op.drop_table("queue_messages")
    op.drop_index("ix_job_cancellation_events_job_id", table_name="job_cancellation_events")
    op.drop_table("job_cancellation_events")
    op.drop_index("ix_jobs_kind", table_name="jobs")
    op.drop_index("idx_jobs_status_created", table_name="jobs")
    op.drop_table("jobs")
