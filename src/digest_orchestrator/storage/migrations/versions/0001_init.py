"""
Инициальная миграция.

Создаёт таблицы:
- batch_trackers
- ai_summaries
- audio_generation_retries
- user_mixes
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

_BATCH_STATUSES = (
    "pending",
    "partial_complete",
    "complete",
    "audio_requested",
    "audio_complete",
    "audio_failed",
    "failed",
)


def upgrade() -> None:
    op.create_table(
        "batch_trackers",
        sa.Column("batch_id", sa.String(length=64), primary_key=True),
        sa.Column("expected_count", sa.Integer(), nullable=False),
        sa.Column("received_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Enum(*_BATCH_STATUSES, name="batchstatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("timeout_at", sa.DateTime(), nullable=False),
        sa.Column("partial_completed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("audio_requested_at", sa.DateTime(), nullable=True),
        sa.Column("audio_completed_at", sa.DateTime(), nullable=True),
        sa.Column("audio_failed_at", sa.DateTime(), nullable=True),
        sa.Column("failed_at", sa.DateTime(), nullable=True),
        sa.Column("user_ids", sa.JSON(), nullable=False),
        sa.Column("audio_url", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_batch_trackers_status_timeout", "batch_trackers", ["status", "timeout_at"]
    )
    op.create_index(
        "ix_batch_trackers_status_created", "batch_trackers", ["status", "created_at"]
    )

    op.create_table(
        "ai_summaries",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("batch_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column(
            "summary_type", sa.Enum("user", "category", name="summarytype"), nullable=False
        ),
        sa.Column("summary_title", sa.String(length=255), nullable=False),
        sa.Column("is_audio_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("audio_url", sa.Text(), nullable=True),
        sa.Column("audio_requested_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("batch_id", "user_id", name="uq_ai_summaries_batch_user"),
    )
    op.create_index("ix_ai_summaries_batch_id", "ai_summaries", ["batch_id"])
    op.create_index(
        "ix_ai_summaries_batch_audio", "ai_summaries", ["batch_id", "is_audio_generated"]
    )

    op.create_table(
        "audio_generation_retries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("batch_id", sa.String(length=64), nullable=False),
        sa.Column("summary_id", sa.String(length=64), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column(
            "status",
            sa.Enum("pending", "retrying", "success", "failed", name="retrystatus"),
            nullable=False,
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("next_retry_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("success_at", sa.DateTime(), nullable=True),
        sa.Column("final_failure_at", sa.DateTime(), nullable=True),
        sa.Column("task_payload", sa.JSON(), nullable=False),
    )
    op.create_index(
        "ix_audio_generation_retries_summary_id", "audio_generation_retries", ["summary_id"]
    )
    op.create_index(
        "ix_audio_retries_status_next", "audio_generation_retries", ["status", "next_retry_at"]
    )
    op.create_index(
        "ix_audio_retries_batch_status", "audio_generation_retries", ["batch_id", "status"]
    )

    op.create_table(
        "user_mixes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("audio_url", sa.Text(), nullable=False),
        sa.Column("mix_name", sa.String(length=128), nullable=False),
        sa.Column("mix_type", sa.String(length=32), nullable=False),
        sa.Column("mix_icon", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_mixes_user_id", "user_mixes", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_user_mixes_user_id", table_name="user_mixes")
    op.drop_table("user_mixes")

    op.drop_index("ix_audio_retries_batch_status", table_name="audio_generation_retries")
    op.drop_index("ix_audio_retries_status_next", table_name="audio_generation_retries")
    op.drop_index(
        "ix_audio_generation_retries_summary_id", table_name="audio_generation_retries"
    )
    op.drop_table("audio_generation_retries")

    op.drop_index("ix_ai_summaries_batch_audio", table_name="ai_summaries")
    op.drop_index("ix_ai_summaries_batch_id", table_name="ai_summaries")
    op.drop_table("ai_summaries")

    op.drop_index("ix_batch_trackers_status_created", table_name="batch_trackers")
    op.drop_index("ix_batch_trackers_status_timeout", table_name="batch_trackers")
    op.drop_table("batch_trackers")

    sa.Enum(name="retrystatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="summarytype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="batchstatus").drop(op.get_bind(), checkfirst=True)
