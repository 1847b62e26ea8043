"""create_background_jobs_and_processing_locks

Revision ID: 3f9d2c41b7a8
Revises:
Create Date: 2026-10-19 09:12:40.118302

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9d2c41b7a8"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_TYPES = ("storybook", "auto-story", "scenes", "cartoonize", "image-generation")
JOB_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")


def upgrade() -> None:
    """Create background_jobs and processing_locks tables."""
    op.create_table(
        "background_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(*JOB_TYPES, name="jobtype", native_enum=False, length=32),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*JOB_STATUSES, name="jobstatus", native_enum=False, length=32),
            nullable=False,
        ),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("current_step", sa.String(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("input_data", sa.JSON(), nullable=False),
        sa.Column("result_data", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_background_jobs_progress"),
        sa.CheckConstraint("retry_count >= 0", name="ck_background_jobs_retry_count"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_background_jobs_type", "background_jobs", ["type"])
    op.create_index("ix_background_jobs_status", "background_jobs", ["status"])
    op.create_index("ix_background_jobs_user_id", "background_jobs", ["user_id"])
    op.create_index("ix_background_jobs_created_at", "background_jobs", ["created_at"])
    # Pending-queue scan: WHERE status = 'pending' ORDER BY created_at
    op.create_index(
        "ix_background_jobs_status_created_at", "background_jobs", ["status", "created_at"]
    )

    op.create_table(
        "processing_locks",
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    """Drop processing_locks and background_jobs tables."""
    op.drop_table("processing_locks")
    op.drop_index("ix_background_jobs_status_created_at", table_name="background_jobs")
    op.drop_index("ix_background_jobs_created_at", table_name="background_jobs")
    op.drop_index("ix_background_jobs_user_id", table_name="background_jobs")
    op.drop_index("ix_background_jobs_status", table_name="background_jobs")
    op.drop_index("ix_background_jobs_type", table_name="background_jobs")
    op.drop_table("background_jobs")
