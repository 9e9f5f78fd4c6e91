"""Alembic migration: Add rapidcron tables.

This migration adds the tasks, task_instances and execution_logs tables to
an existing database. It's designed to be used as-is or copied into an
existing Alembic migrations directory.

Usage:
  1. Copy this file to your project's alembic/versions/ directory
  2. Run: alembic upgrade head
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision = "001_add_rapidcron_tables"
down_revision = None  # Change to your latest migration if this isn't the first
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the rapidcron tables."""
    op.create_table(
        "tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("dependency_ids", sa.JSON(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("schedule", sa.String(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("enabled_at", sa.DateTime(), nullable=True),
        sa.Column("timeout_seconds", sa.Integer(), nullable=True),
        sa.Column("max_retries", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_name", "tasks", ["name"])
    op.create_index("ix_tasks_enabled", "tasks", ["enabled"])
    op.create_index("ix_tasks_deleted_at", "tasks", ["deleted_at"])
    # Names are unique among tasks that aren't soft-deleted
    op.create_index(
        "ux_tasks_name_active",
        "tasks",
        ["name"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "task_instances",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scheduled_time", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("triggered_by", sa.String(), nullable=False),
        sa.Column("executor_id", sa.String(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=True),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "scheduled_time", name="uq_task_instances_task_scheduled"),
    )
    op.create_index("ix_task_instances_task_id", "task_instances", ["task_id"])
    op.create_index("ix_task_instances_scheduled_time", "task_instances", ["scheduled_time"])
    op.create_index("ix_task_instances_status", "task_instances", ["status"])
    op.create_index("ix_task_instances_lease_expires_at", "task_instances", ["lease_expires_at"])
    op.create_index("ix_task_instances_next_attempt_at", "task_instances", ["next_attempt_at"])

    op.create_table(
        "execution_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_name", sa.String(), nullable=False),
        sa.Column("instance_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("scheduled_time", sa.DateTime(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=True),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("output_summary", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("triggered_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_execution_logs_task_id", "execution_logs", ["task_id"])
    op.create_index("ix_execution_logs_instance_id", "execution_logs", ["instance_id"])
    op.create_index("ix_execution_logs_scheduled_time", "execution_logs", ["scheduled_time"])
    op.create_index("ix_execution_logs_end_time", "execution_logs", ["end_time"])
    op.create_index("ix_execution_logs_status", "execution_logs", ["status"])
    op.create_index("ix_execution_logs_triggered_by", "execution_logs", ["triggered_by"])


def downgrade() -> None:
    """Drop the rapidcron tables."""
    op.drop_table("execution_logs")
    op.drop_table("task_instances")

    op.drop_index("ux_tasks_name_active", table_name="tasks")
    op.drop_index("ix_tasks_deleted_at", table_name="tasks")
    op.drop_index("ix_tasks_enabled", table_name="tasks")
    op.drop_index("ix_tasks_name", table_name="tasks")
    op.drop_table("tasks")
