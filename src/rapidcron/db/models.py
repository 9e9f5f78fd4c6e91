"""SQLModel schema for tasks, task instances and execution logs."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import Column, Field, JSON, SQLModel


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InstanceStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class TriggeredBy(str, Enum):
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    RETRY = "retry"


IN_FLIGHT_STATUSES = (InstanceStatus.CLAIMED.value, InstanceStatus.RUNNING.value)
CANCELLABLE_STATUSES = (InstanceStatus.PENDING.value, InstanceStatus.CLAIMED.value)


class Task(SQLModel, table=True):
    """Recurring job definition. Never physically deleted."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index(
            "ux_tasks_name_active",
            "name",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    name: str = Field(index=True)
    description: Optional[str] = None
    dependency_ids: list = Field(default_factory=list, sa_column=Column(JSON))

    type: str
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    schedule: str
    enabled: bool = Field(default=True, index=True)
    # Last switch to enabled; occurrences before it are never scheduled
    enabled_at: Optional[datetime] = None

    timeout_seconds: Optional[int] = None
    max_retries: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    @property
    def is_schedulable(self) -> bool:
        return self.enabled and self.deleted_at is None

    def dependency_uuids(self) -> list[UUID]:
        return [UUID(str(dep_id)) for dep_id in self.dependency_ids or []]


class TaskInstance(SQLModel, table=True):
    """One scheduled occurrence of a task."""

    __tablename__ = "task_instances"
    __table_args__ = (
        UniqueConstraint("task_id", "scheduled_time", name="uq_task_instances_task_scheduled"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    task_id: UUID = Field(index=True)
    scheduled_time: datetime = Field(index=True)
    status: str = Field(default=InstanceStatus.PENDING.value, index=True)
    triggered_by: str = Field(default=TriggeredBy.SCHEDULER.value)

    executor_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = Field(default=None, index=True)
    next_attempt_at: datetime = Field(default_factory=utcnow, index=True)

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    retry_count: int = Field(default=0)
    result: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExecutionLog(SQLModel, table=True):
    """Immutable record of one execution attempt."""

    __tablename__ = "execution_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    task_id: UUID = Field(index=True)
    task_name: str
    instance_id: UUID = Field(index=True)
    attempt: int = Field(default=0)

    scheduled_time: datetime = Field(index=True)
    start_time: Optional[datetime] = None
    end_time: datetime = Field(default_factory=utcnow, index=True)
    duration_ms: int = Field(default=0)

    status: str = Field(index=True)
    output_summary: Optional[str] = None
    error_message: Optional[str] = None
    triggered_by: str = Field(default=TriggeredBy.SCHEDULER.value, index=True)

    created_at: datetime = Field(default_factory=utcnow)
