"""Persistence layer shared by schedulers and workers.

Every cross-process decision goes through this module: instance creation
relies on the (task_id, scheduled_time) unique constraint and ownership
changes are single conditional UPDATEs whose row count tells the caller
whether it won.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .models import (
    IN_FLIGHT_STATUSES,
    ExecutionLog,
    InstanceStatus,
    Task,
    TaskInstance,
    utcnow,
)

logger = logging.getLogger(__name__)

StatusArg = Union[str, InstanceStatus, Iterable[Union[str, InstanceStatus]]]


def _status_values(status: StatusArg) -> list[str]:
    if isinstance(status, (str, InstanceStatus)):
        status = [status]
    return [s.value if isinstance(s, InstanceStatus) else s for s in status]


class Store:
    """
    Access to tasks, task instances and execution logs.

    Example:
        store = Store(init_database("sqlite:///rapidcron.db"))
        instance, created = store.insert_instance_if_absent(
            TaskInstance(task_id=task.id, scheduled_time=when)
        )
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # Tasks

    def get_task(self, task_id: UUID) -> Optional[Task]:
        with self.session() as session:
            return session.get(Task, task_id)

    def schedulable_tasks(self) -> list[Task]:
        """Enabled, non-deleted tasks."""
        with self.session() as session:
            statement = (
                select(Task)
                .where(Task.enabled == True)  # noqa: E712
                .where(Task.deleted_at.is_(None))  # pyrefly: ignore
                .order_by(Task.created_at)
            )
            return list(session.exec(statement).all())

    # Instances

    def insert_instance_if_absent(self, instance: TaskInstance) -> tuple[TaskInstance, bool]:
        """
        Insert an instance unless one exists for its (task_id, scheduled_time).

        Returns:
            (instance, created) where instance is the stored row, either the
            one just inserted or the one that was already there.
        """
        with self.session() as session:
            session.add(instance)
            try:
                session.commit()
                session.refresh(instance)
                return instance, True
            except IntegrityError:
                session.rollback()
                logger.debug(
                    f"Instance for task {instance.task_id} at {instance.scheduled_time} already exists"
                )

        existing = self.find_instance(instance.task_id, instance.scheduled_time)
        if existing is None:
            # The conflicting row vanished, which only a manual delete can cause.
            raise RuntimeError(
                f"Instance for task {instance.task_id} at {instance.scheduled_time} "
                "conflicted on insert but could not be loaded"
            )
        return existing, False

    def get_instance(self, instance_id: UUID) -> Optional[TaskInstance]:
        with self.session() as session:
            return session.get(TaskInstance, instance_id)

    def find_instance(self, task_id: UUID, scheduled_time: datetime) -> Optional[TaskInstance]:
        with self.session() as session:
            statement = (
                select(TaskInstance)
                .where(TaskInstance.task_id == task_id)
                .where(TaskInstance.scheduled_time == scheduled_time)
            )
            return session.exec(statement).first()

    def latest_instance(
        self,
        task_id: UUID,
        at_or_before: Optional[datetime] = None,
        triggered_by: Optional[str] = None,
    ) -> Optional[TaskInstance]:
        """Most recent instance of a task by scheduled_time."""
        with self.session() as session:
            statement = select(TaskInstance).where(TaskInstance.task_id == task_id)
            if at_or_before is not None:
                statement = statement.where(TaskInstance.scheduled_time <= at_or_before)
            if triggered_by is not None:
                statement = statement.where(TaskInstance.triggered_by == triggered_by)
            statement = statement.order_by(TaskInstance.scheduled_time.desc()).limit(1)  # pyrefly: ignore
            return session.exec(statement).first()

    def claimable_instances(self, now: datetime, limit: int = 50, offset: int = 0) -> list[TaskInstance]:
        """Pending instances whose visibility time has passed, oldest first."""
        with self.session() as session:
            statement = (
                select(TaskInstance)
                .where(TaskInstance.status == InstanceStatus.PENDING.value)
                .where(TaskInstance.next_attempt_at <= now)
                .order_by(TaskInstance.next_attempt_at, TaskInstance.scheduled_time, TaskInstance.id)
                .offset(offset)
                .limit(limit)
            )
            return list(session.exec(statement).all())

    def expired_leases(self, now: datetime, limit: int = 50) -> list[TaskInstance]:
        """Claimed or running instances whose lease ran out."""
        with self.session() as session:
            statement = (
                select(TaskInstance)
                .where(TaskInstance.status.in_(IN_FLIGHT_STATUSES))  # pyrefly: ignore
                .where(TaskInstance.lease_expires_at <= now)
                .order_by(TaskInstance.lease_expires_at)
                .limit(limit)
            )
            return list(session.exec(statement).all())

    def instances(
        self,
        task_id: Optional[UUID] = None,
        status: Optional[StatusArg] = None,
        executor_id: Optional[str] = None,
        scheduled_after: Optional[datetime] = None,
        scheduled_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[TaskInstance]:
        """Range query over instances, newest scheduled_time first."""
        with self.session() as session:
            statement = select(TaskInstance)
            if task_id is not None:
                statement = statement.where(TaskInstance.task_id == task_id)
            if status is not None:
                statement = statement.where(TaskInstance.status.in_(_status_values(status)))  # pyrefly: ignore
            if executor_id is not None:
                statement = statement.where(TaskInstance.executor_id == executor_id)
            if scheduled_after is not None:
                statement = statement.where(TaskInstance.scheduled_time >= scheduled_after)
            if scheduled_before is not None:
                statement = statement.where(TaskInstance.scheduled_time < scheduled_before)
            statement = statement.order_by(TaskInstance.scheduled_time.desc()).limit(limit)  # pyrefly: ignore
            return list(session.exec(statement).all())

    def compare_and_set(
        self,
        instance_id: UUID,
        expected_status: StatusArg,
        values: dict[str, Any],
        where: Iterable[Any] = (),
        **match: Any,
    ) -> bool:
        """
        Atomically update an instance if it is still in the expected state.

        Args:
            instance_id: Instance to update
            expected_status: Status (or statuses) the row must currently have
            values: Column values to set
            where: Extra SQLAlchemy conditions
            **match: Extra column == value conditions (None matches NULL)

        Returns:
            True if this call changed the row, False if another caller got
            there first or the row is in a different state.
        """
        statement = (
            update(TaskInstance)
            .where(TaskInstance.id == instance_id)  # pyrefly: ignore
            .where(TaskInstance.status.in_(_status_values(expected_status)))  # pyrefly: ignore
        )
        for column_name, value in match.items():
            column = getattr(TaskInstance, column_name)
            statement = statement.where(column.is_(None) if value is None else column == value)
        for condition in where:
            statement = statement.where(condition)

        values = {
            key: (value.value if isinstance(value, InstanceStatus) else value)
            for key, value in values.items()
        }
        values.setdefault("updated_at", utcnow())

        with self.session() as session:
            result = session.exec(statement.values(**values))  # pyrefly: ignore
            session.commit()
            return result.rowcount == 1

    # Execution logs

    def append_log(self, log: ExecutionLog) -> ExecutionLog:
        with self.session() as session:
            session.add(log)
            session.commit()
            session.refresh(log)
            return log

    def logs(
        self,
        task_id: Optional[UUID] = None,
        instance_id: Optional[UUID] = None,
        status: Optional[str] = None,
        triggered_by: Optional[str] = None,
        end_after: Optional[datetime] = None,
        end_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[ExecutionLog]:
        """Execution logs, oldest first."""
        with self.session() as session:
            statement = select(ExecutionLog)
            if task_id is not None:
                statement = statement.where(ExecutionLog.task_id == task_id)
            if instance_id is not None:
                statement = statement.where(ExecutionLog.instance_id == instance_id)
            if status is not None:
                statement = statement.where(ExecutionLog.status == status)
            if triggered_by is not None:
                statement = statement.where(ExecutionLog.triggered_by == triggered_by)
            if end_after is not None:
                statement = statement.where(ExecutionLog.end_time >= end_after)
            if end_before is not None:
                statement = statement.where(ExecutionLog.end_time < end_before)
            statement = statement.order_by(
                ExecutionLog.end_time, ExecutionLog.attempt, ExecutionLog.created_at
            ).limit(limit)
            return list(session.exec(statement).all())
