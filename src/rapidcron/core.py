"""Core rapidcron functionality: task administration and inspection.

The engine (scheduler and workers) only reads tasks; this module is where
they are created, changed, triggered and soft-deleted.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .claims import InstanceClaimProtocol
from .config import Config
from .db import (
    ExecutionLog,
    InstanceStatus,
    Store,
    Task,
    TaskInstance,
    TriggeredBy,
    init_database,
    utcnow,
)
from .exceptions import InstanceNotFound, TaskNotFound, TaskValidationError
from .executors import Dispatcher
from .validation import has_cycle, validate_task_definition

logger = logging.getLogger(__name__)

_config: Optional[Config] = None
_store: Optional[Store] = None

UPDATABLE_FIELDS = {
    "name",
    "description",
    "dependency_ids",
    "type",
    "payload",
    "schedule",
    "enabled",
    "timeout_seconds",
    "max_retries",
}

TERMINAL_STATUSES = {
    InstanceStatus.SUCCESS.value,
    InstanceStatus.FAILED.value,
    InstanceStatus.SKIPPED.value,
    InstanceStatus.CANCELLED.value,
}

TaskRef = Union[UUID, str]


def init(config: Config) -> None:
    """Initialize rapidcron with configuration."""
    global _config, _store

    _config = config
    _store = Store(init_database(config.database_url))


def get_store() -> Store:
    if _store is None:
        raise RuntimeError("rapidcron not initialized. Call rapidcron.init(config) first.")
    return _store


def _config_or_raise() -> Config:
    if _config is None:
        raise RuntimeError("rapidcron not initialized. Call rapidcron.init(config) first.")
    return _config


def _as_uuid(value: TaskRef) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise TaskValidationError(f"Invalid id: '{value}'") from None


def _normalize_payload(task_type: str, payload: Any) -> dict:
    validated = Dispatcher().validate(task_type, payload or {})
    if isinstance(validated, BaseModel):
        return validated.model_dump(exclude_none=True)
    return dict(validated or {})


def _active_tasks(store: Store) -> list[Task]:
    with store.session() as session:
        return list(session.exec(select(Task).where(Task.deleted_at.is_(None))).all())  # pyrefly: ignore


def _check_definition(store: Store, definition: dict, task_id: Optional[UUID] = None) -> None:
    active = _active_tasks(store)
    errors = validate_task_definition(definition, [t.id for t in active])

    if task_id is not None and task_id in definition["dependency_ids"]:
        errors.append("Task cannot depend on itself")

    name = definition.get("name")
    if any(t.name == name and t.id != task_id for t in active):
        errors.append(f"Task name '{name}' already in use")

    if not errors and task_id is not None:
        graph = {t.id: t.dependency_uuids() for t in active}
        graph[task_id] = list(definition["dependency_ids"])
        if has_cycle(graph):
            errors.append("Task dependencies contain a cycle")

    if errors:
        raise TaskValidationError("; ".join(errors))


def create_task(
    name: str,
    schedule: str,
    type: str,
    payload: Optional[dict] = None,
    *,
    dependency_ids: Optional[Iterable[TaskRef]] = None,
    description: Optional[str] = None,
    enabled: bool = True,
    timeout_seconds: Optional[int] = None,
    max_retries: Optional[int] = None,
) -> Task:
    """
    Register a recurring task.

    Args:
        name: Unique name among non-deleted tasks
        schedule: 6-field cron expression, seconds first
        type: Executor type (e.g. "command", "http")
        payload: Executor-specific configuration
        dependency_ids: Tasks that must succeed first
        description: Free text
        enabled: Whether the scheduler picks it up
        timeout_seconds: Override the configured default timeout
        max_retries: Override the configured default retries

    Returns:
        The stored task

    Example:
        task = create_task("nightly-report", "0 0 2 * * *", "command",
                           {"command": "make report"}, max_retries=2)
    """
    store = get_store()
    deps = [_as_uuid(d) for d in dependency_ids or []]
    definition = {
        "name": name,
        "schedule": schedule,
        "type": type,
        "payload": payload or {},
        "dependency_ids": deps,
        "timeout_seconds": timeout_seconds,
        "max_retries": max_retries,
    }
    _check_definition(store, definition)

    task = Task(
        name=name,
        description=description,
        schedule=schedule,
        type=type,
        payload=_normalize_payload(type, payload),
        dependency_ids=[str(d) for d in deps],
        enabled=enabled,
        enabled_at=utcnow() if enabled else None,
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
    )
    with store.session() as session:
        session.add(task)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise TaskValidationError(f"Task name '{name}' already in use") from e
        session.refresh(task)

    logger.info(f"Created task {task.name} ({task.id}) with schedule '{task.schedule}'")
    return task


def get_task(task_id: TaskRef) -> Optional[Task]:
    """Get task by ID (deleted tasks included)."""
    return get_store().get_task(_as_uuid(task_id))


def get_task_by_name(name: str) -> Optional[Task]:
    """Get the non-deleted task with this name."""
    with get_store().session() as session:
        statement = select(Task).where(Task.name == name).where(Task.deleted_at.is_(None))  # pyrefly: ignore
        return session.exec(statement).first()


def _require_task(task_id: TaskRef) -> Task:
    task = get_task(task_id)
    if task is None:
        raise TaskNotFound(f"Task '{task_id}' not found")
    return task


def list_tasks(
    name: Optional[str] = None,
    enabled: Optional[bool] = None,
    type: Optional[str] = None,
    include_deleted: bool = False,
    limit: int = 100,
) -> list[Task]:
    """
    List tasks with optional filtering.

    Args:
        name: Filter by task name
        enabled: Filter by enabled flag
        type: Filter by executor type
        include_deleted: Include soft-deleted tasks
        limit: Max results

    Returns:
        List of tasks
    """
    with get_store().session() as session:
        statement = select(Task)

        if name:
            statement = statement.where(Task.name == name)
        if enabled is not None:
            statement = statement.where(Task.enabled == enabled)
        if type:
            statement = statement.where(Task.type == type)
        if not include_deleted:
            statement = statement.where(Task.deleted_at.is_(None))  # pyrefly: ignore

        statement = statement.order_by(Task.created_at).limit(limit)
        return list(session.exec(statement).all())


def update_task(task_id: TaskRef, **changes: Any) -> Task:
    """
    Change fields of a task.

    Accepts the same fields as create_task. The merged definition is
    validated again, including a dependency cycle check.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise TaskValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    store = get_store()
    task = _require_task(task_id)
    if task.deleted_at is not None:
        raise TaskValidationError(f"Task '{task.name}' is deleted")

    if "dependency_ids" in changes:
        deps = [_as_uuid(d) for d in changes["dependency_ids"] or []]
    else:
        deps = task.dependency_uuids()

    definition = {
        "name": changes.get("name", task.name),
        "schedule": changes.get("schedule", task.schedule),
        "type": changes.get("type", task.type),
        "payload": changes.get("payload", task.payload),
        "dependency_ids": deps,
        "timeout_seconds": changes.get("timeout_seconds", task.timeout_seconds),
        "max_retries": changes.get("max_retries", task.max_retries),
    }
    _check_definition(store, definition, task_id=task.id)

    with store.session() as session:
        db_task = session.get(Task, task.id)
        if db_task is None:
            raise TaskNotFound(f"Task '{task_id}' not found")
        for key, value in changes.items():
            if key == "dependency_ids":
                value = [str(d) for d in deps]
            elif key == "payload":
                value = _normalize_payload(definition["type"], value)
            setattr(db_task, key, value)
        if changes.get("enabled") and not task.enabled:
            db_task.enabled_at = utcnow()
        db_task.updated_at = utcnow()
        session.add(db_task)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise TaskValidationError(f"Task name '{definition['name']}' already in use") from e
        session.refresh(db_task)
        return db_task


def enable_task(task_id: TaskRef) -> Task:
    return update_task(task_id, enabled=True)


def disable_task(task_id: TaskRef) -> Task:
    return update_task(task_id, enabled=False)


def delete_task(task_id: TaskRef, force: bool = False) -> Task:
    """
    Soft-delete a task. Its instances and logs are kept.

    Refuses while other active tasks depend on it unless force is set.
    """
    store = get_store()
    task = _require_task(task_id)
    if task.deleted_at is not None:
        return task

    dependents = [t.name for t in _active_tasks(store) if task.id in t.dependency_uuids()]
    if dependents and not force:
        raise TaskValidationError(
            f"Task '{task.name}' is a dependency of: {', '.join(sorted(dependents))}"
        )

    with store.session() as session:
        db_task = session.get(Task, task.id)
        now = utcnow()
        db_task.deleted_at = now
        db_task.updated_at = now
        session.add(db_task)
        session.commit()
        session.refresh(db_task)

    logger.info(f"Deleted task {task.name} ({task.id})")
    return db_task


def trigger_task(task_id: TaskRef, when: Optional[datetime] = None) -> TaskInstance:
    """Create a manual instance of a task, due immediately."""
    store = get_store()
    task = _require_task(task_id)
    if not task.is_schedulable:
        raise TaskValidationError(f"Task '{task.name}' is disabled or deleted")

    claims = InstanceClaimProtocol.from_config(store, _config_or_raise())
    instance, created = claims.create_instance(
        task, when or utcnow(), triggered_by=TriggeredBy.MANUAL
    )
    if created:
        logger.info(f"Triggered task {task.name} manually (instance {instance.id})")
    return instance


def get_instance(instance_id: TaskRef) -> Optional[TaskInstance]:
    return get_store().get_instance(_as_uuid(instance_id))


def cancel_instance(instance_id: TaskRef) -> bool:
    """
    Cancel a pending or claimed instance.

    Returns:
        False if the instance already started or finished
    """
    store = get_store()
    instance = store.get_instance(_as_uuid(instance_id))
    if instance is None:
        raise InstanceNotFound(f"Instance '{instance_id}' not found")

    claims = InstanceClaimProtocol.from_config(store, _config_or_raise())
    cancelled = claims.cancel(instance.id)
    if cancelled:
        logger.info(f"Cancelled instance {instance.id}")
    return cancelled


def list_instances(
    task_id: Optional[TaskRef] = None,
    status: Optional[str] = None,
    executor_id: Optional[str] = None,
    scheduled_after: Optional[datetime] = None,
    scheduled_before: Optional[datetime] = None,
    limit: int = 100,
) -> list[TaskInstance]:
    """List instances, newest first."""
    return get_store().instances(
        task_id=_as_uuid(task_id) if task_id is not None else None,
        status=status,
        executor_id=executor_id,
        scheduled_after=scheduled_after,
        scheduled_before=scheduled_before,
        limit=limit,
    )


def list_logs(
    task_id: Optional[TaskRef] = None,
    instance_id: Optional[TaskRef] = None,
    status: Optional[str] = None,
    triggered_by: Optional[str] = None,
    end_after: Optional[datetime] = None,
    end_before: Optional[datetime] = None,
    limit: int = 100,
) -> list[ExecutionLog]:
    """List execution logs, oldest first."""
    return get_store().logs(
        task_id=_as_uuid(task_id) if task_id is not None else None,
        instance_id=_as_uuid(instance_id) if instance_id is not None else None,
        status=status,
        triggered_by=triggered_by,
        end_after=end_after,
        end_before=end_before,
        limit=limit,
    )


def is_pending(instance: TaskInstance) -> bool:
    """Check if instance is waiting to be claimed."""
    return instance.status == InstanceStatus.PENDING.value


def is_running(instance: TaskInstance) -> bool:
    """Check if an executor currently owns the instance."""
    return instance.status in (InstanceStatus.CLAIMED.value, InstanceStatus.RUNNING.value)


def is_succeeded(instance: TaskInstance) -> bool:
    return instance.status == InstanceStatus.SUCCESS.value


def is_failed(instance: TaskInstance) -> bool:
    """Check if instance failed permanently."""
    return instance.status == InstanceStatus.FAILED.value


def is_terminal(instance: TaskInstance) -> bool:
    """Check if instance is in a terminal state (cannot change anymore)."""
    return instance.status in TERMINAL_STATUSES
