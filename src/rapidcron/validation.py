"""Validation of task definitions before they are stored."""

from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from .exceptions import ConfigurationError
from .executors import Dispatcher
from .schedule import validate_schedule


def validate_task_definition(
    definition: Mapping[str, Any],
    known_task_ids: Iterable[UUID],
    dispatcher: Optional[Dispatcher] = None,
) -> list[str]:
    """Validate a task definition. Returns a list of errors (empty = valid)."""
    errors = []
    dispatcher = dispatcher or Dispatcher()

    name = definition.get("name")
    if not name or not str(name).strip():
        errors.append("Task must have a non-empty 'name'")

    schedule = definition.get("schedule")
    if not schedule:
        errors.append("Task must have a 'schedule'")
    else:
        try:
            validate_schedule(schedule)
        except ConfigurationError as e:
            errors.append(str(e))

    task_type = definition.get("type")
    if not task_type:
        errors.append("Task must have a 'type'")
    else:
        try:
            dispatcher.validate(task_type, definition.get("payload") or {})
        except ConfigurationError as e:
            errors.append(str(e))

    timeout = definition.get("timeout_seconds")
    if timeout is not None and timeout <= 0:
        errors.append("'timeout_seconds' must be positive")

    max_retries = definition.get("max_retries")
    if max_retries is not None and max_retries < 0:
        errors.append("'max_retries' must not be negative")

    known = set(known_task_ids)
    for dep in definition.get("dependency_ids") or []:
        if dep not in known:
            errors.append(f"Unknown dependency: '{dep}'")

    return errors


def has_cycle(graph: Mapping[UUID, Iterable[UUID]]) -> bool:
    """Detect cycles in a task -> dependencies graph using DFS with three-color marking."""
    adj = {node: list(deps) for node, deps in graph.items()}
    WHITE, GRAY, BLACK = 0, 1, 2
    color = {node: WHITE for node in adj}

    def dfs(node: UUID) -> bool:
        color[node] = GRAY
        for neighbor in adj.get(node, []):
            state = color.get(neighbor, BLACK)
            if state == GRAY:
                return True
            if state == WHITE and dfs(neighbor):
                return True
        color[node] = BLACK
        return False

    for node in adj:
        if color[node] == WHITE:
            if dfs(node):
                return True
    return False
