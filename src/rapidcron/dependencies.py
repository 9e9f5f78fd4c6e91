"""Dependency-aware readiness gating."""

import logging
from datetime import datetime
from uuid import UUID

from .db.models import InstanceStatus, Task
from .db.store import Store

logger = logging.getLogger(__name__)


class DependencyResolver:
    """
    Decides whether a task's occurrence may run.

    Each dependency must have a successful instance at or before the
    occurrence's scheduled time, judged by its most recent such instance.
    Readiness is polled: a task that isn't ready keeps its pending instance
    and is asked again on the next poll. Dependency graphs are assumed to be
    acyclic; cycles are rejected when tasks are defined.
    """

    def __init__(self, store: Store):
        self.store = store

    def unmet_dependencies(self, task: Task, scheduled_time: datetime) -> list[UUID]:
        """Dependency ids blocking the occurrence, in definition order."""
        unmet = []
        for dep_id in task.dependency_uuids():
            latest = self.store.latest_instance(dep_id, at_or_before=scheduled_time)
            if latest is None or latest.status != InstanceStatus.SUCCESS.value:
                unmet.append(dep_id)
        return unmet

    def is_ready(self, task: Task, scheduled_time: datetime) -> bool:
        if not task.dependency_ids:
            return True
        unmet = self.unmet_dependencies(task, scheduled_time)
        if unmet:
            logger.debug(
                f"Task {task.name} at {scheduled_time} waiting on dependencies: "
                f"{', '.join(str(d) for d in unmet)}"
            )
            return False
        return True
