"""Instance claim protocol.

Two guarantees live here:

* one instance per (task, scheduled_time), however many schedulers race to
  create it, via insert-if-absent on the unique key;
* one owner per attempt, via a conditional UPDATE from ``pending`` to
  ``claimed``. Every later transition is keyed on the owner and the claim
  timestamp, so an executor whose lease was taken over can't overwrite the
  new owner's state.

Lifecycle::

    pending -> claimed -> running -> success
                                  -> pending   (failed, retries left)
                                  -> failed    (retries exhausted)
    pending -> skipped | cancelled
    claimed -> cancelled
    claimed/running with expired lease -> pending | failed
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from .config import Config
from .db.models import (
    CANCELLABLE_STATUSES,
    IN_FLIGHT_STATUSES,
    InstanceStatus,
    Task,
    TaskInstance,
    TriggeredBy,
    utcnow,
)
from .db.store import Store
from .executors.base import ExecutionResult
from .retry import Decision, Done, GiveUp, Retry

logger = logging.getLogger(__name__)


class InstanceClaimProtocol:
    """
    Creates instances and moves them through their lifecycle.

    Example:
        claims = InstanceClaimProtocol.from_config(store, config)
        instance, created = claims.create_instance(task, scheduled_time)
        owned = claims.claim(instance, "worker-1", now, timeout_seconds=30)
        if owned is None:
            ...  # another executor won
    """

    def __init__(self, store: Store, lease_grace_seconds: int, default_timeout_seconds: int):
        self.store = store
        self.lease_grace_seconds = lease_grace_seconds
        self.default_timeout_seconds = default_timeout_seconds

    @classmethod
    def from_config(cls, store: Store, config: Config) -> "InstanceClaimProtocol":
        return cls(
            store,
            lease_grace_seconds=config.lease_grace_seconds,
            default_timeout_seconds=config.default_timeout_seconds,
        )

    def timeout_for(self, task: Optional[Task]) -> int:
        if task is not None and task.timeout_seconds:
            return task.timeout_seconds
        return self.default_timeout_seconds

    def create_instance(
        self,
        task: Task,
        scheduled_time: datetime,
        status: InstanceStatus = InstanceStatus.PENDING,
        triggered_by: TriggeredBy = TriggeredBy.SCHEDULER,
    ) -> tuple[TaskInstance, bool]:
        """
        Create the instance for an occurrence, or return the existing one.

        Returns:
            (instance, created)
        """
        instance = TaskInstance(
            task_id=task.id,
            scheduled_time=scheduled_time,
            status=status.value,
            triggered_by=triggered_by.value,
            next_attempt_at=scheduled_time,
        )
        if status == InstanceStatus.SKIPPED:
            instance.end_time = utcnow()
        return self.store.insert_instance_if_absent(instance)

    def claim(
        self,
        instance: TaskInstance,
        executor_id: str,
        now: datetime,
        timeout_seconds: int,
    ) -> Optional[TaskInstance]:
        """
        Try to take ownership of a pending instance.

        Returns:
            The claimed instance, or None if another executor got it first,
            it was cancelled, or it isn't visible yet.
        """
        lease_expires_at = now + timedelta(seconds=timeout_seconds + self.lease_grace_seconds)
        won = self.store.compare_and_set(
            instance.id,
            InstanceStatus.PENDING,
            {
                "status": InstanceStatus.CLAIMED,
                "executor_id": executor_id,
                "claimed_at": now,
                "lease_expires_at": lease_expires_at,
            },
            where=[TaskInstance.next_attempt_at <= now],
        )
        if not won:
            logger.debug(f"Claim conflict on instance {instance.id}, skipping")
            return None
        return self.store.get_instance(instance.id)

    def start(self, instance: TaskInstance, now: datetime) -> bool:
        """claimed -> running. False if the claim was cancelled or taken over."""
        return self.store.compare_and_set(
            instance.id,
            InstanceStatus.CLAIMED,
            {"status": InstanceStatus.RUNNING, "start_time": now, "end_time": None},
            executor_id=instance.executor_id,
            claimed_at=instance.claimed_at,
        )

    def finish(
        self,
        instance: TaskInstance,
        decision: Decision,
        result: ExecutionResult,
        now: datetime,
    ) -> bool:
        """Apply the retry decision to a running instance this executor owns."""
        return self.store.compare_and_set(
            instance.id,
            InstanceStatus.RUNNING,
            self._decision_values(instance, decision, result, now),
            executor_id=instance.executor_id,
            claimed_at=instance.claimed_at,
            retry_count=instance.retry_count,
        )

    def expire(
        self,
        instance: TaskInstance,
        decision: Decision,
        result: ExecutionResult,
        now: datetime,
    ) -> bool:
        """
        Take back an instance whose owner let its lease run out.

        Counts as one failed attempt. Only one caller wins for a given lease.
        """
        return self.store.compare_and_set(
            instance.id,
            IN_FLIGHT_STATUSES,
            self._decision_values(instance, decision, result, now),
            where=[TaskInstance.lease_expires_at <= now],
            executor_id=instance.executor_id,
            claimed_at=instance.claimed_at,
            retry_count=instance.retry_count,
        )

    def cancel(self, instance_id: UUID, now: Optional[datetime] = None) -> bool:
        """pending/claimed -> cancelled. Running attempts are not interrupted."""
        return self.store.compare_and_set(
            instance_id,
            CANCELLABLE_STATUSES,
            {
                "status": InstanceStatus.CANCELLED,
                "end_time": now or utcnow(),
                "executor_id": None,
                "lease_expires_at": None,
            },
        )

    def _decision_values(
        self,
        instance: TaskInstance,
        decision: Decision,
        result: ExecutionResult,
        now: datetime,
    ) -> dict[str, Any]:
        values: dict[str, Any] = {
            "result": result.to_dict(),
            "end_time": now,
            "executor_id": None,
            "lease_expires_at": None,
        }
        if isinstance(decision, Done):
            values["status"] = InstanceStatus.SUCCESS
        elif isinstance(decision, Retry):
            values["status"] = InstanceStatus.PENDING
            values["retry_count"] = instance.retry_count + 1
            values["next_attempt_at"] = decision.not_before
            values["claimed_at"] = None
        elif isinstance(decision, GiveUp):
            values["status"] = InstanceStatus.FAILED
        else:
            raise TypeError(f"Unknown retry decision: {decision!r}")
        return values
