"""Append-only execution log writer."""

import logging
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import OperationalError

from .db.models import ExecutionLog, Task, TaskInstance, TriggeredBy
from .db.store import Store
from .executors.base import ExecutionResult

logger = logging.getLogger(__name__)


def build_log(
    instance: TaskInstance,
    task: Optional[Task],
    result: ExecutionResult,
    start_time: Optional[datetime],
    end_time: datetime,
) -> ExecutionLog:
    """Build the log row for one attempt of an instance.

    The task name is copied so the row stays readable after the task is
    renamed or deleted. The first attempt is attributed to whatever created
    the instance, later ones to retry.
    """
    if instance.retry_count > 0:
        triggered_by = TriggeredBy.RETRY.value
    else:
        triggered_by = instance.triggered_by

    return ExecutionLog(
        task_id=instance.task_id,
        task_name=task.name if task is not None else str(instance.task_id),
        instance_id=instance.id,
        attempt=instance.retry_count,
        scheduled_time=instance.scheduled_time,
        start_time=start_time,
        end_time=end_time,
        duration_ms=result.duration_ms,
        status=result.status,
        output_summary=result.output_summary,
        error_message=result.error_message,
        triggered_by=triggered_by,
    )


class ExecutionLogWriter:
    """
    Writes execution logs. There is deliberately no update or delete.

    Transient storage errors are retried, so a write that actually landed
    before the error was reported may be duplicated. Logs are an audit
    trail and nothing reads them to make scheduling decisions.
    """

    def __init__(self, store: Store, max_attempts: int = 3, retry_delay_seconds: float = 0.1):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds

    def append(self, log: ExecutionLog) -> ExecutionLog:
        attempt = 1
        while True:
            try:
                return self.store.append_log(log)
            except OperationalError as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        f"Failed to write execution log for instance {log.instance_id} "
                        f"after {attempt} attempts: {e}"
                    )
                    raise
                logger.warning(
                    f"Execution log write for instance {log.instance_id} failed "
                    f"(attempt {attempt}/{self.max_attempts}), retrying: {e}"
                )
                time.sleep(self.retry_delay_seconds * attempt)
                attempt += 1
