"""Scheduler loop: turns due cron occurrences into task instances."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .claims import InstanceClaimProtocol
from .config import Config
from .db import InstanceStatus, Store, Task, TriggeredBy, init_database, utcnow
from .exceptions import ConfigurationError
from .schedule import apply_backfill_cap, due_occurrences

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What one scheduler tick did."""

    tasks: int = 0
    created: int = 0
    skipped: int = 0
    existing: int = 0
    invalid: int = 0


class Scheduler:
    """
    Creates pending instances for every due occurrence of every enabled task.

    Safe to run on several replicas at once: instance creation is
    idempotent, and each task's window is derived from the instances
    already stored, not from in-process state.

    Example:
        scheduler = Scheduler(Config(database_url="sqlite:///rapidcron.db"))
        await scheduler.run()
    """

    def __init__(
        self,
        config: Config,
        store: Optional[Store] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.store = store or Store(init_database(config.database_url))
        self.clock = clock
        self.claims = InstanceClaimProtocol.from_config(self.store, config)
        self._shutdown = False

    async def run(self) -> None:
        """Tick until stopped. Storage errors abort a tick, not the loop."""
        logger.info(
            f"Scheduler started (interval: {self.config.tick_interval_seconds}s, "
            f"max backfill: {self.config.max_backfill})"
        )
        while not self._shutdown:
            try:
                self.tick()
            except SQLAlchemyError as e:
                logger.error(f"Scheduler tick error, retrying next cycle: {e}")
            await asyncio.sleep(self.config.tick_interval_seconds)
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._shutdown = True

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        now = now or self.clock()
        report = TickReport()
        for task in self.store.schedulable_tasks():
            report.tasks += 1
            try:
                self.schedule_task(task, now, report)
            except ConfigurationError as e:
                report.invalid += 1
                logger.error(f"Task {task.name} ({task.id}) has an invalid schedule: {e}")
        if report.created or report.skipped:
            logger.info(
                f"Tick at {now}: created {report.created} instance(s), skipped {report.skipped}"
            )
        return report

    def window_start(self, task: Task) -> datetime:
        """
        First instant not yet covered for a task.

        One second past its latest scheduler-created instance, or its
        creation time if it has none, but never before the task was last
        enabled. Manual triggers don't move the window.
        """
        latest = self.store.latest_instance(task.id, triggered_by=TriggeredBy.SCHEDULER.value)
        if latest is None:
            start = task.created_at
        else:
            start = latest.scheduled_time + timedelta(seconds=1)
        if task.enabled_at is not None and task.enabled_at > start:
            return task.enabled_at
        return start

    def schedule_task(self, task: Task, now: datetime, report: Optional[TickReport] = None) -> TickReport:
        """Create instances for a task's occurrences due at or before now."""
        report = report or TickReport()
        # Occurrences exactly at now are due.
        due = due_occurrences(task, self.window_start(task), now + timedelta(microseconds=1))
        if not due:
            return report

        to_run, to_skip = apply_backfill_cap(due, self.config.max_backfill)
        if to_skip:
            logger.warning(
                f"Task {task.name} missed {len(due)} occurrences; "
                f"skipping {len(to_skip)} beyond the backfill cap of {self.config.max_backfill}"
            )

        for scheduled_time in to_skip:
            _, created = self.claims.create_instance(task, scheduled_time, status=InstanceStatus.SKIPPED)
            if created:
                report.skipped += 1
            else:
                report.existing += 1

        for scheduled_time in to_run:
            _, created = self.claims.create_instance(task, scheduled_time)
            if created:
                report.created += 1
                logger.debug(f"Created instance of {task.name} for {scheduled_time}")
            else:
                report.existing += 1

        return report
