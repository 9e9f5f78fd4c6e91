"""Worker: claims ready instances and executes them."""

import asyncio
import logging
import random
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .claims import InstanceClaimProtocol
from .config import Config
from .db import ExecutionLog, Store, Task, TaskInstance, init_database, utcnow
from .dependencies import DependencyResolver
from .exceptions import ClaimConflict, DependencyNotReady, LeaseExpired
from .executors import Dispatcher, ExecutionResult
from .executors.base import ERROR_CONFIGURATION, ERROR_LEASE_EXPIRED, ERROR_TIMEOUT
from .logwriter import ExecutionLogWriter, build_log
from .retry import Done, GiveUp, Retry, RetryController

logger = logging.getLogger(__name__)


class Worker:
    """
    Pulls pending instances, claims them and runs them on a bounded pool.

    Any number of workers may share a database; the claim protocol makes
    sure each attempt has exactly one owner.

    Example:
        config = Config(database_url="postgresql+psycopg://...")
        worker = Worker(config)
        await worker.run()
    """

    def __init__(
        self,
        config: Config,
        store: Optional[Store] = None,
        dispatcher: Optional[Dispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize worker.

        Args:
            config: RapidCron configuration
            store: Shared store (created from config.database_url if omitted)
            dispatcher: Executor dispatcher (default registry if omitted)
            clock: Returns the current naive UTC time
            rng: Random source for backoff jitter
        """
        self.config = config
        self.worker_id = config.worker_id or str(uuid.uuid4())
        self.store = store or Store(init_database(config.database_url))
        self.clock = clock

        self.claims = InstanceClaimProtocol.from_config(self.store, config)
        self.resolver = DependencyResolver(self.store)
        self.retry = RetryController.from_config(config, rng)
        self.dispatcher = dispatcher or Dispatcher(output_summary_limit=config.output_summary_limit)
        self.log_writer = ExecutionLogWriter(self.store, max_attempts=config.log_write_retries)

        self._running_tasks: set[asyncio.Task] = set()
        self._shutdown: bool = False

    @property
    def active_count(self) -> int:
        return len(self._running_tasks)

    async def run(self) -> None:
        """Run the worker (blocks until shutdown)."""
        logger.info(f"Starting Worker {self.worker_id} with concurrency={self.config.concurrency}")

        try:
            while not self._shutdown:
                try:
                    await self.poll()
                except SQLAlchemyError as e:
                    logger.error(f"Worker poll failed, retrying next cycle: {e}")

                await asyncio.sleep(self.config.poll_interval_seconds)
        finally:
            await self.shutdown()

    async def poll(self, now: Optional[datetime] = None) -> list[asyncio.Task]:
        """
        Recover expired leases, then claim and start as many ready
        instances as there is free capacity for.

        Pending rows that can't be claimed (dependencies not met, or taken
        by another worker) are paged past, so a backlog of blocked
        instances never hides ready ones behind it.

        Returns:
            The asyncio tasks started for newly claimed instances
        """
        now = now or self.clock()
        await self.recover_expired_leases(now)

        started: list[asyncio.Task] = []
        capacity = self.config.concurrency - len(self._running_tasks)
        batch_size = self.config.claim_batch_size
        # Rows left pending by this poll; claimed rows drop out of the query
        passed = 0

        while len(started) < capacity:
            batch = self.store.claimable_instances(now, batch_size, offset=passed)
            for candidate in batch:
                if len(started) >= capacity:
                    break

                claimed = self.try_claim(candidate, now)
                if claimed is None:
                    passed += 1
                    continue

                instance, task = claimed
                async_task = asyncio.create_task(self._execute(instance, task))
                self._running_tasks.add(async_task)
                async_task.add_done_callback(self._running_tasks.discard)
                started.append(async_task)

            if len(batch) < batch_size:
                break

        return started

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Poll once and wait for the started attempts to finish."""
        started = await self.poll(now)
        if started:
            await asyncio.gather(*started)
        return len(started)

    def try_claim(self, instance: TaskInstance, now: datetime) -> Optional[tuple[TaskInstance, Optional[Task]]]:
        """Claim an instance if its dependencies are met and nobody beat us to it."""
        try:
            return self._claim(instance, now)
        except (DependencyNotReady, ClaimConflict) as e:
            # Not errors: the instance stays pending and is polled again.
            logger.debug(f"Skipping instance {instance.id}: {e}")
            return None

    def _claim(self, instance: TaskInstance, now: datetime) -> tuple[TaskInstance, Optional[Task]]:
        task = self.store.get_task(instance.task_id)
        if task is not None and not self.resolver.is_ready(task, instance.scheduled_time):
            raise DependencyNotReady(f"{task.name} waiting on dependencies")

        claimed = self.claims.claim(instance, self.worker_id, now, self.claims.timeout_for(task))
        if claimed is None:
            raise ClaimConflict(f"instance {instance.id} claimed by another executor")

        logger.debug(f"Worker {self.worker_id} claimed instance {claimed.id}")
        return claimed, task

    async def recover_expired_leases(self, now: datetime) -> int:
        """
        Fail over instances whose executor stopped before finishing.

        Each expired lease counts as one failed attempt and gets its own log.
        """
        recovered = 0
        for instance in self.store.expired_leases(now, self.config.claim_batch_size):
            task = self.store.get_task(instance.task_id)
            error = LeaseExpired(
                f"Lease held by executor {instance.executor_id} expired at {instance.lease_expires_at}"
            )
            result = ExecutionResult.failure(ERROR_LEASE_EXPIRED, f"{error.__class__.__name__}: {error}")
            decision = self.retry.next_action(instance, task, result, now)
            if not self.claims.expire(instance, decision, result, now):
                continue

            recovered += 1
            logger.warning(
                f"Instance {instance.id} abandoned by executor {instance.executor_id}, "
                f"recovered as failed attempt {instance.retry_count + 1}"
            )
            await self._append_log(
                build_log(instance, task, result, instance.start_time or instance.claimed_at, now)
            )
        return recovered

    async def _append_log(self, log: ExecutionLog) -> None:
        """Write an attempt's log off the event loop. Failures don't stop the caller."""
        try:
            await asyncio.to_thread(self.log_writer.append, log)
        except SQLAlchemyError as e:
            logger.error(f"Execution log for instance {log.instance_id} was lost: {e}")

    async def _execute(self, instance: TaskInstance, task: Optional[Task]) -> None:
        """Execute a single claimed instance."""
        try:
            start_time = self.clock()
            if not self.claims.start(instance, start_time):
                logger.info(f"Instance {instance.id} was cancelled or taken over before it started")
                return

            if task is None:
                result = ExecutionResult.failure(ERROR_CONFIGURATION, f"Task {instance.task_id} not found")
            else:
                logger.info(f"Executing instance {instance.id} ({task.name}, attempt {instance.retry_count + 1})")
                result = await self.dispatcher.execute(
                    task.type, task.payload, self.claims.timeout_for(task)
                )

            await self._record(instance, task, result, start_time, self.clock())

        except SQLAlchemyError as e:
            # The lease expires and another worker accounts for the attempt.
            logger.error(f"Storage error while executing instance {instance.id}: {e}", exc_info=True)

    async def _record(
        self,
        instance: TaskInstance,
        task: Optional[Task],
        result: ExecutionResult,
        start_time: datetime,
        end_time: datetime,
    ) -> None:
        decision = self.retry.next_action(instance, task, result, end_time)
        name = task.name if task is not None else str(instance.task_id)

        # The audit row goes first; the update below runs even if it was lost.
        await self._append_log(build_log(instance, task, result, start_time, end_time))

        if not self.claims.finish(instance, decision, result, end_time):
            logger.warning(
                f"Instance {instance.id} ({name}) changed owner while running; result not applied"
            )
            return

        if isinstance(decision, Done):
            logger.info(f"Instance {instance.id} ({name}) completed successfully")
        elif isinstance(decision, Retry):
            label = "timed out" if result.error_kind == ERROR_TIMEOUT else "failed"
            logger.warning(
                f"Instance {instance.id} ({name}) {label} "
                f"(attempt {instance.retry_count + 1}/{self.retry.max_retries_for(task) + 1}). "
                f"Retrying in {decision.delay_seconds:.1f}s. Error: {result.error_message}"
            )
        elif isinstance(decision, GiveUp):
            logger.error(
                f"Instance {instance.id} ({name}) failed permanently: {decision.reason}. "
                f"Error: {result.error_message}"
            )

    def stop(self) -> None:
        """Ask run() to return after the current poll."""
        self._shutdown = True

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        self._shutdown = True
        logger.info("Waiting for running instances to complete...")

        if self._running_tasks:
            await asyncio.gather(*self._running_tasks, return_exceptions=True)

        logger.info("Worker shutdown complete")
