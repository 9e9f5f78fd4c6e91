"""Retry and backoff decisions for finished attempts."""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from .config import Config
from .db.models import Task, TaskInstance
from .executors.base import ExecutionResult


@dataclass(frozen=True)
class Done:
    """The attempt succeeded; the instance is terminal."""


@dataclass(frozen=True)
class Retry:
    """Run the instance again, not before ``not_before``."""

    delay_seconds: float
    not_before: datetime


@dataclass(frozen=True)
class GiveUp:
    """The attempt failed and no retries remain (or it can't succeed)."""

    reason: str


Decision = Union[Done, Retry, GiveUp]


class RetryController:
    """
    Computes what happens to an instance after an attempt.

    The controller only decides; the claim protocol applies the decision and
    respects the visibility time of a retry.

    Example:
        controller = RetryController.from_config(config)
        decision = controller.next_action(instance, task, result, now)
    """

    def __init__(
        self,
        default_max_retries: int,
        base_delay_seconds: float,
        backoff_multiplier: float,
        max_delay_seconds: float,
        jitter_ratio: float,
        rng: Optional[random.Random] = None,
    ):
        self.default_max_retries = default_max_retries
        self.base_delay_seconds = base_delay_seconds
        self.backoff_multiplier = backoff_multiplier
        self.max_delay_seconds = max_delay_seconds
        self.jitter_ratio = jitter_ratio
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: Config, rng: Optional[random.Random] = None) -> "RetryController":
        return cls(
            default_max_retries=config.max_retries,
            base_delay_seconds=config.base_retry_delay_seconds,
            backoff_multiplier=config.retry_backoff_multiplier,
            max_delay_seconds=config.max_retry_delay_seconds,
            jitter_ratio=config.retry_jitter_ratio,
            rng=rng,
        )

    def max_retries_for(self, task: Optional[Task]) -> int:
        if task is not None and task.max_retries is not None:
            return task.max_retries
        return self.default_max_retries

    def compute_delay(self, retry_count: int, jitter: Optional[float] = None) -> float:
        """
        Backoff delay before the attempt following ``retry_count`` failures.

        base * multiplier ** retry_count, capped at max_delay, then scaled
        by (1 + jitter_ratio * jitter). For a fixed jitter in [0, 1) the
        delay never decreases as retry_count grows.
        """
        if jitter is None:
            jitter = self._rng.random()
        delay = min(
            self.base_delay_seconds * (self.backoff_multiplier ** retry_count),
            self.max_delay_seconds,
        )
        return delay * (1 + self.jitter_ratio * jitter)

    def next_action(
        self,
        instance: TaskInstance,
        task: Optional[Task],
        result: ExecutionResult,
        now: datetime,
    ) -> Decision:
        if result.succeeded:
            return Done()

        if not result.retryable:
            return GiveUp(reason=result.error_message or "configuration error")

        max_retries = self.max_retries_for(task)
        if instance.retry_count >= max_retries:
            return GiveUp(reason=f"retries exhausted ({instance.retry_count}/{max_retries})")

        delay = self.compute_delay(instance.retry_count)
        return Retry(delay_seconds=delay, not_before=now + timedelta(seconds=delay))
