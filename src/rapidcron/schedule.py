"""Schedule evaluation: cron occurrences due in a time window.

Schedules use six fields with seconds first, e.g. ``"0 */5 * * * *"`` fires
every five minutes on the zero second. croniter puts the seconds field last,
so expressions are rotated before being handed to it.
"""

from datetime import datetime, timedelta
from typing import Iterator, Sequence

from croniter import croniter

from .db.models import Task
from .exceptions import ConfigurationError

CRON_FIELDS = 6


def _to_croniter_expression(expression: str) -> str:
    parts = expression.split()
    if len(parts) != CRON_FIELDS:
        raise ConfigurationError(
            f"Cron expression '{expression}' must have {CRON_FIELDS} fields "
            "(second minute hour day month weekday)"
        )
    return " ".join(parts[1:] + parts[:1])


def _iter_cron(expression: str, after: datetime) -> croniter:
    try:
        return croniter(_to_croniter_expression(expression), after)
    except (ValueError, KeyError) as e:
        raise ConfigurationError(f"Invalid cron expression '{expression}': {e}") from e


def validate_schedule(expression: str) -> None:
    """Raise ConfigurationError unless the expression is a valid 6-field cron."""
    _iter_cron(expression, datetime(2000, 1, 1))


def next_occurrence(expression: str, after: datetime) -> datetime:
    """First occurrence strictly after the given time."""
    return _iter_cron(expression, after).get_next(datetime)


def iter_occurrences(expression: str, window_start: datetime, window_end: datetime) -> Iterator[datetime]:
    """Yield every cron match in [window_start, window_end), in order."""
    if window_end <= window_start:
        return
    # croniter only yields times strictly after its base
    it = _iter_cron(expression, window_start - timedelta(seconds=1))
    while True:
        occurrence = it.get_next(datetime)
        if occurrence >= window_end:
            return
        if occurrence >= window_start:
            yield occurrence


def due_occurrences(task: Task, window_start: datetime, window_end: datetime) -> list[datetime]:
    """
    Scheduled times of a task that fall in [window_start, window_end).

    Disabled and soft-deleted tasks have none. The result is deterministic:
    the same window always gives the same times, so overlapping windows are
    deduplicated by the storage-level uniqueness of (task_id, scheduled_time).

    Raises:
        ConfigurationError: if the task's schedule is malformed
    """
    if not task.is_schedulable:
        return []
    return list(iter_occurrences(task.schedule, window_start, window_end))


def apply_backfill_cap(
    occurrences: Sequence[datetime], max_backfill: int
) -> tuple[list[datetime], list[datetime]]:
    """
    Split due occurrences into those to run and those to skip.

    The most recent ``max_backfill`` occurrences run; anything older is
    skipped so a long outage doesn't turn into a burst of executions.

    Returns:
        (to_run, to_skip), both in chronological order
    """
    if max_backfill < 1:
        raise ConfigurationError("max_backfill must be >= 1")
    ordered = sorted(occurrences)
    if len(ordered) <= max_backfill:
        return ordered, []
    cut = len(ordered) - max_backfill
    return ordered[cut:], ordered[:cut]
