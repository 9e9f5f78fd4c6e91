"""RapidCron: durable cron scheduler with dependencies, retries and an audit log."""

from .config import Config
from .core import (
    cancel_instance,
    create_task,
    delete_task,
    disable_task,
    enable_task,
    get_instance,
    get_task,
    get_task_by_name,
    init,
    is_failed,
    is_pending,
    is_running,
    is_succeeded,
    is_terminal,
    list_instances,
    list_logs,
    list_tasks,
    trigger_task,
    update_task,
)
from .engine import Engine
from .exceptions import RapidCronError
from .executors import ExecutorOutput, executor, get_registered_executors
from .scheduler import Scheduler
from .worker import Worker

__version__ = "0.1.0"
__all__ = [
    "Config",
    "init",
    "create_task",
    "update_task",
    "enable_task",
    "disable_task",
    "delete_task",
    "get_task",
    "get_task_by_name",
    "list_tasks",
    "trigger_task",
    "get_instance",
    "cancel_instance",
    "list_instances",
    "list_logs",
    "is_pending",
    "is_running",
    "is_succeeded",
    "is_failed",
    "is_terminal",
    "executor",
    "get_registered_executors",
    "ExecutorOutput",
    "Engine",
    "Scheduler",
    "Worker",
    "RapidCronError",
]
