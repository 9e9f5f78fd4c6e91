"""RapidCron database module."""

from .migrations import create_db_engine, init_database
from .models import (
    ExecutionLog,
    InstanceStatus,
    Task,
    TaskInstance,
    TriggeredBy,
    utcnow,
)
from .store import Store

__all__ = [
    "Task",
    "TaskInstance",
    "ExecutionLog",
    "InstanceStatus",
    "TriggeredBy",
    "Store",
    "utcnow",
    "init_database",
    "create_db_engine",
]
