"""Executor plugins and dispatch.

Importing this package registers the built-in ``command`` and ``http``
task types with the default registry.
"""

from . import command, http_call  # noqa: F401 - registers built-in executors
from .base import ExecutionResult, ExecutorOutput
from .dispatch import Dispatcher
from .registry import (
    ExecutorPlugin,
    ExecutorRegistry,
    default_registry,
    executor,
    get_registered_executors,
)

__all__ = [
    "Dispatcher",
    "ExecutionResult",
    "ExecutorOutput",
    "ExecutorPlugin",
    "ExecutorRegistry",
    "default_registry",
    "executor",
    "get_registered_executors",
]
