"""Executor dispatch: run a plugin under a timeout and convert its outcome."""

import asyncio
import logging
import time
from typing import Any, Optional

from ..exceptions import ConfigurationError, ExecutionTimeoutError
from .base import (
    ERROR_CONFIGURATION,
    ERROR_TIMEOUT,
    ERROR_TRANSIENT,
    FAILED,
    SUCCESS,
    ExecutionResult,
    ExecutorOutput,
    truncate,
)
from .registry import ExecutorPlugin, ExecutorRegistry, default_registry

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Runs task payloads through their executor plugin.

    The dispatcher owns the timeout: the plugin call is cancelled when it
    runs out, so execute() returns within timeout_seconds plus the time the
    plugin takes to clean up after cancellation.

    Example:
        dispatcher = Dispatcher()
        result = await dispatcher.execute("command", {"command": "echo hi"}, 30)
    """

    def __init__(
        self,
        registry: Optional[ExecutorRegistry] = None,
        output_summary_limit: int = 2000,
    ):
        self.registry = registry or default_registry
        self.output_summary_limit = output_summary_limit

    def validate(self, task_type: str, payload: Any) -> Any:
        """
        Check a task type and payload without running anything.

        Raises:
            ConfigurationError: unknown type or payload rejected by the plugin
        """
        return self.registry.get(task_type).validate(payload)

    async def execute(self, task_type: str, payload: Any, timeout_seconds: float) -> ExecutionResult:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            plugin = self.registry.get(task_type)
            validated = plugin.validate(payload)
        except ConfigurationError as e:
            logger.error(f"Cannot dispatch task type '{task_type}': {e}")
            return ExecutionResult.failure(ERROR_CONFIGURATION, str(e), elapsed_ms())

        try:
            output = await asyncio.wait_for(
                self._invoke(plugin, validated, timeout_seconds),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Task type '{task_type}' exceeded timeout of {timeout_seconds}s")
            return ExecutionResult.failure(
                ERROR_TIMEOUT,
                f"Execution exceeded timeout of {timeout_seconds}s",
                elapsed_ms(),
            )
        except ExecutionTimeoutError as e:
            logger.warning(f"Task type '{task_type}' timed out: {e}")
            return ExecutionResult.failure(ERROR_TIMEOUT, str(e), elapsed_ms())
        except ConfigurationError as e:
            return ExecutionResult.failure(ERROR_CONFIGURATION, str(e), elapsed_ms())
        except Exception as e:
            return ExecutionResult.failure(
                ERROR_TRANSIENT,
                f"{e.__class__.__name__}: {e}",
                elapsed_ms(),
            )

        return self._to_result(output, elapsed_ms())

    async def _invoke(self, plugin: ExecutorPlugin, payload: Any, timeout_seconds: float) -> ExecutorOutput:
        if plugin.is_async:
            return await plugin.run(payload, timeout_seconds)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: plugin.run(payload, timeout_seconds))

    def _to_result(self, output: Any, duration_ms: int) -> ExecutionResult:
        if not isinstance(output, ExecutorOutput):
            # Plugins may return any value; it becomes the output on success.
            output = ExecutorOutput(ok=True, output="" if output is None else str(output))

        summary = truncate(output.output, self.output_summary_limit) or None
        if output.ok:
            return ExecutionResult(
                status=SUCCESS,
                output_summary=summary,
                exit_code=output.exit_code,
                duration_ms=duration_ms,
            )
        return ExecutionResult(
            status=FAILED,
            output_summary=summary,
            error_message=truncate(output.error or "Execution failed", self.output_summary_limit),
            error_kind=ERROR_TRANSIENT,
            exit_code=output.exit_code,
            duration_ms=duration_ms,
        )
