"""Registry of executor plugins, keyed by task type."""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from ..exceptions import ConfigurationError, ExecutorAlreadyRegistered


@dataclass
class ExecutorPlugin:
    """An executor for one task type."""

    name: str
    run: Callable
    payload_model: Optional[type[BaseModel]] = None

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.run)

    def validate(self, payload: Any) -> Any:
        """Validate a raw payload, returning what run() receives."""
        if self.payload_model is None:
            return payload
        try:
            return self.payload_model.model_validate(payload or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid payload for task type '{self.name}': {e}") from e


class ExecutorRegistry:
    """
    Maps task types to executor plugins.

    Example:
        registry = ExecutorRegistry()

        @registry.register("echo")
        async def echo(payload: dict, timeout: float) -> ExecutorOutput:
            return ExecutorOutput(ok=True, output=str(payload))
    """

    def __init__(self) -> None:
        self._plugins: dict[str, ExecutorPlugin] = {}

    def register(
        self,
        name: str,
        *,
        payload_model: Optional[type[BaseModel]] = None,
    ) -> Callable[[Callable], Callable]:
        """
        Decorator registering a plugin for a task type.

        Plugins are called as ``run(payload, timeout_seconds)`` and may be
        sync or async. They must not keep state between calls.
        """

        def decorator(fn: Callable) -> Callable:
            if name in self._plugins:
                raise ExecutorAlreadyRegistered(f"Executor for task type '{name}' already registered")
            self._plugins[name] = ExecutorPlugin(name=name, run=fn, payload_model=payload_model)
            return fn

        return decorator

    def unregister(self, name: str) -> None:
        self._plugins.pop(name, None)

    def get(self, name: str) -> ExecutorPlugin:
        try:
            return self._plugins[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown task type '{name}'. Registered types: {', '.join(sorted(self._plugins)) or 'none'}"
            ) from None

    def names(self) -> list[str]:
        return sorted(self._plugins)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins


default_registry = ExecutorRegistry()


def executor(name: str, *, payload_model: Optional[type[BaseModel]] = None) -> Callable[[Callable], Callable]:
    """Register a plugin with the default registry."""
    return default_registry.register(name, payload_model=payload_model)


def get_registered_executors() -> list[str]:
    """Task types known to the default registry."""
    return default_registry.names()
