"""
Interfaces shared by the extension host and the extension service.

This module defines the lifecycle phases, the health model, the fault event
emitted for plugin errors, and the PluginAPI wrapper around whatever the
plugin's activate entry point returned.
"""

import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict


class LifecyclePhase(str, Enum):
    """Extension host lifecycle phase."""
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    DISPOSED = "disposed"


class ExtensionHealth(BaseModel):
    """Extension health status model."""
    phase: LifecyclePhase
    is_healthy: bool = True
    error_count: int = 0
    last_error: str | None = None
    last_error_context: str | None = None
    last_error_time: float | None = None
    max_errors_before_warning: int = 10

    # Pydantic v2 configuration
    model_config = ConfigDict(use_enum_values=True)


@dataclass
class ErrorEvent:
    """Fault raised inside the hosted plugin, caught at the host boundary."""
    context: str
    error: BaseException
    recoverable: bool
    timestamp: float = field(default_factory=time.time)

    @property
    def message(self) -> str:
        return str(self.error) or self.error.__class__.__name__


class PluginModule(Protocol):
    """What a hosted plugin module exports."""

    def activate(self, context: Any) -> Any:
        ...


class PluginAPI:
    """Public operations the plugin returned from activation.

    Wraps either an object exposing the operations as attributes or a mapping
    of operation names to callables. Missing operations resolve to ``None``
    through :meth:`get`; calling one that does not exist raises
    ``AttributeError`` like any other missing attribute.
    """

    OPERATIONS = (
        "get_state",
        "send_message",
        "start_new_task",
        "cancel_task",
        "condense",
        "condense_task_context",
        "handle_terminal_operation",
    )

    def __init__(self, raw: Any):
        self.raw = raw

    def get(self, name: str) -> Any:
        if isinstance(self.raw, dict):
            return self.raw.get(name)
        return getattr(self.raw, name, None)

    def has(self, name: str) -> bool:
        return callable(self.get(name))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or name == "raw":
            raise AttributeError(name)
        value = self.get(name)
        if value is None:
            raise AttributeError(f"Plugin API has no operation '{name}'")
        return value

    async def call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Call an operation, awaiting its result when it returns an awaitable."""
        result = getattr(self, name)(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def available_operations(self) -> list[str]:
        return [name for name in self.OPERATIONS if self.has(name)]

    def __repr__(self) -> str:
        return f"PluginAPI({', '.join(self.available_operations())})"
