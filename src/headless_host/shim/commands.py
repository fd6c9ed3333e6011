"""Command registry for hosted plugins."""

import inspect
from collections.abc import Callable
from typing import Any

from headless_host.shim.primitives import Disposable
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

# Window-level commands that have nothing to act on headlessly
BUILTIN_NOOP_COMMANDS = frozenset({
    "workbench.action.files.saveFiles",
    "workbench.action.closeWindow",
    "workbench.action.reloadWindow",
    "setContext",
})


class CommandRegistry:
    """Maps command names to plugin callbacks."""

    def __init__(self):
        self._commands: dict[str, Callable[..., Any]] = {}

    def register_command(self, command: str, callback: Callable[..., Any], this_arg: Any = None) -> Disposable:
        if command in self._commands:
            logger.warning(f"Command {command} registered twice, replacing previous handler")
        handler = callback.__get__(this_arg) if this_arg is not None and hasattr(callback, "__get__") else callback
        self._commands[command] = handler

        def _unregister() -> None:
            if self._commands.get(command) is handler:
                del self._commands[command]

        return Disposable(_unregister)

    async def execute_command(self, command: str, *args: Any) -> Any:
        """Execute a command.

        Raises:
            Exception: Whatever the registered callback raises
        """
        handler = self._commands.get(command)
        if handler is not None:
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await result
            return result

        if command in BUILTIN_NOOP_COMMANDS:
            return None

        logger.warning(f"Unknown command: {command}")
        return None

    async def get_commands(self, filter_internal: bool = False) -> list[str]:
        names = list(self._commands)
        if filter_internal:
            names = [name for name in names if not name.startswith("_")]
        return names

    def has_command(self, command: str) -> bool:
        return command in self._commands
