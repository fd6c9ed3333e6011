"""
Notification surface and webview registration.

There is no screen: notifications and output channels are routed to the
logger, pickers answer with neutral defaults, and webview providers are handed
to the extension host, which becomes their only counterpart.
"""

import logging
from collections.abc import Callable
from typing import Any

from headless_host.shim.primitives import Disposable, NotificationSeverity
from headless_host.utils.logging import get_plugin_logger, setup_logging

logger = setup_logging(__name__)

WebviewRegistrar = Callable[[str, Any], Any]


class OutputChannel:
    """Named output channel whose lines go to the plugin logger."""

    def __init__(self, name: str):
        self.name = name
        self._logger = get_plugin_logger()

    def append(self, value: str) -> None:
        self._logger.info(f"[{self.name}] {value}")

    def append_line(self, value: str) -> None:
        self._logger.info(f"[{self.name}] {value}")

    def clear(self) -> None:
        pass

    def show(self, *args: Any) -> None:
        pass

    def hide(self) -> None:
        pass

    def dispose(self) -> None:
        pass


class WindowAPI:
    """Headless stand-in for the editor's window namespace."""

    _LOG_LEVELS = {
        NotificationSeverity.INFORMATION: logging.INFO,
        NotificationSeverity.WARNING: logging.WARNING,
        NotificationSeverity.ERROR: logging.ERROR,
    }

    def __init__(self, webview_registrar: WebviewRegistrar | None = None):
        """Initialize the window API.

        Args:
            webview_registrar: Called with (view_id, provider) when the plugin
                registers a webview view provider
        """
        self._webview_registrar = webview_registrar
        self.notifications: list[tuple[NotificationSeverity, str]] = []
        self._plugin_logger = get_plugin_logger()

    async def _notify(self, severity: NotificationSeverity, message: str) -> None:
        self.notifications.append((severity, message))
        self._plugin_logger.log(self._LOG_LEVELS[severity], message)
        return None

    async def show_information_message(self, message: str, *items: Any) -> str | None:
        return await self._notify(NotificationSeverity.INFORMATION, message)

    async def show_warning_message(self, message: str, *items: Any) -> str | None:
        return await self._notify(NotificationSeverity.WARNING, message)

    async def show_error_message(self, message: str, *items: Any) -> str | None:
        return await self._notify(NotificationSeverity.ERROR, message)

    async def show_quick_pick(self, items: list[Any], options: Any = None) -> Any:
        return items[0] if items else None

    async def show_input_box(self, options: Any = None) -> str:
        return ""

    def create_output_channel(self, name: str, *args: Any) -> OutputChannel:
        return OutputChannel(name)

    def register_webview_view_provider(self, view_id: str, provider: Any, options: Any = None) -> Disposable:
        """Register the plugin's webview provider with the extension host."""
        if self._webview_registrar is None:
            logger.warning(f"No extension host to receive webview provider {view_id}")
            return Disposable()
        result = self._webview_registrar(view_id, provider)
        return result if isinstance(result, Disposable) else Disposable()
