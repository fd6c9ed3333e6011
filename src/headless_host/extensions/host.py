"""
Extension host for Headless Host.

This module owns the hosted plugin's lifecycle: it builds the plugin context
from the capability shim, loads and activates the plugin module, routes
messages between the plugin's webview provider and the rest of the process,
and converts every plugin fault into an ``extension-error`` event.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from pathlib import Path
from types import ModuleType
from typing import Any

from headless_host.communication.messages import (
    ExtensionMessage,
    MessageUpdatedMessage,
    StateMessage,
    message_type,
    parse_extension_message,
    to_wire,
)
from headless_host.core.events import EventEmitter
from headless_host.extensions.interfaces import ErrorEvent, ExtensionHealth, LifecyclePhase, PluginAPI
from headless_host.extensions.loader import load_plugin_module, validate_plugin_module
from headless_host.extensions.webview import HeadlessWebviewView
from headless_host.shim.api import HostAPI, create_host_api
from headless_host.shim.context import PluginContext
from headless_host.shim.environment import IdentityInfo
from headless_host.shim.primitives import Disposable
from headless_host.utils.config import HostSettings, get_settings
from headless_host.utils.errors import DisposedError, InvalidPhaseError, PluginLoadError
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

# Applied before any other queued message once the webview is ready
PRIORITY_MESSAGE_TYPES = frozenset({"upsertApiConfiguration"})

# Plugin message types that are never forwarded
IGNORED_MESSAGE_TYPES = frozenset({"mcpServers", "theme", "rulesData"})

AUTO_APPROVAL_KEYS = (
    "autoApprovalEnabled",
    "alwaysAllowReadOnly",
    "alwaysAllowReadOnlyOutsideWorkspace",
    "alwaysAllowWrite",
    "alwaysAllowWriteOutsideWorkspace",
    "alwaysAllowWriteProtected",
    "alwaysAllowBrowser",
    "alwaysApproveResubmit",
    "requestDelaySeconds",
    "alwaysAllowMcp",
    "alwaysAllowModeSwitch",
    "alwaysAllowSubtasks",
    "alwaysAllowExecute",
    "allowedCommands",
    "deniedCommands",
    "alwaysAllowFollowupQuestions",
    "followupAutoApproveTimeoutMs",
    "alwaysAllowUpdateTodoList",
)


def is_expected_error(error: BaseException) -> bool:
    """Faults the plugin raises during normal task cancellation."""
    message = str(error).lower()
    return "task" in message and "aborted" in message


class ExtensionHost(EventEmitter):
    """Lifecycle manager for one hosted plugin.

    Events:
        activated: PluginAPI or None, once per successful activation
        message: ExtensionMessage sent by the plugin (or by the host itself)
        extension-error: ErrorEvent for every caught plugin fault
        deactivated: no arguments
    """

    def __init__(
        self,
        settings: HostSettings | None = None,
        workspace_path: str | Path | None = None,
        extension_bundle_path: str | Path | None = None,
        extension_root_path: str | Path | None = None,
        identity: IdentityInfo | None = None,
        plugin_module: ModuleType | Any = None,
        initial_state: dict[str, Any] | None = None,
        extension_id: str | None = None
    ):
        """Initialize the extension host.

        Args:
            settings: Application settings (defaults to the global instance)
            workspace_path: Workspace handed to the plugin
            extension_bundle_path: Plugin module file or package directory
            extension_root_path: Plugin asset root
            identity: Machine, session and user identifiers
            plugin_module: Already imported plugin module; skips loading
            initial_state: Snapshot the host starts from
            extension_id: Identifier the plugin uses to look itself up
        """
        super().__init__()
        self.settings = settings or get_settings()
        self.workspace_path = Path(workspace_path) if workspace_path else self.settings.get_workspace_path()
        self.extension_bundle_path = (
            Path(extension_bundle_path).expanduser().resolve()
            if extension_bundle_path
            else self.settings.get_extension_bundle_path()
        )
        self.extension_root_path = self._resolve_root_path(extension_root_path)
        self.identity = identity or IdentityInfo()
        self.extension_id = extension_id

        self._plugin_module = plugin_module
        self._phase = LifecyclePhase.INACTIVE
        self._activation: asyncio.Task | None = None

        self.context: PluginContext | None = None
        self.host_api: HostAPI | None = None
        self.plugin_api: PluginAPI | None = None
        self.current_state: dict[str, Any] | None = dict(initial_state) if initial_state else None

        # Webview providers registered by the plugin, in registration order
        self._webview_providers: dict[str, Any] = {}
        self._webview_views: dict[str, HeadlessWebviewView] = {}
        self._webview_tasks: set[asyncio.Task] = set()
        self._webview_ready = False
        self._pending_messages: list[dict[str, Any]] = []
        self._last_webview_launch: float | None = None

        # Health tracking
        self._error_count = 0
        self._last_error: str | None = None
        self._last_error_context: str | None = None
        self._last_error_time: float | None = None
        self._fatal_error = False
        self._health_warning_logged = False

        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous_exception_handler: Any = None
        self._exception_handler_installed = False

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def is_activated(self) -> bool:
        return self._phase is LifecyclePhase.ACTIVATED

    @property
    def is_webview_ready(self) -> bool:
        return self._webview_ready

    @property
    def pending_message_count(self) -> int:
        return len(self._pending_messages)

    # Lifecycle

    async def activate(self) -> PluginAPI | None:
        """Activate the plugin.

        Idempotent while activated; a call made while activation is running
        waits for that activation instead of starting another.

        Returns:
            The plugin's API, or None when activation did not produce one

        Raises:
            DisposedError: If the host has been disposed
            InvalidPhaseError: If the host has been deactivated
        """
        if self._phase is LifecyclePhase.DISPOSED:
            raise DisposedError("Cannot activate a disposed extension host", self._phase)
        if self._phase is LifecyclePhase.DEACTIVATED:
            raise InvalidPhaseError("Extension host was deactivated and cannot be activated again", self._phase)
        if self._phase is LifecyclePhase.ACTIVATED:
            return self.plugin_api
        if self._activation is None or self._activation.done():
            self._activation = asyncio.ensure_future(self._activate())
        activation = self._activation
        try:
            return await asyncio.shield(activation)
        except asyncio.CancelledError:
            if activation.cancelled() and self._phase is LifecyclePhase.DISPOSED:
                raise DisposedError("Extension host was disposed during activation", self._phase) from None
            raise

    async def _activate(self) -> PluginAPI | None:
        logger.info("Activating extension")
        self._phase = LifecyclePhase.ACTIVATING
        self._install_exception_handler()

        try:
            self._build_context()
            module = self._load_module()
        except Exception as e:
            self._report_error("activation", e, recoverable=False)
            self._restore_exception_handler()
            self.context = None
            self.host_api = None
            self._phase = LifecyclePhase.INACTIVE
            return None

        context = self.context
        raw_api = await self._safe_execute(lambda: module.activate(context), "extension.activate")
        if raw_api is None:
            logger.warning("Extension activated without an API, continuing with limited functionality")
        self.plugin_api = PluginAPI(raw_api) if raw_api is not None else None

        # Providers registered during activate resolve before we report ready
        if self._webview_tasks:
            await asyncio.gather(*list(self._webview_tasks), return_exceptions=True)

        await self._seed_state()

        if self._phase is not LifecyclePhase.ACTIVATING:
            # Disposed while the plugin was activating
            return None

        self._phase = LifecyclePhase.ACTIVATED
        logger.info(f"Extension activated: {self.plugin_api!r}")
        self.emit("activated", self.plugin_api)
        return self.plugin_api

    async def deactivate(self) -> None:
        """Run the plugin's teardown and release its resources.

        Idempotent. Faults raised by the plugin here are reported as
        recoverable errors and never raised.
        """
        if self._phase is LifecyclePhase.ACTIVATING and self._activation is not None:
            await asyncio.gather(asyncio.shield(self._activation), return_exceptions=True)
        if self._phase is not LifecyclePhase.ACTIVATED:
            return

        logger.info("Deactivating extension")
        deactivate_hook = getattr(self._plugin_module, "deactivate", None)
        if callable(deactivate_hook):
            await self._safe_execute(deactivate_hook, "deactivation", recoverable=True)

        self._release_plugin_resources()
        self._restore_exception_handler()
        self._phase = LifecyclePhase.DEACTIVATED
        logger.info("Extension deactivated")
        self.emit("deactivated")

    async def dispose(self) -> None:
        """Deactivate if needed and move to the terminal phase. Safe to repeat.

        An activation still in flight is cancelled rather than awaited, so a
        plugin whose ``activate`` never returns cannot block disposal.
        """
        if self._phase is LifecyclePhase.DISPOSED:
            return
        activation = self._activation
        try:
            if self._phase is LifecyclePhase.ACTIVATING and activation is not None and not activation.done():
                logger.warning("Disposing extension host during activation, cancelling it")
                self._phase = LifecyclePhase.DISPOSED
                activation.cancel()
                await asyncio.wait([activation])
                self._release_plugin_resources()
            else:
                await self.deactivate()
        finally:
            self._restore_exception_handler()
            self._phase = LifecyclePhase.DISPOSED
            self.plugin_api = None
            self.remove_all_listeners()
            logger.debug("Extension host disposed")

    def _release_plugin_resources(self) -> None:
        if self.context is not None:
            failures = self.context.dispose_subscriptions()
            if failures:
                logger.warning(f"{failures} plugin subscriptions failed to dispose")

        for view in self._webview_views.values():
            view.dispose()
        self._webview_views.clear()
        self._webview_providers.clear()
        for task in list(self._webview_tasks):
            task.cancel()
        self._webview_tasks.clear()
        self._webview_ready = False
        self._pending_messages.clear()
        self.plugin_api = None

    def get_health(self) -> ExtensionHealth:
        return ExtensionHealth(
            phase=self._phase,
            is_healthy=not self._fatal_error and self._error_count < self.settings.max_errors_before_warning,
            error_count=self._error_count,
            last_error=self._last_error,
            last_error_context=self._last_error_context,
            last_error_time=self._last_error_time,
            max_errors_before_warning=self.settings.max_errors_before_warning,
        )

    def get_state(self) -> dict[str, Any] | None:
        return dict(self.current_state) if self.current_state is not None else None

    # Client → plugin

    async def send_webview_message(self, message: Any) -> None:
        """Deliver a message to the plugin as its webview would.

        Messages sent before the plugin's webview is resolved are queued
        and flushed once it is. Plugin faults are reported, never raised.

        Raises:
            DisposedError: If the host has been disposed
            InvalidPhaseError: If the plugin is not activated
        """
        if self._phase is LifecyclePhase.DISPOSED:
            raise DisposedError("Cannot send messages through a disposed extension host", self._phase)
        if self._phase is not LifecyclePhase.ACTIVATED:
            raise InvalidPhaseError(f"Extension host is not activated (phase: {self._phase.value})", self._phase)

        wire = to_wire(message)
        kind = message_type(wire) or "unknown"
        logger.debug(f"Processing webview message: {kind}")

        if not self._webview_ready:
            self._pending_messages.append(wire)
            logger.debug(f"Queued message {kind}, webview not ready")
            return

        if kind == "webviewDidLaunch" and self._launch_debounced():
            logger.debug("Ignoring webviewDidLaunch, too soon after the last one")
            return

        provider = self._primary_provider()
        if provider is None or not callable(getattr(provider, "handle_webview_message", None)):
            logger.warning(f"No webview provider can handle message: {kind}")
        else:
            await self._safe_execute(
                lambda: provider.handle_webview_message(wire),
                f"webview-message-{kind}",
                recoverable=True,
            )

        if kind == "webviewDidLaunch":
            await self._sync_state_on_launch()

        self._apply_local_update(kind, wire)

    async def inject_configuration(self, config_state: dict[str, Any]) -> None:
        """Merge a partial snapshot and push the matching settings to the plugin."""
        state = self._state()
        preserved_experiments = state.get("experiments")
        state.update(config_state)
        if preserved_experiments is not None:
            state["experiments"] = preserved_experiments

        await self._sync_configuration_messages(config_state)
        self._broadcast_state()

    async def _sync_configuration_messages(self, config_state: dict[str, Any]) -> None:
        if config_state.get("apiConfiguration"):
            await self.send_webview_message({
                "type": "upsertApiConfiguration",
                "text": config_state.get("currentApiConfigName") or "default",
                "apiConfiguration": config_state["apiConfiguration"],
            })

        if config_state.get("mode"):
            await self.send_webview_message({"type": "mode", "text": config_state["mode"]})

        if config_state.get("telemetrySetting"):
            await self.send_webview_message({"type": "telemetrySetting", "text": config_state["telemetrySetting"]})

        experiments = config_state.get("experiments") or self._state().get("experiments")
        if experiments:
            await self.send_webview_message({"type": "updateSettings", "updatedSettings": {"experiments": experiments}})

        auto_approval = {key: config_state[key] for key in AUTO_APPROVAL_KEYS if key in config_state}
        if auto_approval:
            await self.send_webview_message({"type": "updateSettings", "updatedSettings": auto_approval})
            logger.debug(f"Auto-approval settings synchronized: {sorted(auto_approval)}")

        if config_state.get("appendSystemPrompt"):
            await self.send_webview_message({
                "type": "updateSettings",
                "updatedSettings": {"appendSystemPrompt": config_state["appendSystemPrompt"]},
            })

    def _apply_local_update(self, kind: str, message: dict[str, Any]) -> None:
        if kind == "upsertApiConfiguration":
            if message.get("text") and isinstance(message.get("apiConfiguration"), dict):
                state = self._state()
                state["apiConfiguration"] = {**(state.get("apiConfiguration") or {}), **message["apiConfiguration"]}
                state["currentApiConfigName"] = message["text"]
                self._broadcast_state()
        elif kind == "mode":
            if message.get("text"):
                self._state()["mode"] = message["text"]
                self._broadcast_state()
        elif kind == "clearTask":
            self._state()["chatMessages"] = []
            self._broadcast_state()
        elif kind == "selectImages":
            # No image picker without a screen
            self.emit("message", ExtensionMessage(
                type="selectedImages",
                images=[],
                context=message.get("context") or "chat",
                messageTs=message.get("messageTs"),
            ))

    def _launch_debounced(self) -> bool:
        now = asyncio.get_running_loop().time()
        window = self.settings.webview_launch_debounce_ms / 1000
        if self._last_webview_launch is not None and now - self._last_webview_launch < window:
            return True
        self._last_webview_launch = now
        return False

    async def _sync_state_on_launch(self) -> None:
        snapshot = await self._read_plugin_state()
        if isinstance(snapshot, dict):
            self._state().update(snapshot)
            logger.debug("Synced state with extension on webview launch")
        self._broadcast_state()

    # Plugin → client

    def _on_plugin_message(self, raw: Any) -> None:
        """Route a message the plugin posted to its webview."""
        try:
            message = parse_extension_message(raw)
        except ValueError as e:
            self._report_error("extension-message", e, recoverable=True)
            return

        try:
            self._route_plugin_message(message)
        except Exception as e:
            self._report_error(f"extension-message-{message.type}", e, recoverable=True)

    def _route_plugin_message(self, message: ExtensionMessage) -> None:
        if isinstance(message, StateMessage):
            if message.state is None:
                return
            incoming = dict(message.state)
            chat_messages = incoming.pop("clineMessages", None)
            if chat_messages is not None:
                incoming["chatMessages"] = chat_messages
            self._state().update(incoming)
            self._broadcast_state()
        elif isinstance(message, MessageUpdatedMessage):
            chat_message = message.resolved_chat_message()
            if chat_message is not None:
                self.emit("message", MessageUpdatedMessage(chatMessage=chat_message))
        elif message.type == "listApiConfig":
            meta = getattr(message, "listApiConfigMeta", None)
            if isinstance(meta, list):
                self._state()["listApiConfigMeta"] = meta
                logger.debug("Updated listApiConfigMeta from extension")
        elif message.type in IGNORED_MESSAGE_TYPES:
            logger.debug(f"Ignoring extension message type: {message.type}")
        elif message.type.startswith("_"):
            logger.debug(f"Dropping private extension message: {message.type}")
        else:
            self.emit("message", message)

    def _broadcast_state(self) -> None:
        if self.current_state is not None:
            self.emit("message", StateMessage(state=dict(self.current_state)))

    def _state(self) -> dict[str, Any]:
        if self.current_state is None:
            self.current_state = {}
        return self.current_state

    # Webview providers

    def _register_webview_provider(self, view_id: str, provider: Any) -> Disposable:
        self._webview_providers[view_id] = provider
        view = HeadlessWebviewView(view_id, self._on_plugin_message)
        self._webview_views[view_id] = view
        logger.info(f"Webview provider registered: {view_id}")

        task = asyncio.ensure_future(self._resolve_webview(view_id, provider, view))
        self._webview_tasks.add(task)
        task.add_done_callback(self._webview_tasks.discard)

        def _unregister() -> None:
            self._webview_providers.pop(view_id, None)
            removed = self._webview_views.pop(view_id, None)
            if removed is not None:
                removed.dispose()
            logger.debug(f"Unregistered webview provider: {view_id}")

        return Disposable(_unregister)

    async def _resolve_webview(self, view_id: str, provider: Any, view: HeadlessWebviewView) -> None:
        resolve = getattr(provider, "resolve_webview_view", None)
        if callable(resolve):
            await self._safe_execute(lambda: resolve(view), f"webview-resolve-{view_id}", recoverable=True)
        if view_id in self._webview_providers and not self._webview_ready:
            await self._mark_webview_ready()

    async def _mark_webview_ready(self) -> None:
        self._webview_ready = True
        logger.info("Webview marked as ready, flushing pending messages")
        await self._flush_pending_messages()

    async def _flush_pending_messages(self) -> None:
        pending, self._pending_messages = self._pending_messages, []
        if not pending:
            return
        logger.info(f"Flushing {len(pending)} pending messages")

        # API configuration must be applied before anything reads it
        priority = [m for m in pending if message_type(m) in PRIORITY_MESSAGE_TYPES]
        rest = [m for m in pending if message_type(m) not in PRIORITY_MESSAGE_TYPES]
        for message in priority + rest:
            if self._phase is not LifecyclePhase.ACTIVATED:
                return
            await self.send_webview_message(message)

    def _primary_provider(self) -> Any:
        primary = self.settings.primary_webview_view_id
        if primary and primary in self._webview_providers:
            return self._webview_providers[primary]
        return next(iter(self._webview_providers.values()), None)

    # Activation helpers

    def _resolve_root_path(self, extension_root_path: str | Path | None) -> Path:
        if extension_root_path:
            return Path(extension_root_path).expanduser().resolve()
        if self.extension_bundle_path is not None:
            bundle = self.extension_bundle_path
            return bundle if bundle.is_dir() else bundle.parent
        return self.settings.get_extension_root_path()

    def _build_context(self) -> None:
        self.context = PluginContext.from_settings(
            self.settings,
            self.identity,
            workspace_path=self.workspace_path,
            extension_path=self.extension_root_path,
        )
        self.host_api = create_host_api(
            self.context,
            self.settings.app_version,
            webview_registrar=self._register_webview_provider,
            extension_id=self.extension_id,
        )

    def _load_module(self) -> Any:
        if self._plugin_module is not None:
            validate_plugin_module(self._plugin_module)
            return self._plugin_module
        if self.extension_bundle_path is None:
            raise PluginLoadError("No extension bundle configured")
        self._plugin_module = load_plugin_module(self.extension_bundle_path)
        return self._plugin_module

    async def _seed_state(self) -> None:
        snapshot = await self._read_plugin_state()
        if isinstance(snapshot, dict):
            self._state().update(snapshot)

    async def _read_plugin_state(self) -> Any:
        if self.plugin_api is None or not self.plugin_api.has("get_state"):
            return None
        return await self._safe_execute(self.plugin_api.get_state, "state-sync", recoverable=True)

    # Fault isolation

    async def _safe_execute(
        self,
        operation: Callable[[], Any | Awaitable[Any]],
        context: str,
        fallback: Any = None,
        recoverable: bool = False
    ) -> Any:
        """Run a plugin entry point, converting its faults into events.

        Args:
            operation: Zero-argument callable; an awaitable result is awaited
            context: Label reported with the fault
            fallback: Value returned when the operation fails
            recoverable: Classification used when the exception carries none

        Returns:
            The operation's result, or ``fallback`` on failure
        """
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report_error(context, e, recoverable)
            return fallback

    def _report_error(self, context: str, error: BaseException, recoverable: bool = False) -> None:
        if is_expected_error(error):
            logger.debug(f"Expected extension error in {context}: {error}")
            return

        recoverable = bool(getattr(error, "recoverable", recoverable))
        event = ErrorEvent(context=context, error=error, recoverable=recoverable)

        self._error_count += 1
        self._last_error = event.message
        self._last_error_context = context
        self._last_error_time = event.timestamp
        if not recoverable:
            self._fatal_error = True

        if recoverable:
            logger.warning(f"Recoverable extension error in {context}: {event.message}")
        else:
            logger.error(f"Extension error in {context}: {event.message}", exc_info=error)

        threshold = self.settings.max_errors_before_warning
        if self._error_count >= threshold and not self._health_warning_logged:
            self._health_warning_logged = True
            logger.warning(f"Extension has raised {self._error_count} errors and is reported unhealthy")

        self.emit("extension-error", event)

    def _install_exception_handler(self) -> None:
        if self._exception_handler_installed:
            return
        self._loop = asyncio.get_running_loop()
        self._previous_exception_handler = self._loop.get_exception_handler()
        self._loop.set_exception_handler(self._handle_loop_exception)
        self._exception_handler_installed = True

    def _restore_exception_handler(self) -> None:
        if not self._exception_handler_installed or self._loop is None:
            return
        self._loop.set_exception_handler(self._previous_exception_handler)
        self._exception_handler_installed = False
        self._previous_exception_handler = None

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        error = context.get("exception")
        if error is None:
            if self._previous_exception_handler is not None:
                self._previous_exception_handler(loop, context)
            else:
                loop.default_exception_handler(context)
            return
        self._report_error("unhandled-exception", error, recoverable=True)
