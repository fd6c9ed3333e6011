"""
Extension service for Headless Host.

The service is the only object a terminal client talks to. It owns one
extension host and one message bridge, turns their events into a single
outward event stream, guards every operation with the lifecycle phase it
needs, and layers single-shot completion requests on top of the raw
message stream.

Events:
    ready: PluginAPI (or None) once the plugin has activated
    stateChange: state snapshot dictionary
    message: ExtensionMessage from the plugin
    error: ErrorEvent for a fatal plugin fault
    warning: ErrorEvent for a recoverable plugin fault
    disposed: no arguments
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from pydantic import BaseModel, ConfigDict

from headless_host.communication.ipc import MessageBridge
from headless_host.communication.messages import (
    ExtensionMessage,
    IPCMessage,
    SingleCompletionRequest,
    SingleCompletionResultMessage,
    StateMessage,
    WebviewMessage,
)
from headless_host.core.events import EventEmitter
from headless_host.extensions.host import ExtensionHost
from headless_host.extensions.interfaces import ErrorEvent, ExtensionHealth, PluginAPI
from headless_host.shim.environment import IdentityInfo
from headless_host.utils.config import HostSettings, get_settings
from headless_host.utils.errors import (
    BridgeError,
    CompletionError,
    CompletionTimeoutError,
    DisposedError,
    NotActivatedError,
    NotInitializedError,
)
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)


class ExtensionServiceOptions(BaseModel):
    """Options for one extension service."""
    workspace: str | None = None
    extension_bundle_path: str | None = None
    extension_root_path: str | None = None
    identity: IdentityInfo | None = None
    initial_state: dict[str, Any] | None = None
    extension_id: str | None = None
    # Already imported plugin module; bypasses the bundle loader
    plugin_module: Any = None

    # Pydantic v2 configuration
    model_config = ConfigDict(arbitrary_types_allowed=True)


class ExtensionService(EventEmitter):
    """Event-driven façade over the extension host and message bridge."""

    def __init__(
        self,
        options: ExtensionServiceOptions | None = None,
        settings: HostSettings | None = None
    ):
        """Initialize the extension service.

        Args:
            options: Plugin location, identity and initial state
            settings: Application settings (defaults to the global instance)
        """
        super().__init__()
        self.options = options or ExtensionServiceOptions()
        self.settings = settings or get_settings()

        self._host = ExtensionHost(
            settings=self.settings,
            workspace_path=self.options.workspace,
            extension_bundle_path=self.options.extension_bundle_path,
            extension_root_path=self.options.extension_root_path,
            identity=self.options.identity,
            plugin_module=self.options.plugin_module,
            initial_state=self.options.initial_state,
            extension_id=self.options.extension_id,
        )
        self._bridge = MessageBridge.from_settings(self.settings)

        self._initialized = False
        self._activated = False
        self._disposing = False
        self._disposed = False
        self._inflight_completions: set[asyncio.Future] = set()
        self._pending_sends: set[asyncio.Task] = set()

        self._setup_event_handlers()

    def _setup_event_handlers(self) -> None:
        self._host.on("activated", self._on_host_activated)
        self._host.on("extension-error", self._on_host_error)
        self._host.on("message", self._on_host_message)
        self._bridge.plugin_channel.on("message", self._on_client_envelope)

    def _teardown_event_handlers(self) -> None:
        self._host.off("activated", self._on_host_activated)
        self._host.off("extension-error", self._on_host_error)
        self._host.off("message", self._on_host_message)
        self._bridge.plugin_channel.off("message", self._on_client_envelope)

    # Host and bridge events

    def _on_host_activated(self, api: PluginAPI | None) -> None:
        logger.info("Extension host activated")
        self._activated = True
        self.emit("ready", api)

    def _on_host_error(self, event: ErrorEvent) -> None:
        if event.recoverable:
            logger.warning(f"Recoverable extension error in {event.context}: {event.message}")
            self.emit("warning", event)
        else:
            logger.error(f"Critical extension error in {event.context}: {event.message}")
            self.emit("error", event)

    def _on_host_message(self, message: ExtensionMessage) -> None:
        try:
            self._bridge.send_extension_message(message)
        except BridgeError as e:
            logger.debug(f"Extension message {message.type} not bridged: {e}")

        self.emit("message", message)

        if isinstance(message, StateMessage) and message.state is not None:
            self.emit("stateChange", message.state)

    async def _on_client_envelope(self, envelope: IPCMessage) -> None:
        if envelope.type != "request":
            return
        response = await self._handle_client_message(envelope.data)
        try:
            self._bridge.plugin_channel.respond(envelope.id, response)
        except BridgeError as e:
            logger.debug(f"Could not answer client request {envelope.id}: {e}")

    async def _handle_client_message(self, data: Any) -> dict[str, Any]:
        try:
            if isinstance(data, dict) and data.get("type") == "webviewMessage" and data.get("payload"):
                await self._host.send_webview_message(data["payload"])
            return {"success": True}
        except Exception as e:
            logger.error(f"Error handling client message: {e}")
            return {"error": str(e) or e.__class__.__name__}

    # Lifecycle

    async def initialize(self) -> None:
        """Activate the extension host.

        Idempotent once the plugin is activated. A service whose activation
        failed may call this again to retry.

        Raises:
            DisposedError: If the service has been disposed
        """
        if self._disposed or self._disposing:
            raise DisposedError("Cannot initialize disposed ExtensionService")
        if self._initialized and self._activated:
            logger.warning("Extension service already initialized")
            return

        logger.info("Initializing extension service")
        try:
            await self._host.activate()
        except Exception as e:
            logger.error(f"Failed to initialize extension service: {e}")
            raise

        self._initialized = True
        self._activated = self._activated or self._host.is_activated
        if self._activated:
            logger.info("Extension service initialized successfully")
        else:
            logger.warning("Extension service initialized but the extension did not activate")

    async def dispose(self) -> None:
        """Tear everything down. Safe to call repeatedly."""
        if self._disposed or self._disposing:
            return
        self._disposing = True
        logger.info("Disposing extension service")

        for completion in list(self._inflight_completions):
            if not completion.done():
                completion.set_exception(DisposedError("ExtensionService disposed while a completion was pending"))
        self._inflight_completions.clear()

        try:
            self._bridge.dispose()
        except Exception as e:
            logger.warning(f"Error disposing message bridge: {e}")

        try:
            await self._host.dispose()
        except Exception as e:
            logger.warning(f"Error disposing extension host: {e}")
        finally:
            # Reached even when the caller cancels us mid-dispose
            self._teardown_event_handlers()
            self._activated = False
            self._disposed = True
            self._disposing = False
            self.emit("disposed")
            self.remove_all_listeners()
            logger.info("Extension service disposed")

    @asynccontextmanager
    async def managed_lifecycle(self) -> AsyncIterator["ExtensionService"]:
        """Initialize on enter and dispose on exit."""
        await self.initialize()
        try:
            yield self
        finally:
            await self.dispose()

    # Guarded operations

    def _ensure_ready(self) -> None:
        if self._disposed or self._disposing:
            raise DisposedError("Cannot send message on disposed ExtensionService", self._host.phase)
        if not self._initialized:
            raise NotInitializedError(phase=self._host.phase)
        if not self._activated:
            raise NotActivatedError(phase=self._host.phase)

    async def send_webview_message(self, message: WebviewMessage | dict[str, Any]) -> Any:
        """Send a message to the plugin as its webview would.

        Returns:
            The plugin side's acknowledgement

        Raises:
            DisposedError: If the service has been disposed
            NotInitializedError: If initialize() has not been called
            NotActivatedError: If the plugin did not activate
        """
        self._ensure_ready()
        try:
            response = await self._bridge.send_webview_message(message)
        except Exception as e:
            logger.error(f"Error sending webview message: {e}")
            raise
        if isinstance(response, dict) and "error" in response:
            logger.warning(f"Webview message rejected by extension host: {response['error']}")
        return response

    async def request_single_completion(self, prompt: str, timeout_ms: float | None = None) -> str:
        """Ask the plugin for one completion of ``prompt``.

        Args:
            prompt: Text to complete
            timeout_ms: Deadline in milliseconds (defaults to the configured one)

        Returns:
            The completion text

        Raises:
            CompletionTimeoutError: If no matching result arrives in time
            CompletionError: If the plugin reports a failure
            DisposedError: If the service is, or becomes, disposed
        """
        self._ensure_ready()
        if timeout_ms is None:
            timeout_ms = self.settings.completion_timeout_ms

        completion_request_id = str(uuid.uuid4())
        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()

        def on_message(message: ExtensionMessage) -> None:
            if result.done() or not isinstance(message, SingleCompletionResultMessage):
                return
            if message.completion_request_id != completion_request_id:
                return
            if message.success and isinstance(message.completion_text, str):
                result.set_result(message.completion_text)
            else:
                result.set_exception(CompletionError(message.completion_error or "Unknown error"))

        def on_timeout() -> None:
            if not result.done():
                result.set_exception(CompletionTimeoutError(timeout_ms=timeout_ms))

        def on_sent(task: asyncio.Task) -> None:
            self._pending_sends.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None and not result.done():
                result.set_exception(error)

        self.on("message", on_message)
        timer = loop.call_later(timeout_ms / 1000, on_timeout)
        self._inflight_completions.add(result)

        request = SingleCompletionRequest(text=prompt, completionRequestId=completion_request_id)
        send = asyncio.ensure_future(self.send_webview_message(request))
        self._pending_sends.add(send)
        send.add_done_callback(on_sent)

        try:
            return await result
        finally:
            timer.cancel()
            self.off("message", on_message)
            self._inflight_completions.discard(result)
            # Releases the bridge's pending request for this send
            if not send.done():
                send.cancel()

    async def inject_configuration(self, config_state: dict[str, Any]) -> None:
        """Merge configuration into the plugin's state and push it to the plugin."""
        self._ensure_ready()
        await self._host.inject_configuration(config_state)

    # Accessors

    def get_state(self) -> dict[str, Any] | None:
        """Last known state snapshot, or None before initialization."""
        if not self._initialized or self._disposed:
            return None
        try:
            return self._host.get_state()
        except Exception as e:
            logger.debug(f"State not available: {e}")
            return None

    def is_ready(self) -> bool:
        return self._initialized and self._activated and not (self._disposed or self._disposing)

    def get_extension_api(self) -> PluginAPI | None:
        if self._disposed:
            return None
        return self._host.plugin_api

    def get_extension_host(self) -> ExtensionHost:
        return self._host

    def get_message_bridge(self) -> MessageBridge:
        return self._bridge

    def get_extension_health(self) -> ExtensionHealth:
        return self._host.get_health()

    @property
    def is_disposed(self) -> bool:
        return self._disposed


def create_extension_service(
    options: ExtensionServiceOptions | None = None,
    settings: HostSettings | None = None,
    **kwargs: Any
) -> ExtensionService:
    """Create an extension service.

    Keyword arguments are accepted as a shorthand for
    ``ExtensionServiceOptions`` fields.
    """
    if options is None:
        options = ExtensionServiceOptions(**kwargs)
    elif kwargs:
        options = options.model_copy(update=kwargs)
    return ExtensionService(options, settings)
