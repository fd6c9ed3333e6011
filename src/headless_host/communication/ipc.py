"""
Two-channel message bridge between the terminal client and the hosted plugin.

Each channel delivers envelopes to its counterpart's listeners in send order.
``request`` registers a pending entry under a fresh correlation id and
suspends until the counterpart calls ``respond`` with that id. The bridge
imposes no deadline of its own: a caller that needs one wraps the request in
a timeout, and cancelling the waiting caller removes its pending entry.
"""

import asyncio
import json
import uuid
from collections.abc import Callable
from typing import Any

from headless_host.communication.messages import IPCMessage, to_wire
from headless_host.core.events import EventEmitter, Listener
from headless_host.utils.errors import (
    BridgeDisposedError,
    DuplicateRequestIdError,
    PayloadTooLargeError,
    PendingLimitError,
)
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

DEFAULT_MAX_PENDING_REQUESTS = 1000
DEFAULT_MAX_PAYLOAD_BYTES = 10 * 1024 * 1024


class IPCChannel:
    """One side of the bridge."""

    def __init__(
        self,
        name: str,
        max_pending_requests: int = DEFAULT_MAX_PENDING_REQUESTS,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        id_factory: Callable[[], str] | None = None,
        enable_logging: bool = False
    ):
        self.name = name
        self.max_pending_requests = max_pending_requests
        self.max_payload_bytes = max_payload_bytes
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._enable_logging = enable_logging
        self._emitter = EventEmitter()
        self._pending: dict[str, asyncio.Future] = {}
        self._counterpart: "IPCChannel | None" = None
        self._disposed = False

    def connect(self, counterpart: "IPCChannel") -> None:
        self._counterpart = counterpart

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def on(self, event: str, listener: Listener) -> "IPCChannel":
        self._emitter.on(event, listener)
        return self

    def off(self, event: str, listener: Listener) -> "IPCChannel":
        self._emitter.off(event, listener)
        return self

    def listener_count(self, event: str) -> int:
        return self._emitter.listener_count(event)

    def send(self, data: Any) -> IPCMessage:
        """Send a notification to the counterpart; no response is expected."""
        envelope = IPCMessage(type="notification", data=data)
        self._deliver(envelope)
        return envelope

    async def request(self, data: Any) -> Any:
        """Send a request and wait for the counterpart's response.

        Raises:
            DuplicateRequestIdError: If the generated id is already pending
            PendingLimitError: If the channel is at its pending limit
            PayloadTooLargeError: If the envelope exceeds the size limit
            BridgeDisposedError: If the bridge is, or becomes, disposed
        """
        self._ensure_open()

        request_id = self._id_factory()
        if request_id in self._pending:
            raise DuplicateRequestIdError(request_id)
        if len(self._pending) >= self.max_pending_requests:
            raise PendingLimitError(
                f"Channel {self.name} already has {len(self._pending)} pending requests",
                context={"channel": self.name, "limit": self.max_pending_requests},
            )

        envelope = IPCMessage(id=request_id, type="request", data=data)
        self._check_size(envelope)

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._deliver(envelope)
            return await future
        finally:
            # Response, cancellation and disposal all end here exactly once
            self._pending.pop(request_id, None)

    def respond(self, request_id: str, payload: Any) -> None:
        """Answer a request this channel received from its counterpart."""
        self._ensure_open()
        envelope = IPCMessage(id=request_id, type="response", data=payload)
        self._check_size(envelope)
        if self._counterpart is None:
            logger.warning(f"Channel {self.name} has no counterpart for response {request_id}")
            return
        self._counterpart._resolve(envelope)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(BridgeDisposedError(f"Channel {self.name} disposed with request {request_id} pending"))
        self._pending.clear()
        self._emitter.remove_all_listeners()

    def _deliver(self, envelope: IPCMessage) -> None:
        self._ensure_open()
        self._check_size(envelope)
        if self._counterpart is None:
            logger.warning(f"Channel {self.name} has no counterpart, dropping {envelope.type}")
            return
        if self._enable_logging:
            logger.debug(f"[{self.name}] -> {envelope.type} {envelope.id}")
        self._counterpart._receive(envelope)

    def _receive(self, envelope: IPCMessage) -> None:
        if self._disposed:
            return
        self._emitter.emit("message", envelope)

    def _resolve(self, envelope: IPCMessage) -> None:
        future = self._pending.get(envelope.id)
        if future is None or future.done():
            # Late (caller gave up), duplicate or forged response
            logger.debug(f"Dropping response with no pending request: {envelope.id}")
            return
        future.set_result(envelope.data)

    def _check_size(self, envelope: IPCMessage) -> None:
        try:
            size = len(json.dumps(envelope.data, default=str))
        except (TypeError, ValueError):
            size = len(repr(envelope.data))
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(
                f"Envelope of {size} bytes exceeds the {self.max_payload_bytes} byte limit",
                context={"channel": self.name, "size": size},
            )

    def _ensure_open(self) -> None:
        if self._disposed:
            raise BridgeDisposedError(f"Channel {self.name} is disposed")


class MessageBridge:
    """Client-side and plugin-side channels wired as counterparts."""

    def __init__(
        self,
        max_pending_requests: int = DEFAULT_MAX_PENDING_REQUESTS,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        id_factory: Callable[[], str] | None = None,
        enable_logging: bool = False
    ):
        self.client_channel = IPCChannel("client", max_pending_requests, max_payload_bytes, id_factory, enable_logging)
        self.plugin_channel = IPCChannel("plugin", max_pending_requests, max_payload_bytes, id_factory, enable_logging)
        self.client_channel.connect(self.plugin_channel)
        self.plugin_channel.connect(self.client_channel)
        self._disposed = False

    @classmethod
    def from_settings(cls, settings: Any, enable_logging: bool = False) -> "MessageBridge":
        return cls(
            max_pending_requests=settings.bridge_max_pending_requests,
            max_payload_bytes=settings.bridge_max_payload_bytes,
            enable_logging=enable_logging,
        )

    def get_client_channel(self) -> IPCChannel:
        return self.client_channel

    def get_plugin_channel(self) -> IPCChannel:
        return self.plugin_channel

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    async def send_webview_message(self, message: Any) -> Any:
        """Request delivery of a webview message on the plugin side."""
        return await self.client_channel.request({"type": "webviewMessage", "payload": to_wire(message)})

    def send_extension_message(self, message: Any) -> IPCMessage:
        """Notify the client side of a message from the plugin."""
        return self.plugin_channel.send({"type": "extensionMessage", "payload": to_wire(message)})

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.client_channel.dispose()
        self.plugin_channel.dispose()
        logger.debug("Message bridge disposed")
