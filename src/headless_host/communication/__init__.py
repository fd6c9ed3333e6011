"""
Message envelopes and the two-channel bridge between client and plugin.
"""

from headless_host.communication.ipc import IPCChannel, MessageBridge
from headless_host.communication.messages import (
    EXTENSION_MESSAGE_TYPES,
    ExtensionMessage,
    IPCMessage,
    MessageUpdatedMessage,
    SingleCompletionRequest,
    SingleCompletionResultMessage,
    StateMessage,
    WebviewMessage,
    parse_extension_message,
    to_wire,
)

__all__ = [
    "IPCChannel",
    "MessageBridge",
    "IPCMessage",
    "ExtensionMessage",
    "StateMessage",
    "SingleCompletionResultMessage",
    "MessageUpdatedMessage",
    "WebviewMessage",
    "SingleCompletionRequest",
    "EXTENSION_MESSAGE_TYPES",
    "parse_extension_message",
    "to_wire",
]
