"""
Message envelopes exchanged with the hosted plugin.

On the wire every message is a camelCase dictionary keyed by ``type``, the
same shape the plugin exchanges with its graphical webview. The kinds the
host and service act on have typed models, selected through an explicit
discriminator table; every other kind parses to the open ``ExtensionMessage``
model, which keeps its fields untouched.
"""

import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)


class ExtensionMessage(BaseModel):
    """Message sent by the plugin toward its webview."""
    type: str

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StateMessage(ExtensionMessage):
    """Full or partial snapshot of the plugin's state."""
    type: Literal["state"] = "state"
    state: dict[str, Any] | None = None


class SingleCompletionResultMessage(ExtensionMessage):
    """Answer to a single completion request."""
    type: Literal["singleCompletionResult"] = "singleCompletionResult"
    completion_request_id: str = Field(alias="completionRequestId")
    success: bool = False
    completion_text: str | None = Field(default=None, alias="completionText")
    completion_error: str | None = Field(default=None, alias="completionError")


class MessageUpdatedMessage(ExtensionMessage):
    """Update of one chat message; older plugins use ``clineMessage``."""
    type: Literal["messageUpdated"] = "messageUpdated"
    chat_message: Any = Field(default=None, alias="chatMessage")
    cline_message: Any = Field(default=None, alias="clineMessage")

    def resolved_chat_message(self) -> Any:
        return self.cline_message if self.cline_message is not None else self.chat_message


# Discriminator → model for the kinds the core must recognize
EXTENSION_MESSAGE_TYPES: dict[str, type[ExtensionMessage]] = {
    "state": StateMessage,
    "singleCompletionResult": SingleCompletionResultMessage,
    "messageUpdated": MessageUpdatedMessage,
}


def parse_extension_message(raw: Any) -> ExtensionMessage:
    """Parse a plugin message into its typed model.

    A recognized ``type`` whose payload does not fit the typed model falls
    back to the open model so the message is still forwarded.

    Raises:
        ValueError: If the message is not a mapping with a string ``type``
    """
    if isinstance(raw, ExtensionMessage):
        return raw
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise ValueError(f"Extension message must be a mapping with a string 'type', got {raw!r:.200}")

    model = EXTENSION_MESSAGE_TYPES.get(raw["type"], ExtensionMessage)
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Message {raw['type']} does not match its typed model, keeping it open: {e}")
        return ExtensionMessage.model_validate(raw)


class WebviewMessage(BaseModel):
    """Message sent toward the plugin, as its webview would send it."""
    type: str

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SingleCompletionRequest(WebviewMessage):
    """Ask the plugin for one completion of ``text``."""
    type: Literal["singleCompletion"] = "singleCompletion"
    text: str
    completion_request_id: str = Field(alias="completionRequestId")


def to_wire(message: BaseModel | dict[str, Any]) -> dict[str, Any]:
    """Dictionary form of an inbound or outbound message."""
    if isinstance(message, (ExtensionMessage, WebviewMessage)):
        return message.to_wire()
    if isinstance(message, BaseModel):
        return message.model_dump(by_alias=True, exclude_none=True)
    return dict(message)


def message_type(message: BaseModel | dict[str, Any]) -> str | None:
    if isinstance(message, dict):
        value = message.get("type")
    else:
        value = getattr(message, "type", None)
    return value if isinstance(value, str) else None


class IPCMessage(BaseModel):
    """Bridge envelope.

    Requests carry the caller's correlation id and responses echo it;
    notifications get a fresh id for tracing only.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: Literal["notification", "request", "response"]
    data: Any = None
    ts: float = Field(default_factory=time.time)
