import anyio
import pytest

from headless_host.communication.messages import (
    ExtensionMessage,
    IPCMessage,
    MessageUpdatedMessage,
    SingleCompletionRequest,
    SingleCompletionResultMessage,
    StateMessage,
    parse_extension_message,
    to_wire,
)
from headless_host.core.events import EventEmitter


def test_emit_calls_listeners_in_order():
    emitter = EventEmitter()
    seen = []
    emitter.on("tick", lambda value: seen.append(("a", value)))
    emitter.on("tick", lambda value: seen.append(("b", value)))

    assert emitter.emit("tick", 1) is True
    assert emitter.emit("nothing") is False
    assert seen == [("a", 1), ("b", 1)]


def test_once_listener_runs_once():
    emitter = EventEmitter()
    seen = []
    emitter.once("tick", seen.append)

    emitter.emit("tick", 1)
    emitter.emit("tick", 2)

    assert seen == [1]
    assert emitter.listener_count("tick") == 0


def test_off_removes_only_that_listener():
    emitter = EventEmitter()
    seen = []

    def first(value):
        seen.append(("first", value))

    def second(value):
        seen.append(("second", value))

    emitter.on("tick", first)
    emitter.on("tick", second)
    emitter.off("tick", first)
    emitter.off("tick", first)  # not registered any more: no-op
    emitter.emit("tick", 1)

    assert seen == [("second", 1)]
    assert emitter.listener_count("tick") == 1


def test_off_removes_bound_method_listener():
    class Sink:
        def __init__(self):
            self.seen = []

        def handle(self, value):
            self.seen.append(value)

    emitter = EventEmitter()
    sink, other = Sink(), Sink()
    emitter.on("message", sink.handle)
    emitter.on("message", other.handle)

    emitter.off("message", sink.handle)
    emitter.emit("message", 1)

    assert sink.seen == []
    assert other.seen == [1]
    assert emitter.listener_count("message") == 1


def test_failing_listener_does_not_break_delivery():
    emitter = EventEmitter()
    seen = []

    def broken(_):
        raise RuntimeError("listener bug")

    emitter.on("tick", broken)
    emitter.on("tick", seen.append)
    emitter.emit("tick", 1)

    assert seen == [1]


def test_listener_may_remove_itself_while_emitting():
    emitter = EventEmitter()
    seen = []

    def self_removing(value):
        seen.append(value)
        emitter.off("tick", self_removing)

    emitter.on("tick", self_removing)
    emitter.on("tick", seen.append)
    emitter.emit("tick", 1)
    emitter.emit("tick", 2)

    assert seen == [1, 1, 2]


@pytest.mark.anyio
async def test_async_listener_is_scheduled():
    emitter = EventEmitter()
    seen = []

    async def listener(value):
        seen.append(value)

    emitter.on("tick", listener)
    emitter.emit("tick", 5)
    await anyio.sleep(0)

    assert seen == [5]


def test_remove_all_listeners():
    emitter = EventEmitter()
    emitter.on("a", print)
    emitter.on("b", print)

    emitter.remove_all_listeners("a")
    assert emitter.event_names() == ["b"]

    emitter.remove_all_listeners()
    assert emitter.event_names() == []


class TestExtensionMessages:
    """Parsing of plugin messages into typed envelopes."""

    def test_known_types_get_typed_models(self):
        state = parse_extension_message({"type": "state", "state": {"mode": "code"}})
        result = parse_extension_message({
            "type": "singleCompletionResult",
            "completionRequestId": "abc",
            "success": True,
            "completionText": "done",
        })

        assert isinstance(state, StateMessage)
        assert state.state == {"mode": "code"}
        assert isinstance(result, SingleCompletionResultMessage)
        assert result.completion_request_id == "abc"
        assert result.completion_text == "done"

    def test_unknown_types_keep_their_fields(self):
        message = parse_extension_message({"type": "taskHistoryResponse", "payload": {"items": []}})

        assert type(message) is ExtensionMessage
        assert message.to_wire() == {"type": "taskHistoryResponse", "payload": {"items": []}}

    def test_malformed_known_type_falls_back_to_open_model(self):
        message = parse_extension_message({"type": "singleCompletionResult", "success": True})

        assert type(message) is ExtensionMessage
        assert message.type == "singleCompletionResult"

    @pytest.mark.parametrize("raw", [None, "state", {"state": {}}, {"type": 3}])
    def test_rejects_messages_without_string_type(self, raw):
        with pytest.raises(ValueError):
            parse_extension_message(raw)

    def test_message_updated_prefers_legacy_field(self):
        message = parse_extension_message({"type": "messageUpdated", "clineMessage": {"ts": 1}})

        assert isinstance(message, MessageUpdatedMessage)
        assert message.resolved_chat_message() == {"ts": 1}

    def test_outbound_wire_shape_uses_camel_case(self):
        request = SingleCompletionRequest(text="hi", completionRequestId="id-1")

        assert to_wire(request) == {"type": "singleCompletion", "text": "hi", "completionRequestId": "id-1"}
        assert to_wire({"type": "mode", "text": "code"}) == {"type": "mode", "text": "code"}

    def test_ipc_message_defaults(self):
        first = IPCMessage(type="notification", data={"x": 1})
        second = IPCMessage(type="notification")

        assert first.id != second.id
        assert first.ts > 0
