import asyncio
import time

import pytest

from headless_host.communication.messages import StateMessage
from headless_host.extensions.interfaces import LifecyclePhase, PluginAPI
from headless_host.services import ExtensionService, ExtensionServiceOptions, create_extension_service
from headless_host.utils.errors import (
    CompletionError,
    CompletionTimeoutError,
    DisposedError,
    NotActivatedError,
    NotInitializedError,
)
from resources.tests.helpers.plugins import WebviewPlugin, answer_completions, make_plugin


def _service(settings, plugin) -> ExtensionService:
    return ExtensionService(ExtensionServiceOptions(plugin_module=plugin), settings)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestLifecycle:
    """Initialization, readiness and disposal."""

    @pytest.mark.anyio
    async def test_ready_fires_once_with_plugin_api(self, settings):
        service = _service(settings, make_plugin(api={"get_state": lambda: {"value": 1}}))
        ready = []
        service.on("ready", ready.append)

        await service.initialize()
        await service.initialize()

        assert len(ready) == 1
        assert isinstance(ready[0], PluginAPI)
        assert ready[0] is service.get_extension_api()
        assert service.get_state() == {"value": 1}
        assert service.is_ready()

    @pytest.mark.anyio
    async def test_get_state_before_initialize(self, settings):
        service = _service(settings, make_plugin(api={}))

        assert service.get_state() is None
        assert not service.is_ready()

    @pytest.mark.anyio
    async def test_dispose_twice(self, settings):
        service = _service(settings, make_plugin(api={"get_state": lambda: {"value": 1}}))
        disposed = []
        service.on("disposed", lambda: disposed.append(True))
        await service.initialize()

        await service.dispose()
        await service.dispose()

        assert disposed == [True]
        assert service.get_state() is None
        assert service.get_extension_api() is None
        assert service.listener_count("disposed") == 0
        assert service.get_message_bridge().is_disposed

    @pytest.mark.anyio
    async def test_initialize_after_dispose(self, settings):
        service = _service(settings, make_plugin(api={}))
        await service.dispose()

        with pytest.raises(DisposedError):
            await service.initialize()

    @pytest.mark.anyio
    async def test_dispose_during_activation(self, settings):
        started = asyncio.Event()

        async def hanging_activate(context):
            started.set()
            await asyncio.Event().wait()

        service = _service(settings, make_plugin(activate=hanging_activate))
        disposed = []
        service.on("disposed", lambda: disposed.append(True))
        initializing = asyncio.ensure_future(service.initialize())
        await started.wait()

        await asyncio.wait_for(service.dispose(), timeout=1)

        assert service.is_disposed
        assert disposed == [True]
        assert service.get_extension_host().phase is LifecyclePhase.DISPOSED
        with pytest.raises(DisposedError):
            await initializing
        with pytest.raises(DisposedError):
            await service.initialize()

    @pytest.mark.anyio
    async def test_cancelled_dispose_still_ends_disposed(self, settings):
        started = asyncio.Event()
        release = asyncio.Event()

        async def stubborn_activate(context):
            # Ignores cancellation until released
            started.set()
            while not release.is_set():
                try:
                    await release.wait()
                except asyncio.CancelledError:
                    continue

        service = _service(settings, make_plugin(activate=stubborn_activate))
        initializing = asyncio.ensure_future(service.initialize())
        await started.wait()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(service.dispose(), timeout=0.1)

        assert service.is_disposed
        assert service.get_extension_host().phase is LifecyclePhase.DISPOSED
        with pytest.raises(DisposedError):
            await service.initialize()

        release.set()
        await asyncio.gather(initializing, return_exceptions=True)

    @pytest.mark.anyio
    async def test_managed_lifecycle(self, settings):
        service = _service(settings, WebviewPlugin())

        async with service.managed_lifecycle() as running:
            assert running is service
            assert service.is_ready()

        assert service.is_disposed

    @pytest.mark.anyio
    async def test_factory_accepts_keyword_options(self, settings):
        plugin = make_plugin(api={})
        service = create_extension_service(settings=settings, plugin_module=plugin, initial_state={"mode": "ask"})

        await service.initialize()

        assert service.get_state() == {"mode": "ask"}
        assert service.get_extension_host().context is plugin.activate_calls[0]
        await service.dispose()


class TestPreconditions:
    """Each lifecycle precondition fails with its own error."""

    @pytest.mark.anyio
    async def test_send_before_initialize(self, settings):
        service = _service(settings, WebviewPlugin())

        with pytest.raises(NotInitializedError):
            await service.send_webview_message({"type": "newTask"})
        with pytest.raises(NotInitializedError):
            await service.request_single_completion("hello")

    @pytest.mark.anyio
    async def test_send_when_activation_failed(self, settings):
        # No bundle and no module: activation fails, initialize still returns
        service = ExtensionService(ExtensionServiceOptions(), settings)
        errors = []
        service.on("error", errors.append)

        await service.initialize()

        assert errors[0].context == "activation"
        with pytest.raises(NotActivatedError):
            await service.send_webview_message({"type": "newTask"})

    @pytest.mark.anyio
    async def test_send_after_dispose(self, settings):
        service = _service(settings, WebviewPlugin())
        await service.initialize()
        await service.dispose()

        with pytest.raises(DisposedError):
            await service.send_webview_message({"type": "newTask"})


class TestMessages:
    """Message stream and error classification."""

    @pytest.mark.anyio
    async def test_send_reaches_plugin(self, settings):
        plugin = WebviewPlugin()
        service = _service(settings, plugin)
        await service.initialize()

        response = await service.send_webview_message({"type": "askResponse", "text": "yes"})

        assert response == {"success": True}
        assert plugin.provider.received == [{"type": "askResponse", "text": "yes"}]
        await service.dispose()

    @pytest.mark.anyio
    async def test_state_messages_emit_state_change(self, settings):
        plugin = WebviewPlugin()
        service = _service(settings, plugin)
        messages, states, bridged = [], [], []
        service.on("message", messages.append)
        service.on("stateChange", states.append)
        service.get_message_bridge().client_channel.on("message", bridged.append)
        await service.initialize()

        plugin.provider.post({"type": "state", "state": {"mode": "ask"}})

        assert isinstance(messages[-1], StateMessage)
        assert states == [{"mode": "ask"}]
        assert bridged[-1].data == {"type": "extensionMessage", "payload": {"type": "state", "state": {"mode": "ask"}}}
        await service.dispose()

    @pytest.mark.anyio
    async def test_recoverable_faults_are_warnings(self, settings):
        def explode(provider, message):
            raise RuntimeError("handler bug")

        service = _service(settings, WebviewPlugin(on_message=explode))
        warnings, errors = [], []
        service.on("warning", warnings.append)
        service.on("error", errors.append)
        await service.initialize()

        response = await service.send_webview_message({"type": "newTask"})

        assert response == {"success": True}
        assert errors == []
        assert warnings[0].context == "webview-message-newTask"
        assert service.get_extension_health().error_count == 1
        assert service.is_ready()
        await service.dispose()


class TestSingleCompletion:
    """Correlated single completions on top of the message stream."""

    @pytest.mark.anyio
    async def test_completion_resolves_with_text(self, settings):
        service = _service(settings, WebviewPlugin(on_message=answer_completions))
        await service.initialize()

        assert await service.request_single_completion("hello", 1000) == "HELLO"
        await service.dispose()

    @pytest.mark.anyio
    async def test_completion_times_out_and_cleans_up(self, settings):
        service = _service(settings, WebviewPlugin())
        await service.initialize()
        listeners_before = service.listener_count("message")

        started = time.monotonic()
        with pytest.raises(CompletionTimeoutError, match="timed out"):
            await service.request_single_completion("hello", 100)
        elapsed = time.monotonic() - started

        assert 0.09 <= elapsed < 0.5
        assert service.listener_count("message") == listeners_before
        await service.dispose()

    @pytest.mark.anyio
    async def test_timed_out_completions_release_bridge_requests(self, settings):
        async def never_answer(provider, message):
            await asyncio.Event().wait()

        service = _service(settings, WebviewPlugin(on_message=never_answer))
        await service.initialize()
        channel = service.get_message_bridge().client_channel

        for _ in range(3):
            with pytest.raises(CompletionTimeoutError):
                await service.request_single_completion("hello", 30)
        await _settle()

        assert channel.pending_count == 0
        await service.dispose()

    @pytest.mark.anyio
    async def test_out_of_order_responses_are_not_swapped(self, settings):
        plugin = WebviewPlugin()
        service = _service(settings, plugin)
        await service.initialize()
        listeners_before = service.listener_count("message")

        first = asyncio.ensure_future(service.request_single_completion("a", 1000))
        second = asyncio.ensure_future(service.request_single_completion("b", 1000))
        await _settle()

        requests = {m["text"]: m["completionRequestId"] for m in plugin.provider.received}
        for text in ("b", "a"):
            plugin.provider.post({
                "type": "singleCompletionResult",
                "completionRequestId": requests[text],
                "success": True,
                "completionText": text.upper(),
            })

        assert await first == "A"
        assert await second == "B"
        assert service.listener_count("message") == listeners_before
        await service.dispose()

    @pytest.mark.anyio
    async def test_failure_response_rejects_with_plugin_error(self, settings):
        def fail(provider, message):
            provider.post({
                "type": "singleCompletionResult",
                "completionRequestId": message["completionRequestId"],
                "success": False,
                "completionError": "model unavailable",
            })

        service = _service(settings, WebviewPlugin(on_message=fail))
        await service.initialize()

        with pytest.raises(CompletionError, match="model unavailable"):
            await service.request_single_completion("hello", 1000)
        await service.dispose()

    @pytest.mark.anyio
    async def test_failure_without_error_text(self, settings):
        def fail(provider, message):
            provider.post({
                "type": "singleCompletionResult",
                "completionRequestId": message["completionRequestId"],
                "success": True,
            })

        service = _service(settings, WebviewPlugin(on_message=fail))
        await service.initialize()

        with pytest.raises(CompletionError, match="Unknown error"):
            await service.request_single_completion("hello", 1000)
        await service.dispose()

    @pytest.mark.anyio
    async def test_dispose_fails_pending_completions(self, settings):
        service = _service(settings, WebviewPlugin())
        await service.initialize()

        pending = asyncio.ensure_future(service.request_single_completion("hello", 5000))
        await _settle()
        await service.dispose()

        with pytest.raises(DisposedError):
            await pending
