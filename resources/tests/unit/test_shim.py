import json
from pathlib import Path

import pytest

from headless_host.shim import (
    CommandRegistry,
    ConfigurationTarget,
    Disposable,
    EventSource,
    IdentityInfo,
    Memento,
    NotificationSeverity,
    PluginContext,
    SecretStorage,
    Uri,
    WindowAPI,
    create_host_api,
)


class TestPrimitives:
    """Disposables, event sources and resource identifiers."""

    def test_disposable_runs_callback_once(self):
        calls = []
        disposable = Disposable(lambda: calls.append(1))

        disposable.dispose()
        disposable.dispose()

        assert calls == [1]
        assert disposable.is_disposed

    def test_event_source_subscription_disposes_listener(self):
        source = EventSource()
        seen = []

        subscription = source.event(seen.append)
        source.fire("a")
        subscription.dispose()
        source.fire("b")

        assert seen == ["a"]
        assert source.listener_count == 0

    def test_event_source_survives_failing_listener(self):
        source = EventSource()
        seen = []

        def broken(_):
            raise RuntimeError("listener bug")

        source(broken)
        source(seen.append)
        source.fire(1)

        assert seen == [1]

    def test_event_source_collects_disposables(self):
        source = EventSource()
        bag: list = []

        source.event(lambda _: None, disposables=bag)

        assert len(bag) == 1
        assert isinstance(bag[0], Disposable)

    def test_uri_file_and_join_path(self):
        base = Uri.file("/work/project")
        joined = Uri.join_path(base, "src", "main.py")

        assert joined.scheme == "file"
        assert joined.fs_path == "/work/project/src/main.py"
        assert str(joined) == "file:///work/project/src/main.py"

    def test_uri_parse_and_with(self):
        uri = Uri.parse("https://example.com/docs?q=1#top")

        assert uri.authority == "example.com"
        assert uri.query == "q=1"
        assert uri.fragment == "top"
        assert uri.with_(path="/other").path == "/other"

        with pytest.raises(ValueError):
            uri.with_(port="80")


class TestStores:
    """Key-value and secret stores."""

    @pytest.mark.anyio
    async def test_memento_get_is_total(self):
        memento = Memento("workspace")

        assert memento.get("missing") is None
        assert memento.get("missing", "fallback") == "fallback"

        await memento.update("key", {"nested": True})
        assert memento.get("key") == {"nested": True}

        await memento.update("key", None)
        assert memento.get("key") is None
        assert memento.keys() == []

    @pytest.mark.anyio
    async def test_memento_persists_to_json(self, tmp_path: Path):
        path = tmp_path / "state.json"
        memento = Memento("global", path)
        await memento.update("taskHistory", [1, 2])

        assert json.loads(path.read_text()) == {"taskHistory": [1, 2]}
        assert Memento("global", path).get("taskHistory") == [1, 2]

    def test_memento_ignores_corrupt_file(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        memento = Memento("global", path)

        assert memento.keys() == []

    @pytest.mark.anyio
    async def test_secret_storage_fires_on_change(self):
        secrets = SecretStorage()
        changes = []
        secrets.on_did_change(changes.append)

        await secrets.store("apiKey", "s3cret")
        assert await secrets.get("apiKey") == "s3cret"

        await secrets.delete("apiKey")
        assert await secrets.get("apiKey") is None
        assert changes == [{"key": "apiKey"}, {"key": "apiKey"}]

    @pytest.mark.anyio
    async def test_secret_storage_rejects_non_strings(self):
        secrets = SecretStorage()

        with pytest.raises(TypeError):
            await secrets.store("apiKey", 42)


class TestWindowAndCommands:
    """Notification surface and command registry."""

    @pytest.mark.anyio
    async def test_notifications_are_recorded(self):
        window = WindowAPI()

        result = await window.show_error_message("boom", "Retry")
        await window.show_information_message("hello")

        assert result is None
        assert window.notifications == [
            (NotificationSeverity.ERROR, "boom"),
            (NotificationSeverity.INFORMATION, "hello"),
        ]

    @pytest.mark.anyio
    async def test_pickers_answer_with_neutral_defaults(self):
        window = WindowAPI()

        assert await window.show_quick_pick(["first", "second"]) == "first"
        assert await window.show_quick_pick([]) is None
        assert await window.show_input_box() == ""

    def test_webview_registration_goes_to_registrar(self):
        registered = []
        window = WindowAPI(lambda view_id, provider: registered.append((view_id, provider)))
        provider = object()

        disposable = window.register_webview_view_provider("view", provider)

        assert registered == [("view", provider)]
        assert isinstance(disposable, Disposable)

    @pytest.mark.anyio
    async def test_execute_registered_command(self):
        registry = CommandRegistry()

        async def add(a, b):
            return a + b

        subscription = registry.register_command("math.add", add)
        assert await registry.execute_command("math.add", 2, 3) == 5

        subscription.dispose()
        assert not registry.has_command("math.add")
        assert await registry.execute_command("math.add", 2, 3) is None

    @pytest.mark.anyio
    async def test_command_errors_propagate(self):
        registry = CommandRegistry()

        def fail():
            raise ValueError("bad command")

        registry.register_command("fail", fail)

        with pytest.raises(ValueError, match="bad command"):
            await registry.execute_command("fail")

    @pytest.mark.anyio
    async def test_builtin_commands_are_noops(self):
        registry = CommandRegistry()

        assert await registry.execute_command("setContext", "key", True) is None
        assert await registry.get_commands() == []


class TestHostApi:
    """Plugin context and the aggregate host API."""

    @pytest.fixture
    def context(self, tmp_path: Path) -> PluginContext:
        workspace = tmp_path / "workspace"
        workspace.mkdir()
        return PluginContext(
            extension_path=tmp_path / "ext",
            workspace_path=workspace,
            identity=IdentityInfo(machine_id="machine", cli_user_id="user"),
            global_storage_path=tmp_path / "global",
            workspace_storage_path=tmp_path / "ws",
            log_path=tmp_path / "logs",
        )

    def test_context_paths_and_stores(self, context: PluginContext, tmp_path: Path):
        assert context.extension_uri.fs_path == str(tmp_path / "ext")
        assert context.as_absolute_path("dist/index.js") == str(tmp_path / "ext" / "dist" / "index.js")
        assert context.global_state.scope == "global"
        assert context.workspace_state.scope == "workspace"
        assert (tmp_path / "global").is_dir()

    def test_context_disposes_subscriptions(self, context: PluginContext):
        calls = []

        def broken():
            raise RuntimeError("dispose failed")

        context.subscriptions.extend([Disposable(lambda: calls.append("a")), Disposable(broken)])

        assert context.dispose_subscriptions() == 1
        assert calls == ["a"]
        assert context.subscriptions == []

    @pytest.mark.anyio
    async def test_configuration_prefers_workspace_values(self, context: PluginContext):
        api = create_host_api(context, "1.2.3")
        config = api.workspace.get_configuration("plugin")
        changes = []
        api.workspace.on_did_change_configuration(changes.append)

        await config.update("model", "global-model")
        await config.update("model", "workspace-model", ConfigurationTarget.WORKSPACE)

        assert config.get("model") == "workspace-model"
        assert config.get("missing", 7) == 7
        assert context.global_state.get("plugin.model") == "global-model"
        assert [c.affects_configuration("plugin") for c in changes] == [True, True]

    def test_host_api_links_context(self, context: PluginContext):
        api = create_host_api(context, "1.2.3", extension_id="publisher.plugin")

        assert context.host is api
        assert api.env.machine_id == "machine"
        assert api.get_extension("publisher.plugin")["extension_path"] == context.extension_path
        assert api.get_extension("someone.else") is None
        assert api.Uri is Uri
