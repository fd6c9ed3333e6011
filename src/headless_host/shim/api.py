"""
Aggregate host API handed to plugins.

``create_host_api`` wires the namespaces a plugin's activation path reaches
for and links them to the plugin context.
"""

from typing import Any

from headless_host.shim.commands import CommandRegistry
from headless_host.shim.context import PluginContext
from headless_host.shim.environment import Environment
from headless_host.shim.primitives import (
    ConfigurationTarget,
    Disposable,
    EventSource,
    ExtensionMode,
    UIKind,
    Uri,
)
from headless_host.shim.window import WebviewRegistrar, WindowAPI
from headless_host.shim.workspace import WorkspaceAPI

HOST_API_VERSION = "1.84.0"


class HostAPI:
    """Namespace object mirroring the editor API surface plugins touch."""

    version = HOST_API_VERSION

    # Classes plugins instantiate directly
    Uri = Uri
    EventSource = EventSource
    EventEmitter = EventSource
    Disposable = Disposable
    ConfigurationTarget = ConfigurationTarget
    ExtensionMode = ExtensionMode
    UIKind = UIKind

    def __init__(
        self,
        context: PluginContext,
        window: WindowAPI,
        workspace: WorkspaceAPI,
        commands: CommandRegistry,
        env: Environment,
        extension_id: str | None = None
    ):
        self.context = context
        self.window = window
        self.workspace = workspace
        self.commands = commands
        self.env = env
        self.extension_id = extension_id

    def get_extension(self, extension_id: str) -> dict[str, Any] | None:
        """Describe the hosted plugin when it looks itself up."""
        if self.extension_id is None or extension_id != self.extension_id:
            return None
        return {
            "id": extension_id,
            "extension_uri": self.context.extension_uri,
            "extension_path": self.context.extension_path,
            "is_active": True,
        }


def create_host_api(
    context: PluginContext,
    app_version: str,
    webview_registrar: WebviewRegistrar | None = None,
    extension_id: str | None = None
) -> HostAPI:
    """Create the host API around an existing plugin context.

    Args:
        context: Plugin context owning the key-value and secret stores
        app_version: Version reported through the environment namespace
        webview_registrar: Receives webview providers the plugin registers
        extension_id: Identifier the plugin uses to look itself up

    Returns:
        HostAPI linked to the context (``context.host``)
    """
    window = WindowAPI(webview_registrar)
    workspace = WorkspaceAPI(context.workspace_path, context.global_state, context.workspace_state)
    commands = CommandRegistry()
    env = Environment(context.identity, app_version)

    api = HostAPI(context, window, workspace, commands, env, extension_id)
    context.host = api
    return api
