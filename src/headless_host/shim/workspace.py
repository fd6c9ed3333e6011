"""
Workspace namespace and configuration reader.

Configuration values live in the same global and workspace key-value stores
the plugin context exposes; workspace values take precedence over global ones.
"""

import os
from typing import Any

from pydantic import BaseModel, ConfigDict

from headless_host.shim.primitives import ConfigurationTarget, EventSource, Uri
from headless_host.shim.storage import Memento
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)


class ConfigurationInspect(BaseModel):
    key: str
    default_value: Any = None
    global_value: Any = None
    workspace_value: Any = None


class ConfigurationChangeEvent:
    """Tells listeners which configuration key changed."""

    def __init__(self, key: str):
        self.key = key

    def affects_configuration(self, section: str, scope: Any = None) -> bool:
        return self.key == section or self.key.startswith(f"{section}.")


class WorkspaceConfiguration:
    """Section-scoped configuration reader."""

    def __init__(
        self,
        section: str | None,
        global_state: Memento,
        workspace_state: Memento,
        on_change: EventSource[ConfigurationChangeEvent] | None = None
    ):
        self.section = section
        self._global = global_state
        self._workspace = workspace_state
        self._on_change = on_change

    def _full_key(self, key: str) -> str:
        return f"{self.section}.{key}" if self.section else key

    def get(self, key: str, default: Any = None) -> Any:
        full_key = self._full_key(key)
        workspace_value = self._workspace.get(full_key)
        if workspace_value is not None:
            return workspace_value
        global_value = self._global.get(full_key)
        if global_value is not None:
            return global_value
        return default

    def has(self, key: str) -> bool:
        full_key = self._full_key(key)
        return self._workspace.get(full_key) is not None or self._global.get(full_key) is not None

    def inspect(self, key: str) -> ConfigurationInspect | None:
        full_key = self._full_key(key)
        workspace_value = self._workspace.get(full_key)
        global_value = self._global.get(full_key)
        if workspace_value is None and global_value is None:
            return None
        return ConfigurationInspect(key=full_key, global_value=global_value, workspace_value=workspace_value)

    async def update(
        self,
        key: str,
        value: Any,
        configuration_target: ConfigurationTarget | bool | None = None
    ) -> None:
        """Write a configuration value.

        ``True`` and ``None`` targets mean global, matching the editor API.
        """
        full_key = self._full_key(key)
        if configuration_target in (ConfigurationTarget.WORKSPACE, ConfigurationTarget.WORKSPACE_FOLDER, False):
            store, scope = self._workspace, "workspace"
        else:
            store, scope = self._global, "global"

        await store.update(full_key, value)
        logger.debug(f"Configuration updated: {full_key} ({scope})")

        if self._on_change is not None:
            self._on_change.fire(ConfigurationChangeEvent(full_key))

    def get_all(self) -> dict[str, Any]:
        """Merged view of every stored key, workspace values winning."""
        merged: dict[str, Any] = {}
        for store in (self._global, self._workspace):
            for key in store.keys():
                value = store.get(key)
                if value is not None:
                    merged[key] = value
        return merged


class WorkspaceFolder(BaseModel):
    uri: Uri
    name: str
    index: int = 0

    model_config = ConfigDict(arbitrary_types_allowed=True)


class WorkspaceAPI:
    """Headless stand-in for the editor's workspace namespace."""

    def __init__(self, workspace_path: str, global_state: Memento, workspace_state: Memento):
        self.root_path = workspace_path
        self.workspace_folders = [
            WorkspaceFolder(uri=Uri.file(workspace_path), name=os.path.basename(workspace_path) or workspace_path)
        ]
        self._global_state = global_state
        self._workspace_state = workspace_state
        self.on_did_change_configuration: EventSource[ConfigurationChangeEvent] = EventSource()
        self.on_did_change_workspace_folders: EventSource[Any] = EventSource()

    def get_configuration(self, section: str | None = None, scope: Any = None) -> WorkspaceConfiguration:
        return WorkspaceConfiguration(
            section,
            self._global_state,
            self._workspace_state,
            self.on_did_change_configuration,
        )

    def get_workspace_folder(self, uri: Uri) -> WorkspaceFolder | None:
        folder = self.workspace_folders[0]
        root = folder.uri.fs_path.rstrip(os.sep)
        if uri.fs_path == root or uri.fs_path.startswith(root + os.sep):
            return folder
        return None

    def as_relative_path(self, path_or_uri: str | Uri, include_workspace_folder: bool = False) -> str:
        path = path_or_uri.fs_path if isinstance(path_or_uri, Uri) else str(path_or_uri)
        root = self.root_path.rstrip(os.sep)
        if path != root and not path.startswith(root + os.sep):
            return path
        relative = os.path.relpath(path, root)
        if include_workspace_folder:
            return os.path.join(self.workspace_folders[0].name, relative)
        return relative
