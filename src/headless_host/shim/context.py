"""
Plugin context passed to a plugin's activate entry point.

The context is created once per extension host lifetime. Its only mutable
part is the subscription list, which accumulates disposables the plugin
registers and which the host disposes on deactivation.
"""

from pathlib import Path
from typing import Any

from headless_host.shim.environment import IdentityInfo
from headless_host.shim.primitives import ExtensionMode, Uri
from headless_host.shim.storage import GlobalMemento, Memento, SecretStorage
from headless_host.utils.config import HostSettings
from headless_host.utils.logging import get_plugin_logger, setup_logging

logger = setup_logging(__name__)


class PluginContext:
    """Services and static identity handed to the plugin."""

    def __init__(
        self,
        extension_path: Path,
        workspace_path: Path,
        identity: IdentityInfo,
        global_storage_path: Path,
        workspace_storage_path: Path,
        log_path: Path,
        persist_state: bool = True,
        extension_mode: ExtensionMode = ExtensionMode.PRODUCTION
    ):
        self.subscriptions: list[Any] = []
        self.extension_path = str(extension_path)
        self.extension_uri = Uri.file(self.extension_path)
        self.workspace_path = str(workspace_path)
        self.identity = identity
        self.extension_mode = extension_mode
        self.environment_variable_collection: dict[str, Any] = {}

        self.global_storage_path = str(global_storage_path)
        self.global_storage_uri = Uri.file(self.global_storage_path)
        self.storage_path = str(workspace_storage_path)
        self.storage_uri = Uri.file(self.storage_path)
        self.log_path = str(log_path)
        self.log_uri = Uri.file(self.log_path)

        if persist_state:
            for directory in (global_storage_path, workspace_storage_path, log_path):
                _ensure_directory(directory)

        self.workspace_state = Memento(
            "workspace",
            workspace_storage_path / "workspace-state.json" if persist_state else None,
        )
        self.global_state = GlobalMemento(global_storage_path / "global-state.json" if persist_state else None)
        self.secrets = SecretStorage(global_storage_path / "secrets.json" if persist_state else None)

        self.logger = get_plugin_logger()
        # Set by create_host_api once the namespaces exist
        self.host: Any = None

    @classmethod
    def from_settings(
        cls,
        settings: HostSettings,
        identity: IdentityInfo,
        workspace_path: Path | None = None,
        extension_path: Path | None = None
    ) -> "PluginContext":
        """Build a context whose storage layout follows the settings."""
        workspace = workspace_path or settings.get_workspace_path()
        return cls(
            extension_path=extension_path or settings.get_extension_root_path(),
            workspace_path=workspace,
            identity=identity,
            global_storage_path=settings.get_global_storage_dir(),
            workspace_storage_path=settings.get_workspace_storage_dir(workspace),
            log_path=settings.get_logs_dir(),
            persist_state=settings.persist_state,
        )

    def as_absolute_path(self, relative_path: str) -> str:
        return str(Path(self.extension_path) / relative_path)

    def dispose_subscriptions(self) -> int:
        """Dispose every accumulated subscription.

        Returns:
            Number of subscriptions whose dispose raised
        """
        failures = 0
        while self.subscriptions:
            subscription = self.subscriptions.pop()
            dispose = getattr(subscription, "dispose", None)
            if not callable(dispose):
                continue
            try:
                dispose()
            except Exception as e:
                failures += 1
                logger.warning(f"Subscription dispose failed: {e}")
        return failures


def _ensure_directory(directory: Path) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Failed to create directory {directory}: {e}")
