"""
Configuration management for Headless Host.

This module provides centralized configuration using Pydantic settings
with support for environment variables and .env files.
"""

import hashlib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = []
    warnings: list[str] = []


class HostSettings(BaseSettings):
    """Headless Host configuration settings."""

    # Application
    app_name: str = "headless-host"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)

    # Plugin location
    workspace_path: str = Field(default="", description="Workspace directory handed to the plugin (defaults to cwd)")
    extension_bundle_path: str = Field(default="", description="Path to the plugin module (.py file or package directory)")
    extension_root_path: str = Field(default="", description="Root directory for plugin assets (defaults to the bundle's directory)")
    primary_webview_view_id: str | None = Field(default=None, description="Webview provider that receives webview messages")

    # Shim storage
    storage_directory: str = Field(default="~/.headless-host", description="Root directory for plugin state, secrets and logs")
    persist_state: bool = Field(default=True, description="Back key-value stores and secrets with JSON files")

    # Extension host behaviour
    webview_launch_debounce_ms: int = Field(default=1000, description="Minimum interval between handled webviewDidLaunch messages")
    max_errors_before_warning: int = Field(default=10, description="Fault count after which the plugin is reported unhealthy")

    # Message bridge bounds
    bridge_max_pending_requests: int = Field(default=1000, description="Maximum pending requests per bridge channel")
    bridge_max_payload_bytes: int = Field(default=10 * 1024 * 1024, description="Maximum serialized envelope size in bytes")

    # Extension service
    completion_timeout_ms: int = Field(default=60000, description="Default timeout for single completion requests")

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_structured: bool = Field(default=False, description="Emit JSON log records")
    log_file: str = Field(default="", description="Optional log file path")

    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="HEADLESS_HOST_",
        extra="ignore",
    )

    def get_workspace_path(self) -> Path:
        """Get workspace path as Path object."""
        if self.workspace_path:
            return Path(self.workspace_path).expanduser().resolve()
        return Path.cwd()

    def get_extension_bundle_path(self) -> Path | None:
        """Get plugin bundle path as Path object."""
        if self.extension_bundle_path:
            return Path(self.extension_bundle_path).expanduser().resolve()
        return None

    def get_extension_root_path(self) -> Path:
        """Get plugin asset root, falling back to the bundle's directory."""
        if self.extension_root_path:
            return Path(self.extension_root_path).expanduser().resolve()
        bundle = self.get_extension_bundle_path()
        if bundle is not None:
            return bundle if bundle.is_dir() else bundle.parent
        return self.get_workspace_path()

    def get_storage_directory(self) -> Path:
        """Get storage root as Path object."""
        return Path(self.storage_directory).expanduser().resolve()

    def get_global_storage_dir(self) -> Path:
        return self.get_storage_directory() / "global-storage"

    def get_workspace_storage_dir(self, workspace_path: Path | None = None) -> Path:
        """Get the per-workspace storage directory.

        Workspaces are keyed by a short hash of their resolved path so that two
        checkouts never share state.
        """
        workspace = workspace_path or self.get_workspace_path()
        digest = hashlib.sha256(str(workspace).encode("utf-8")).hexdigest()[:16]
        return self.get_storage_directory() / "workspace-storage" / digest

    def get_logs_dir(self) -> Path:
        return self.get_storage_directory() / "logs"

    def get_log_file_path(self) -> Path | None:
        """Get log file path as Path object."""
        if not self.log_file:
            return None
        path = Path(self.log_file).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def validate_settings(self) -> ValidationResult:
        """Validate settings and return status information."""
        status = ValidationResult()

        bundle = self.get_extension_bundle_path()
        if bundle is None:
            status.warnings.append("No extension bundle configured")
        elif not bundle.exists():
            status.errors.append(f"Extension bundle does not exist: {bundle}")
            status.valid = False

        workspace = self.get_workspace_path()
        if not workspace.is_dir():
            status.errors.append(f"Workspace path is not a directory: {workspace}")
            status.valid = False

        if self.completion_timeout_ms <= 0:
            status.errors.append("Completion timeout must be positive")
            status.valid = False

        if self.bridge_max_pending_requests < 1:
            status.errors.append("Bridge must allow at least one pending request")
            status.valid = False

        if self.bridge_max_payload_bytes < 1024:
            status.warnings.append(
                f"Bridge payload limit of {self.bridge_max_payload_bytes} bytes will reject most state snapshots"
            )

        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            status.errors.append(f"Unknown log level: {self.log_level}")
            status.valid = False

        return status

    def get_bridge_config(self) -> dict[str, Any]:
        """Get message bridge bounds as a dictionary."""
        return {
            "max_pending_requests": self.bridge_max_pending_requests,
            "max_payload_bytes": self.bridge_max_payload_bytes,
        }


# Global settings instance
settings = HostSettings()


def get_settings() -> HostSettings:
    """Get the global settings instance."""
    return settings


def reload_settings() -> HostSettings:
    """Reload settings from environment and return new instance."""
    global settings
    settings = HostSettings()
    return settings
