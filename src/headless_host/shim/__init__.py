"""
Host capability shim.

Emulates the subset of an editor's extension API that a plugin's activation
path exercises: secret and key-value stores, a notification surface, a
configuration reader, a command registry, resource identifiers and event
sources.
"""

from headless_host.shim.api import HostAPI, create_host_api
from headless_host.shim.commands import CommandRegistry
from headless_host.shim.context import PluginContext
from headless_host.shim.environment import Environment, IdentityInfo
from headless_host.shim.primitives import (
    ConfigurationTarget,
    Disposable,
    EventSource,
    ExtensionMode,
    NotificationSeverity,
    UIKind,
    Uri,
)
from headless_host.shim.storage import GlobalMemento, Memento, SecretStorage
from headless_host.shim.window import OutputChannel, WindowAPI
from headless_host.shim.workspace import WorkspaceAPI, WorkspaceConfiguration

__all__ = [
    "HostAPI",
    "create_host_api",
    "PluginContext",
    "IdentityInfo",
    "Environment",
    "CommandRegistry",
    "WindowAPI",
    "OutputChannel",
    "WorkspaceAPI",
    "WorkspaceConfiguration",
    "Memento",
    "GlobalMemento",
    "SecretStorage",
    "Disposable",
    "EventSource",
    "Uri",
    "ConfigurationTarget",
    "ExtensionMode",
    "NotificationSeverity",
    "UIKind",
]
