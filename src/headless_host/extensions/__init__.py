"""
Extension hosting for Headless Host.

This package loads a plugin module, activates it against the capability
shim, and isolates the rest of the process from its faults.
"""

from headless_host.extensions.host import ExtensionHost, is_expected_error
from headless_host.extensions.interfaces import (
    ErrorEvent,
    ExtensionHealth,
    LifecyclePhase,
    PluginAPI,
    PluginModule,
)
from headless_host.extensions.loader import load_plugin_module, validate_plugin_module
from headless_host.extensions.webview import HeadlessWebview, HeadlessWebviewView
from headless_host.shim.context import PluginContext

__all__ = [
    # Host
    "ExtensionHost",
    "is_expected_error",

    # Interfaces
    "ErrorEvent",
    "ExtensionHealth",
    "LifecyclePhase",
    "PluginAPI",
    "PluginModule",
    "PluginContext",

    # Loading
    "load_plugin_module",
    "validate_plugin_module",

    # Webview
    "HeadlessWebview",
    "HeadlessWebviewView",
]
