"""
Service layer exposed to terminal clients.
"""

from headless_host.services.extension import (
    ExtensionService,
    ExtensionServiceOptions,
    create_extension_service,
)

__all__ = [
    "ExtensionService",
    "ExtensionServiceOptions",
    "create_extension_service",
]
