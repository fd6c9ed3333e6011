"""
Environment namespace and host identity.

Identity is an explicitly constructed value passed into the host rather than
process-wide state, so activation stays deterministic under test.
"""

import hashlib
import os
import uuid
from typing import Any

from pydantic import BaseModel, Field

from headless_host.shim.primitives import UIKind, Uri
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)


def default_machine_id() -> str:
    """Stable per-machine identifier derived from the hardware node id."""
    return hashlib.sha256(str(uuid.getnode()).encode("utf-8")).hexdigest()


class IdentityInfo(BaseModel):
    """Identity values reported to the plugin."""
    machine_id: str = Field(default_factory=default_machine_id)
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    cli_user_id: str | None = None


class Clipboard:
    """In-memory clipboard."""

    def __init__(self):
        self._text = ""

    async def read_text(self) -> str:
        return self._text

    async def write_text(self, text: str) -> None:
        logger.debug(f"Clipboard write: {text[:100]}{'...' if len(text) > 100 else ''}")
        self._text = text


class Environment:
    """Headless stand-in for the editor's env namespace."""

    def __init__(self, identity: IdentityInfo, app_version: str):
        self.identity = identity
        self.app_name = f"headless-host|{app_version}"
        self.machine_id = identity.machine_id
        self.session_id = identity.session_id
        self.language = "en"
        self.remote_name: str | None = None
        self.shell = os.environ.get("SHELL", "/bin/bash")
        self.uri_scheme = "vscode"
        self.ui_kind = UIKind.DESKTOP
        self.clipboard = Clipboard()
        self.opened_uris: list[str] = []

    async def open_external(self, uri: Uri | str) -> bool:
        text = str(uri)
        logger.info(f"Would open external URL: {text}")
        self.opened_uris.append(text)
        return True

    def as_dict(self) -> dict[str, Any]:
        return {
            "app_name": self.app_name,
            "machine_id": self.machine_id,
            "session_id": self.session_id,
            "language": self.language,
            "shell": self.shell,
            "ui_kind": int(self.ui_kind),
        }
