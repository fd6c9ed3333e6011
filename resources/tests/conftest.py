"""Pytest configuration for resources/tests.

Ensures the repository root is on sys.path so tests can import
helpers via absolute package path like `resources.tests.helpers`.
"""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from headless_host.utils.config import HostSettings  # noqa: E402


@pytest.fixture
def anyio_backend():
    # The host schedules work on the asyncio loop directly
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's environment and home directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return HostSettings(
        workspace_path=str(workspace),
        storage_directory=str(tmp_path / "storage"),
        persist_state=False,
        webview_launch_debounce_ms=1000,
        completion_timeout_ms=2000,
        _env_file=None,
    )
