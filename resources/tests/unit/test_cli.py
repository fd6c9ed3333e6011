import json
import logging
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from headless_host.main import _read_stdin_lines, _stdin_is_watchable, cli
from headless_host.utils.config import reload_settings

ECHO_PLUGIN = Path(__file__).resolve().parents[1] / "helpers" / "echo_plugin.py"


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("HEADLESS_HOST_STORAGE_DIRECTORY", str(tmp_path / "storage"))
    monkeypatch.setenv("HEADLESS_HOST_WORKSPACE_PATH", str(tmp_path))
    monkeypatch.setenv("HEADLESS_HOST_PERSIST_STATE", "false")
    monkeypatch.delenv("HEADLESS_HOST_EXTENSION_BUNDLE_PATH", raising=False)
    reload_settings()
    yield tmp_path
    monkeypatch.undo()
    # The CLI binds its handler to the runner's stderr, which is closed by now
    logging.getLogger("headless_host").handlers.clear()
    reload_settings()


def test_complete_prints_completion(isolated_env):
    runner = CliRunner()

    result = runner.invoke(cli, ["complete", str(ECHO_PLUGIN), "hello", "--timeout", "2000"])

    assert result.exit_code == 0, result.output
    assert result.stdout.strip().splitlines()[-1] == "HELLO"


def test_check_reports_missing_bundle(isolated_env):
    runner = CliRunner()

    result = runner.invoke(cli, ["check"])

    assert result.exit_code == 0, result.output
    assert "Warning: No extension bundle configured" in result.stdout
    assert "Settings are valid" in result.stdout


def test_check_fails_for_missing_bundle_path(isolated_env, monkeypatch):
    monkeypatch.setenv("HEADLESS_HOST_EXTENSION_BUNDLE_PATH", str(isolated_env / "missing.py"))
    reload_settings()
    runner = CliRunner()

    result = runner.invoke(cli, ["check"])

    assert result.exit_code == 1
    assert "Extension bundle does not exist" in result.stdout


def test_run_session_echoes_messages(isolated_env):
    runner = CliRunner()
    lines = '{"type": "newTask", "text": "hi"}\nnot json\n\n{"type": 1}\n'

    result = runner.invoke(cli, ["run", str(ECHO_PLUGIN), "--workspace", str(isolated_env)], input=lines)

    assert result.exit_code == 0, result.output
    echoed = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
    assert echoed == [{"type": "echo", "payload": {"type": "newTask", "text": "hi"}}]
    assert "Invalid JSON message" in result.output
    assert "Messages must be JSON objects with a string 'type'" in result.output


@pytest.mark.anyio
async def test_stdin_redirected_from_file_is_read(tmp_path, monkeypatch):
    messages = tmp_path / "messages.jsonl"
    messages.write_text('{"type": "a"}\n{"type": "b"}\n')

    with messages.open() as handle:
        monkeypatch.setattr(sys, "stdin", handle)
        assert not _stdin_is_watchable()
        lines = [line async for line in _read_stdin_lines()]

    assert [json.loads(line)["type"] for line in lines] == ["a", "b"]
