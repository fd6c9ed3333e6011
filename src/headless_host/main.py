"""
Main entry point for the Headless Host CLI.

This module provides the command-line interface for hosting a plugin in a
terminal: an interactive JSON-lines session, a one-shot completion and a
settings check.
"""

import asyncio
import json
import os
import stat
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Optional

import click

from headless_host.communication.messages import ExtensionMessage, to_wire
from headless_host.extensions.interfaces import ErrorEvent
from headless_host.services.extension import ExtensionService, create_extension_service
from headless_host.utils.config import get_settings
from headless_host.utils.errors import HeadlessHostError
from headless_host.utils.logging import configure_root_logging, setup_logging

logger = setup_logging(__name__)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Headless Host - run editor plugins from a terminal."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    settings = get_settings()
    configure_root_logging(
        level="DEBUG" if verbose else settings.log_level.upper(),
        structured=settings.log_structured,
        log_file=settings.get_log_file_path(),
    )
    if verbose:
        logger.info("Verbose logging enabled")


@cli.command()
@click.argument('bundle', type=click.Path(exists=True, path_type=Path))
@click.option('--workspace', type=click.Path(file_okay=False, path_type=Path),
              help='Workspace directory handed to the plugin')
@click.option('--root', type=click.Path(path_type=Path),
              help='Plugin asset root (defaults to the bundle directory)')
def run(bundle: Path, workspace: Optional[Path], root: Optional[Path]) -> None:
    """Host BUNDLE and exchange JSON-lines messages over stdin/stdout."""
    service = create_extension_service(
        workspace=str(workspace) if workspace else None,
        extension_bundle_path=str(bundle),
        extension_root_path=str(root) if root else None,
    )
    try:
        asyncio.run(_run_session(service))
    except KeyboardInterrupt:
        click.echo("Session interrupted", err=True)
    except HeadlessHostError as e:
        logger.error(f"Session failed: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def _run_session(service: ExtensionService) -> None:
    def write_message(message: ExtensionMessage) -> None:
        click.echo(json.dumps(to_wire(message), default=str))

    def write_fault(event: ErrorEvent) -> None:
        click.echo(f"[{event.context}] {event.message}", err=True)

    service.on("message", write_message)
    service.on("error", write_fault)
    service.on("warning", write_fault)

    async with service.managed_lifecycle():
        if not service.is_ready():
            raise HeadlessHostError("Extension did not activate", suggestions=["Run with --verbose for details"])

        async for line in _read_stdin_lines():
            text = line.strip()
            if not text:
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError as e:
                click.echo(f"Invalid JSON message: {e}", err=True)
                continue
            if not isinstance(message, dict) or not isinstance(message.get("type"), str):
                click.echo("Messages must be JSON objects with a string 'type'", err=True)
                continue
            await service.send_webview_message(message)


def _stdin_is_watchable() -> bool:
    """True when stdin is a pipe, socket or terminal the event loop can watch."""
    try:
        mode = os.fstat(sys.stdin.fileno()).st_mode
    except (AttributeError, OSError, ValueError):
        # In-memory streams have no descriptor
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or stat.S_ISCHR(mode)


async def _read_stdin_lines() -> AsyncIterator[str]:
    """Yield stdin lines without blocking the loop on pipes and terminals.

    Regular files and in-memory streams never block, so they are read
    directly.
    """
    if not _stdin_is_watchable():
        for line in sys.stdin:
            yield line
        return

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    while True:
        line = await reader.readline()
        if not line:
            break
        yield line.decode("utf-8")


@cli.command()
@click.argument('bundle', type=click.Path(exists=True, path_type=Path))
@click.argument('prompt')
@click.option('--timeout', 'timeout_ms', type=int, default=None,
              help='Timeout in milliseconds (defaults to the configured value)')
@click.option('--workspace', type=click.Path(file_okay=False, path_type=Path),
              help='Workspace directory handed to the plugin')
def complete(bundle: Path, prompt: str, timeout_ms: Optional[int], workspace: Optional[Path]) -> None:
    """Request a single completion of PROMPT from BUNDLE."""
    service = create_extension_service(
        workspace=str(workspace) if workspace else None,
        extension_bundle_path=str(bundle),
    )
    try:
        text = asyncio.run(_complete(service, prompt, timeout_ms))
    except HeadlessHostError as e:
        logger.error(f"Completion failed: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(text)


async def _complete(service: ExtensionService, prompt: str, timeout_ms: Optional[int]) -> str:
    async with service.managed_lifecycle():
        return await service.request_single_completion(prompt, timeout_ms)


@cli.command()
def check() -> None:
    """Validate the current settings."""
    settings = get_settings()
    result = settings.validate_settings()

    click.echo(f"Workspace: {settings.get_workspace_path()}")
    click.echo(f"Bundle: {settings.get_extension_bundle_path() or '(not set)'}")
    click.echo(f"Storage: {settings.get_storage_directory()}")

    for warning in result.warnings:
        click.echo(f"Warning: {warning}")
    for error in result.errors:
        click.echo(f"Error: {error}")

    if not result.valid:
        sys.exit(1)
    click.echo("Settings are valid")


if __name__ == '__main__':
    cli()
