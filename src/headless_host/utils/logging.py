"""
Logging for Headless Host.

Every module logs through a child of the ``headless_host`` package logger.
Output goes to stderr because stdout belongs to the terminal client's
message protocol. Hosted plugins get their own ``headless_host.plugin``
branch so their output can be filtered separately.
"""

import logging
import logging.config
import sys
from pathlib import Path
from typing import Any

from pythonjsonlogger.json import JsonFormatter

PACKAGE_LOGGER_NAME = "headless_host"
PLUGIN_LOGGER_NAME = f"{PACKAGE_LOGGER_NAME}.plugin"

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _make_formatter(structured: bool) -> logging.Formatter:
    if structured:
        return JsonFormatter(fmt=JSON_FORMAT, datefmt=DATE_FORMAT)
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(name: str | None = None) -> logging.Logger:
    """Return a module logger under the package logger.

    The first call installs a plain-text stderr handler on the package
    logger so that library use without ``configure_root_logging`` still
    reports warnings. Module loggers never carry handlers of their own.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        Logger instance
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_make_formatter(structured=False))
        package_logger.addHandler(handler)
        package_logger.setLevel(logging.INFO)
    return logging.getLogger(name or PACKAGE_LOGGER_NAME)


def configure_root_logging(
    level: str = "INFO",
    structured: bool = False,
    log_file: Path | None = None
) -> None:
    """Replace the package handlers according to CLI settings.

    Args:
        level: Package logging level
        structured: Emit JSON records instead of text
        log_file: Optional file receiving the same records
    """
    formatter = "structured" if structured else "text"
    handlers: dict[str, dict[str, Any]] = {
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "stream": "ext://sys.stderr",
        }
    }
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": formatter,
            "filename": str(log_file),
            "encoding": "utf-8",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": {"format": TEXT_FORMAT, "datefmt": DATE_FORMAT},
            "structured": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": JSON_FORMAT,
                "datefmt": DATE_FORMAT,
            },
        },
        "handlers": handlers,
        # Root stays untouched; records still propagate to it
        "loggers": {
            PACKAGE_LOGGER_NAME: {"level": level, "handlers": list(handlers)},
        },
    })


def get_plugin_logger(extension_name: str | None = None) -> logging.Logger:
    """Get the logger hosted plugins write through."""
    if extension_name:
        return logging.getLogger(f"{PLUGIN_LOGGER_NAME}.{extension_name}")
    return logging.getLogger(PLUGIN_LOGGER_NAME)
