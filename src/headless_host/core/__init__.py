"""
Core infrastructure for Headless Host.

This package contains the event emitter shared by the extension host and
the extension service.
"""

from .events import EventEmitter, Listener

__all__ = [
    "EventEmitter",
    "Listener",
]
