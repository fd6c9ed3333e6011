"""
Synchronous event emitter.

Listeners run inline, in registration order, on the emitting call. A listener
that raises is logged and skipped so one consumer can never break delivery to
the others. Coroutine listeners are scheduled as tasks on the running loop.
"""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

Listener = Callable[..., Any]


@dataclass(eq=False)
class _Registration:
    """A single listener registration."""
    listener: Listener
    once: bool = False


class EventEmitter:
    """Named-event emitter with per-registration removal."""

    def __init__(self):
        self._listeners: dict[str, list[_Registration]] = {}
        self._background_tasks: set[asyncio.Task] = set()

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener for an event."""
        self._listeners.setdefault(event, []).append(_Registration(listener))
        return self

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener that is removed after its first call."""
        self._listeners.setdefault(event, []).append(_Registration(listener, once=True))
        return self

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        """Remove one registration of this listener.

        Bound methods match by their object and function, so
        ``off(event, obj.method)`` undoes ``on(event, obj.method)``.

        Removing a listener that is not registered is a no-op.
        """
        registrations = self._listeners.get(event)
        if not registrations:
            return self
        for index, registration in enumerate(registrations):
            if registration.listener == listener:
                del registrations[index]
                break
        if not registrations:
            del self._listeners[event]
        return self

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener registered for the event.

        Returns:
            True if at least one listener was registered
        """
        registrations = self._listeners.get(event)
        if not registrations:
            return False

        # Snapshot so listeners may add or remove registrations while we iterate
        for registration in list(registrations):
            if registration.once:
                self._remove_registration(event, registration)
            try:
                result = registration.listener(*args)
                if inspect.isawaitable(result):
                    self._track(result, event)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}", exc_info=True)
        return True

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> list[str]:
        return list(self._listeners)

    def remove_all_listeners(self, event: str | None = None) -> "EventEmitter":
        """Remove every listener, or every listener of one event."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def _remove_registration(self, event: str, registration: _Registration) -> None:
        registrations = self._listeners.get(event)
        if registrations and registration in registrations:
            registrations.remove(registration)
            if not registrations:
                del self._listeners[event]

    def _track(self, awaitable: Any, event: str) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background_tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(f"Async listener for '{event}' failed: {finished.exception()}")

        task.add_done_callback(_done)
