"""
Value types and event primitives exposed to hosted plugins.

These mirror the small set of editor API building blocks a plugin's activation
path constructs directly: disposables, event sources and resource identifiers.
"""

import posixpath
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Any, Generic, TypeVar
from urllib.parse import urlsplit

from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

T = TypeVar("T")


class Disposable:
    """Releases a resource exactly once."""

    def __init__(self, callback: Callable[[], Any] | None = None):
        self._callback = callback
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._callback is not None:
            self._callback()

    @classmethod
    def from_(cls, *disposables: Any) -> "Disposable":
        """Combine several disposables into one."""
        def _dispose_all() -> None:
            for item in disposables:
                item.dispose()
        return cls(_dispose_all)


class EventSource(Generic[T]):
    """Event-source factory handed to plugins.

    ``event`` subscribes a listener and returns a Disposable that removes it.
    ``fire`` notifies every listener; a failing listener never fails ``fire``.
    """

    def __init__(self):
        self._listeners: list[Callable[[T], Any]] = []

    def event(
        self,
        listener: Callable[[T], Any],
        this_args: Any = None,
        disposables: list[Any] | None = None
    ) -> Disposable:
        fn = listener.__get__(this_args) if this_args is not None and hasattr(listener, "__get__") else listener
        self._listeners.append(fn)

        def _remove() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        disposable = Disposable(_remove)
        if disposables is not None:
            disposables.append(disposable)
        return disposable

    # Plugins commonly call the subscription like the editor's `onDidX(listener)`
    __call__ = event

    def fire(self, data: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception as e:
                logger.debug(f"Event listener raised, ignoring: {e}")

    def dispose(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


@dataclass(frozen=True)
class Uri:
    """Resource identifier with editor-compatible helpers."""
    scheme: str
    authority: str = ""
    path: str = ""
    query: str = ""
    fragment: str = ""

    @classmethod
    def file(cls, path: str) -> "Uri":
        return cls("file", "", str(path), "", "")

    @classmethod
    def parse(cls, value: str) -> "Uri":
        parts = urlsplit(value)
        return cls(parts.scheme, parts.netloc, parts.path, parts.query, parts.fragment)

    @classmethod
    def join_path(cls, base: "Uri", *path_segments: str) -> "Uri":
        return replace(base, path=posixpath.join(base.path, *path_segments))

    def with_(self, **change: str) -> "Uri":
        """Return a copy with the given components replaced."""
        unknown = set(change) - {"scheme", "authority", "path", "query", "fragment"}
        if unknown:
            raise ValueError(f"Unknown Uri components: {sorted(unknown)}")
        return replace(self, **change)

    @property
    def fs_path(self) -> str:
        return self.path

    def __str__(self) -> str:
        query = f"?{self.query}" if self.query else ""
        fragment = f"#{self.fragment}" if self.fragment else ""
        return f"{self.scheme}://{self.authority}{self.path}{query}{fragment}"


class ConfigurationTarget(IntEnum):
    GLOBAL = 1
    WORKSPACE = 2
    WORKSPACE_FOLDER = 3


class ExtensionMode(IntEnum):
    PRODUCTION = 1
    DEVELOPMENT = 2
    TEST = 3


class UIKind(IntEnum):
    DESKTOP = 1
    WEB = 2


class NotificationSeverity(str, Enum):
    """Severities of the notification surface."""
    INFORMATION = "information"
    WARNING = "warning"
    ERROR = "error"
