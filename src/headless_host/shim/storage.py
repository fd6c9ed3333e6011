"""
Key-value and secret stores for hosted plugins.

Both stores are optionally backed by a JSON file. Backing-file failures are
logged and never raised: a plugin must not crash because its state could not
be persisted.
"""

import json
from pathlib import Path
from typing import Any

from headless_host.shim.primitives import EventSource
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)


class _JsonFileStore:
    """Dictionary persisted to an optional JSON file."""

    def __init__(self, file_path: Path | None):
        self.file_path = file_path
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if self.file_path is None or not self.file_path.exists():
            return
        try:
            with open(self.file_path, encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._data = data
            else:
                logger.warning(f"Ignoring non-object store file {self.file_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load store from {self.file_path}: {e}")
            self._data = {}

    def _save(self) -> None:
        if self.file_path is None:
            return
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.file_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, default=str)
        except (OSError, TypeError) as e:
            logger.warning(f"Failed to save store to {self.file_path}: {e}")


class Memento(_JsonFileStore):
    """Key-value store scoped to "global" or "workspace".

    ``get`` is synchronous and total; ``update`` is awaitable and a value of
    None deletes the key.
    """

    def __init__(self, scope: str, file_path: Path | None = None):
        self.scope = scope
        super().__init__(file_path)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key)
        return default if value is None else value

    async def update(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        self._save()

    def keys(self) -> list[str]:
        return list(self._data)

    def __repr__(self) -> str:
        return f"Memento(scope={self.scope!r}, keys={len(self._data)})"


class GlobalMemento(Memento):
    """Global-scope store; settings sync is not available headlessly."""

    def __init__(self, file_path: Path | None = None):
        super().__init__("global", file_path)
        self.synced_keys: list[str] = []

    def set_keys_for_sync(self, keys: list[str]) -> None:
        self.synced_keys = list(keys)


class SecretStorage(_JsonFileStore):
    """Secret string store.

    Every mutation fires ``on_did_change`` with the affected key.
    """

    def __init__(self, file_path: Path | None = None):
        super().__init__(file_path)
        self._on_did_change: EventSource[dict[str, str]] = EventSource()

    @property
    def on_did_change(self) -> EventSource[dict[str, str]]:
        return self._on_did_change

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def store(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Secret values must be strings, got {type(value).__name__}")
        self._data[key] = value
        self._save()
        self._on_did_change.fire({"key": key})

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._save()
        self._on_did_change.fire({"key": key})
