"""
Durable keyed storage.

The host decides where execution history lives; the engine only needs
``get``/``set``/``delete`` of JSON text under a string key.
"""

import logging
from pathlib import Path
from typing import Protocol

from flowengine.utils.io import atomic_write

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStorage:
    """Process-local storage for tests and ephemeral runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """
    One file per key under ``base_path``.

    Directory structure:
    {base_path}/
      {key}.json
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    def _validate_key(self, key: str) -> None:
        """
        Validate key to prevent path traversal.

        Raises:
            ValueError: If key is empty or contains path separators or traversal
        """
        if not key or key.strip() == "":
            raise ValueError("Key cannot be empty")
        if "/" in key or "\\" in key:
            raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")
        if ".." in key or key.startswith("."):
            raise ValueError(f"Invalid key format: path traversal detected in '{key}'")
        if "\x00" in key:
            raise ValueError("Invalid key format: null bytes not allowed")

    def _path(self, key: str) -> Path:
        self._validate_key(key)
        return self.base_path / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        with atomic_write(self._path(key)) as f:
            f.write(value)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.debug(f"Deleted storage key {key}")
