"""
Execution history - a bounded, newest-first list of finished runs.

Persisted as one JSON array under a single storage key. Saving is
best-effort: a failing backend is logged and never fails a run.
"""

import json
import logging

from pydantic import TypeAdapter, ValidationError

from flowengine.config import DEFAULT_HISTORY_STORAGE_KEY, DEFAULT_MAX_HISTORY_LENGTH, EngineConfig
from flowengine.schemas.history import HistoryEntry
from flowengine.storage.kv import JsonFileStorage, KeyValueStorage

logger = logging.getLogger(__name__)

_entries_adapter = TypeAdapter(list[HistoryEntry])


class HistoryStore:
    """
    Ring buffer of HistoryEntry, oldest evicted first.

    Example:
        history = HistoryStore(JsonFileStorage(path))
        history.add(HistoryEntry.from_report(report, run_id, flow_id, flow_name))
        latest = history.entries[0]
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = DEFAULT_HISTORY_STORAGE_KEY,
        max_length: int = DEFAULT_MAX_HISTORY_LENGTH,
    ):
        self.storage = storage
        self.key = key
        self.max_length = max_length
        self._entries: list[HistoryEntry] = self.load()

    @classmethod
    def from_config(cls, config: EngineConfig) -> "HistoryStore":
        """File-backed history under ``config.storage_path`` with the configured key and bound."""
        return cls(
            JsonFileStorage(config.storage_path),
            key=config.history_storage_key,
            max_length=config.max_history_length,
        )

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> list[HistoryEntry]:
        """Read persisted entries. Corrupt or missing data yields an empty history."""
        try:
            raw = self.storage.get(self.key)
        except OSError as e:
            logger.error(f"Failed to load execution history: {e}")
            return []
        if not raw:
            return []
        try:
            entries = _entries_adapter.validate_json(raw)
        except ValidationError as e:
            logger.error(f"Failed to parse execution history: {e}")
            return []
        return entries[: self.max_length]

    def add(self, entry: HistoryEntry) -> None:
        """Prepend an entry, evict past ``max_length``, persist."""
        self._entries.insert(0, entry)
        del self._entries[self.max_length :]
        self.save()

    def save(self) -> None:
        payload = json.dumps([e.model_dump(mode="json") for e in self._entries])
        try:
            self.storage.set(self.key, payload)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save execution history: {e}")

    def clear(self) -> None:
        self._entries = []
        try:
            self.storage.delete(self.key)
        except OSError as e:
            logger.error(f"Failed to clear execution history: {e}")

    def for_flow(self, flow_id: str) -> list[HistoryEntry]:
        return [e for e in self._entries if e.flow_id == flow_id]
