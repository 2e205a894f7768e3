"""Application history store (history.json), newest entry first."""

from __future__ import annotations

import json
from pathlib import Path

import filelock

from dalil.schemas.history import HistoryEntry, HistoryStore

__all__ = [
    'HistoryRepository',
]


class HistoryRepository:
    """Append-and-list access to applied-text history with cross-process locking."""

    def __init__(self, path: Path, lock_path: Path) -> None:
        self._path = path
        self._lock = filelock.FileLock(lock_path)

    def load(self) -> HistoryStore:
        """Load history. Returns an empty store if not exists."""
        if not self._path.exists():
            return HistoryStore()
        raw = self._path.read_text(encoding='utf-8')
        if not raw.strip():
            return HistoryStore()
        return HistoryStore.model_validate_json(raw)

    def add(self, entry: HistoryEntry) -> None:
        with self._lock:
            store = self.load()
            self._save_unlocked(HistoryStore(entries=[entry, *store.entries]))

    def recent(self, limit: int | None = None) -> list[HistoryEntry]:
        entries = list(self.load().entries)
        return entries[:limit] if limit is not None else entries

    def _save_unlocked(self, store: HistoryStore) -> None:
        """Atomic write without acquiring lock (caller must hold lock)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix('.tmp')
        temp_path.write_text(json.dumps(store.to_json_dict(), indent=2, ensure_ascii=False) + '\n', encoding='utf-8')
        temp_path.replace(self._path)
