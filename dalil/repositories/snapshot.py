"""Runtime snapshot store - last scan's descriptors for inspection between scans."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

import filelock

from dalil.schemas.fields import FieldDescriptor
from dalil.schemas.runtime import RuntimeSnapshot

__all__ = [
    'SnapshotStore',
]


class SnapshotStore:
    """Persists runtime/fields.json. Purely observational: never authorizes a mutation."""

    def __init__(self, path: Path, lock_path: Path) -> None:
        self._path = path
        self._lock = filelock.FileLock(lock_path)

    def load(self) -> RuntimeSnapshot | None:
        if not self._path.exists():
            return None
        raw = self._path.read_text(encoding='utf-8')
        if not raw.strip():
            return None
        return RuntimeSnapshot.model_validate_json(raw)

    def save(self, fields: Sequence[FieldDescriptor]) -> RuntimeSnapshot:
        snapshot = RuntimeSnapshot(updated_at=datetime.now(UTC), fields=list(fields))
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._path.with_suffix('.tmp')
            content = json.dumps(snapshot.to_json_dict(), indent=2, ensure_ascii=False) + '\n'
            temp_path.write_text(content, encoding='utf-8')
            temp_path.replace(self._path)
        return snapshot
