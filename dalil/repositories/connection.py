"""Connection descriptor store with file locking.

The descriptor is written when the controller's listener is bound and removed
last on shutdown. Clients never trust it on its own: a descriptor whose process
is gone is reported as absent.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import filelock
import psutil
import pydantic

from dalil.schemas.runtime import ConnectionDescriptor

__all__ = [
    'ConnectionStore',
]

logger = logging.getLogger(__name__)


class ConnectionStore:
    """Publishes, reads and removes runtime/runner.json."""

    def __init__(self, path: Path, lock_path: Path) -> None:
        self._path = path
        self._lock = filelock.FileLock(lock_path)

    @contextmanager
    def hold_lock(self) -> Iterator[None]:
        """Hold the lock across a check-then-publish sequence."""
        with self._lock:
            yield

    def load(self) -> ConnectionDescriptor | None:
        """Load the raw descriptor. Returns None if not exists, blank or unreadable."""
        if not self._path.exists():
            return None
        raw = self._path.read_text(encoding='utf-8')
        if not raw.strip():
            return None
        try:
            return ConnectionDescriptor.model_validate_json(raw)
        except pydantic.ValidationError as e:
            logger.debug(f'Ignoring malformed connection descriptor at {self._path}: {e.error_count()} errors')
            return None

    def load_live(self) -> ConnectionDescriptor | None:
        """Return the descriptor if its controller process still exists, None otherwise."""
        descriptor = self.load()
        if descriptor is None:
            return None
        if not psutil.pid_exists(descriptor.pid):
            logger.debug(f'Ignoring stale connection descriptor (pid {descriptor.pid} is gone)')
            return None
        return descriptor

    def publish(self, descriptor: ConnectionDescriptor) -> None:
        """Write the descriptor atomically so readers never see a partial file."""
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._path.with_suffix('.tmp')
            temp_path.write_text(json.dumps(descriptor.to_json_dict(), indent=2) + '\n', encoding='utf-8')
            temp_path.replace(self._path)
        logger.info(f'Published connection descriptor: port={descriptor.port} mode={descriptor.mode}')

    def remove(self, *, pid: int | None = None) -> None:
        """Delete the descriptor.

        With pid, only a descriptor owned by that process is removed, so a
        controller never deletes one published by a newer controller.
        """
        with self._lock:
            if pid is not None:
                current = self.load()
                if current is not None and current.pid != pid:
                    return
            self._path.unlink(missing_ok=True)
        logger.info('Removed connection descriptor')
