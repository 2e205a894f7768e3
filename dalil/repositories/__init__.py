"""File-backed stores living in the data directory."""

from __future__ import annotations

from dalil.repositories.connection import ConnectionStore
from dalil.repositories.history import HistoryRepository
from dalil.repositories.snapshot import SnapshotStore

__all__ = [
    'ConnectionStore',
    'HistoryRepository',
    'SnapshotStore',
]
