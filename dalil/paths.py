"""Centralized file paths.

The config home holds config.json. Everything else lives in the data directory,
shared by the controller and every client command for coordination.
"""

from __future__ import annotations

import os
from pathlib import Path

from dalil.errors import EnvironmentNotReadyError

__all__ = [
    'CONFIG_HOME_ENV',
    'DATA_DIR_ENV',
    'DataPaths',
    'config_home',
    'config_path',
    'resolve_data_dir',
]

CONFIG_HOME_ENV = 'DALIL_CONFIG_HOME'
DATA_DIR_ENV = 'DALIL_DATA_DIR'


def config_home() -> Path:
    """Directory holding config.json - $DALIL_CONFIG_HOME or ~/.dalil."""
    custom = os.environ.get(CONFIG_HOME_ENV)
    if custom:
        return Path(custom).expanduser().resolve()
    return Path.home() / '.dalil'


def config_path() -> Path:
    return config_home() / 'config.json'


def resolve_data_dir(override: str | None, configured: str | None) -> Path:
    """Pick the data directory: explicit override, then $DALIL_DATA_DIR, then config.

    Raises:
        EnvironmentNotReadyError: If none of the three is set.
    """
    for candidate in (override, os.environ.get(DATA_DIR_ENV), configured):
        if candidate:
            return Path(candidate).expanduser().resolve()
    raise EnvironmentNotReadyError('Data directory is not configured. Run `dalil init --data-dir <path>` first.')


class DataPaths:
    """Layout of a data directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.runtime_dir = root / 'runtime'
        self.profile_dir = root / 'runner-profile'

        # Controller coordination
        self.connection_path = self.runtime_dir / 'runner.json'
        self.connection_lock_path = self.runtime_dir / 'runner.lock'

        # Last scan (observational)
        self.snapshot_path = self.runtime_dir / 'fields.json'
        self.snapshot_lock_path = self.runtime_dir / 'fields.lock'

        # Applied-text history
        self.history_path = root / 'history.json'
        self.history_lock_path = root / 'history.lock'

    def ensure(self) -> None:
        """Create the directory layout (idempotent)."""
        self.runtime_dir.mkdir(parents=True, exist_ok=True)
