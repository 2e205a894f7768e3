"""Global configuration schema.

Stored as config.json under the config home (see dalil.paths.config_home).
A missing file means defaults; an invalid one fails loudly.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pydantic

from dalil.schemas.base import SCHEMA_VERSION, WireModel

__all__ = [
    'DEFAULT_RUNNER_PORT',
    'DalilConfig',
    'load_config',
    'save_config',
]

logger = logging.getLogger(__name__)

DEFAULT_RUNNER_PORT = 41730


class DalilConfig(WireModel):
    """User-level settings shared by the controller and every client command."""

    schema_version: str = SCHEMA_VERSION
    data_dir: str | None = None

    # Controller
    runner_port: int = pydantic.Field(default=DEFAULT_RUNNER_PORT, ge=1, le=65535)
    page_timeout_seconds: float = pydantic.Field(default=15.0, gt=0)
    typing_delay_ms: float = pydantic.Field(default=4.0, ge=0)

    # Clients
    request_timeout_seconds: float = pydantic.Field(default=30.0, gt=0)
    connect_timeout_seconds: float = pydantic.Field(default=2.0, gt=0)


def load_config(path: Path) -> DalilConfig:
    """Load config from path, returning defaults when the file is absent or blank."""
    if not path.exists():
        return DalilConfig()
    raw = path.read_text(encoding='utf-8')
    if not raw.strip():
        return DalilConfig()
    return DalilConfig.model_validate_json(raw)


def save_config(path: Path, config: DalilConfig) -> None:
    """Save config atomically (write tmp + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix('.tmp')
    temp_path.write_text(json.dumps(config.to_json_dict(), indent=2) + '\n', encoding='utf-8')
    temp_path.rename(path)
    logger.debug(f'Saved config to {path}')
