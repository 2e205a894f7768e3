"""Runtime records persisted in the data directory.

- ConnectionDescriptor: runtime/runner.json, the only way clients find the controller
- RuntimeSnapshot: runtime/fields.json, last successful scan (observational only)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from dalil.schemas.base import SCHEMA_VERSION, JsonDatetime, WireModel
from dalil.schemas.fields import FieldDescriptor

__all__ = [
    'ConnectionDescriptor',
    'RunnerMode',
    'RuntimeSnapshot',
]

type RunnerMode = Literal['managed', 'attach']


class ConnectionDescriptor(WireModel):
    """Published once the controller's loopback listener is bound.

    Presence means "a controller was started here". A descriptor left behind by a
    dead process is stale and must be treated as a connection failure.
    """

    schema_version: str = SCHEMA_VERSION
    port: int
    mode: RunnerMode
    started_at: JsonDatetime
    pid: int  # For stale-descriptor detection without a network round trip


class RuntimeSnapshot(WireModel):
    """Descriptor set from the last successful scan.

    Never used to authorize a mutation - the controller re-validates the live page.
    """

    schema_version: str = SCHEMA_VERSION
    updated_at: JsonDatetime
    fields: Sequence[FieldDescriptor]
