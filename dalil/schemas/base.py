"""Strict Pydantic base models shared by every persisted record and wire payload."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

import pydantic
from pydantic.alias_generators import to_camel

__all__ = [
    'SCHEMA_VERSION',
    'JsonDatetime',
    'StrictModel',
    'WireModel',
]

SCHEMA_VERSION = '0.1'

# Datetimes arrive as ISO strings from JSON files and HTTP bodies
JsonDatetime = Annotated[datetime, pydantic.Field(strict=False)]


class StrictModel(pydantic.BaseModel):
    """Base model with strict validation.

    Config:
    - extra='forbid': Reject unknown fields (fail-fast)
    - strict=True: No implicit type coercion
    - frozen=True: Immutable after creation
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',
        strict=True,
        frozen=True,
    )


class WireModel(StrictModel):
    """Strict model serialized with camelCase keys (fieldId, startedAt, ...).

    Accepts either spelling on input so Python callers can use snake_case names.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, object]:
        """Dump with camelCase keys and JSON-compatible values."""
        return self.model_dump(mode='json', by_alias=True)
