"""Control Protocol payloads.

Every response is an envelope: {"ok": true, ...payload} on success,
{"ok": false, "error": "..."} on failure. Request bodies are camelCase JSON.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from dalil.schemas.base import WireModel
from dalil.schemas.fields import FieldInfo

__all__ = [
    'ApplyChannel',
    'ExcludedRegions',
    'FieldRequest',
    'FieldTextRequest',
    'PageInfo',
    'ScanResult',
]

type ApplyChannel = Literal['programmatic', 'keystrokes']


class FieldRequest(WireModel):
    """Body for operations targeting a single field."""

    field_id: str


class FieldTextRequest(WireModel):
    """Body for operations writing text into a field."""

    field_id: str
    text: str = ''


class PageInfo(WireModel):
    url: str | None = None
    title: str | None = None


class ExcludedRegions(WireModel):
    """Regions present on the page that scan deliberately does not enumerate."""

    content_editable: int = 0
    frames: int = 0


class ScanResult(WireModel):
    fields: Sequence[FieldInfo]
    excluded: ExcludedRegions
