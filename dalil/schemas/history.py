"""Application history - one record per applied field, newest first."""

from __future__ import annotations

from collections.abc import Sequence

from dalil.schemas.base import SCHEMA_VERSION, JsonDatetime, WireModel
from dalil.schemas.fields import FieldConstraints
from dalil.schemas.protocol import PageInfo

__all__ = [
    'AppliedField',
    'HistoryEntry',
    'HistoryStore',
    'SiteInfo',
]


class SiteInfo(WireModel):
    hostname: str | None = None
    etld_plus_one: str | None = None  # Naive last-two-labels guess, not a public suffix lookup


class AppliedField(WireModel):
    label: str
    constraints: FieldConstraints
    applied_text: str


class HistoryEntry(WireModel):
    id: str
    created_at: JsonDatetime
    site: SiteInfo
    page: PageInfo
    fields: Sequence[AppliedField]


class HistoryStore(WireModel):
    schema_version: str = SCHEMA_VERSION
    entries: Sequence[HistoryEntry] = ()
