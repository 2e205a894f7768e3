"""Field Registry - scans the active page and assigns stable field ids.

A field id is a pure function of (domPath, label, kind):

    fieldId = "fld_" + sha1(f"{domPath}::{label}::{kind}").hexdigest()[:12]

so rescanning an unchanged page reproduces every id, while moving or relabeling
a field yields a new id (a new field, not an error).
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Sequence

import pydantic

from dalil.driver.adapter import DriverAdapter
from dalil.driver.scripts import SCAN_FIELDS_JS
from dalil.errors import DriverError, FieldNotFoundError
from dalil.repositories.snapshot import SnapshotStore
from dalil.schemas.base import WireModel
from dalil.schemas.fields import FieldConstraints, FieldDescriptor, FieldKind, kind_token
from dalil.schemas.protocol import ExcludedRegions

__all__ = [
    'FieldRegistry',
    'detect_language_hint',
    'make_field_id',
]

logger = logging.getLogger(__name__)

LANGUAGE_HINT_PATTERN = re.compile(r'영문|english|한글|korean', re.IGNORECASE)


class _ScannedElement(WireModel):
    """One record as returned by SCAN_FIELDS_JS."""

    dom_path: str
    kind: FieldKind
    input_type: str | None = None
    name: str | None = None
    label: str
    placeholder: str | None = None
    hints: Sequence[str] = ()
    required: bool = False
    max_length: int | None = None
    pattern: str | None = None


class _ScanPayload(WireModel):
    fields: Sequence[_ScannedElement]
    excluded: ExcludedRegions


def make_field_id(dom_path: str, label: str, kind: str) -> str:
    digest = hashlib.sha1(f'{dom_path}::{label}::{kind}'.encode()).hexdigest()
    return f'fld_{digest[:12]}'


def detect_language_hint(hints: Sequence[str]) -> str | None:
    """First hint naming a language requirement (e.g. '영문으로 작성'), if any."""
    return next((hint for hint in hints if LANGUAGE_HINT_PATTERN.search(hint)), None)


class FieldRegistry:
    """Owns the fields-by-id table populated by the most recent scan."""

    def __init__(self, driver: DriverAdapter, snapshot_store: SnapshotStore | None = None) -> None:
        self._driver = driver
        self._snapshot_store = snapshot_store
        self._fields: dict[str, FieldDescriptor] = {}
        self.excluded = ExcludedRegions()

    @property
    def fields(self) -> list[FieldDescriptor]:
        """Descriptors from the last scan, in document order."""
        return list(self._fields.values())

    def get(self, field_id: str) -> FieldDescriptor:
        """Resolve a field id against the current scan.

        Raises:
            FieldNotFoundError: The id is not part of the last scan.
        """
        field = self._fields.get(field_id)
        if field is None:
            raise FieldNotFoundError('Field not found. Run scan first.')
        return field

    async def scan(self) -> list[FieldDescriptor]:
        """Enumerate eligible fields and replace (never merge) the current set."""
        raw = await self._driver.evaluate_in_page(SCAN_FIELDS_JS)
        try:
            payload = _ScanPayload.model_validate(raw)
        except pydantic.ValidationError as e:
            raise DriverError(f'Unexpected scan result from page: {e.error_count()} invalid entries') from e

        fields: dict[str, FieldDescriptor] = {}
        for element in payload.fields:
            field = _to_descriptor(element)
            if field.field_id in fields:
                # Same path, label and kind twice in one document - first one wins
                logger.warning(f'Duplicate field id {field.field_id} at {field.dom_path}, skipping')
                continue
            fields[field.field_id] = field

        self._fields = fields
        self.excluded = payload.excluded
        logger.info(
            f'Scanned {len(fields)} fields '
            f'(excluded: {payload.excluded.content_editable} contenteditable, {payload.excluded.frames} frames)'
        )
        self._persist()
        return self.fields

    def _persist(self) -> None:
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(self.fields)
        except OSError as e:
            # Snapshot is observational; a failed write must not fail the scan
            logger.warning(f'Could not persist runtime snapshot: {e}')


def _to_descriptor(element: _ScannedElement) -> FieldDescriptor:
    hints = list(dict.fromkeys(hint.strip() for hint in element.hints if hint.strip()))[:4]
    return FieldDescriptor(
        field_id=make_field_id(element.dom_path, element.label, kind_token(element.kind, element.input_type)),
        dom_path=element.dom_path,
        kind=element.kind,
        input_type=element.input_type if element.kind == 'input' else None,
        name=element.name,
        label=element.label,
        placeholder=element.placeholder,
        hints=hints,
        constraints=FieldConstraints(
            required=element.required,
            max_length=element.max_length,
            pattern=element.pattern,
            language_hint=detect_language_hint(hints),
        ),
    )
