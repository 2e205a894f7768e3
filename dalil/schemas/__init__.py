"""Pydantic models for persisted records and Control Protocol payloads."""

from __future__ import annotations

from dalil.schemas.base import SCHEMA_VERSION, StrictModel, WireModel
from dalil.schemas.fields import FieldConstraints, FieldDescriptor, FieldInfo
from dalil.schemas.protocol import ExcludedRegions, PageInfo, ScanResult
from dalil.schemas.runtime import ConnectionDescriptor, RunnerMode, RuntimeSnapshot

__all__ = [
    'SCHEMA_VERSION',
    'ConnectionDescriptor',
    'ExcludedRegions',
    'FieldConstraints',
    'FieldDescriptor',
    'FieldInfo',
    'PageInfo',
    'RunnerMode',
    'RuntimeSnapshot',
    'ScanResult',
    'StrictModel',
    'WireModel',
]
