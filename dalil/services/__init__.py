"""Control-plane services: field discovery, mutation, submission guard."""

from __future__ import annotations

from dalil.services.mutation import MutationEngine
from dalil.services.registry import FieldRegistry, make_field_id
from dalil.services.safety import SafetyGuard

__all__ = [
    'FieldRegistry',
    'MutationEngine',
    'SafetyGuard',
    'make_field_id',
]
