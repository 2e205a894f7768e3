"""Form field descriptors.

A FieldDescriptor is one eligible input/textarea as understood by the controller
after the most recent scan. The full set is replaced on every scan; a descriptor
from scan N is distinct from one produced by scan N+1 even when the ids collide.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from dalil.schemas.base import WireModel

__all__ = [
    'FieldConstraints',
    'FieldDescriptor',
    'FieldInfo',
    'FieldKind',
    'kind_token',
]

type FieldKind = Literal['input', 'textarea']


def kind_token(kind: FieldKind, input_type: str | None) -> str:
    """Kind with subtype, the form hashed into field ids ('textarea', 'input:email')."""
    if kind == 'textarea':
        return 'textarea'
    return f'input:{input_type or "text"}'


class FieldConstraints(WireModel):
    """Validation hints read from the element and its surroundings."""

    required: bool
    max_length: int | None = None
    pattern: str | None = None
    language_hint: str | None = None


class FieldInfo(WireModel):
    """Field as seen by clients - everything except the structural locator."""

    field_id: str
    kind: FieldKind
    input_type: str | None = None  # 'text', 'email', ... (None for textarea)
    name: str | None = None
    label: str
    placeholder: str | None = None
    hints: Sequence[str] = ()
    constraints: FieldConstraints

    @property
    def kind_token(self) -> str:
        return kind_token(self.kind, self.input_type)


class FieldDescriptor(FieldInfo):
    """Controller-side field, including the DOM path used to re-find the element.

    dom_path stays inside the controller and its runtime snapshot; use public()
    before handing a descriptor to a client.
    """

    dom_path: str

    def public(self) -> FieldInfo:
        return FieldInfo(**{name: getattr(self, name) for name in FieldInfo.model_fields})
