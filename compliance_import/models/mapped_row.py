from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from .import_result import ValidationIssue
from .record_spec import FieldKind

"""MappedRow model: a validated row carrying one tagged value per canonical field.

Produced only by the Row Validator. Every stage downstream of validation reads
these typed values and never goes back to the raw cell text.
"""

__all__ = [
    "TypedValue",
    "MappedRow",
]


@dataclass(frozen=True)
class TypedValue:
    kind: FieldKind
    value: str | int | date | None  # None only for absent optional fields

    @property
    def is_empty(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class MappedRow:
    row_index: int  # RawRow position this row was built from
    values: dict[str, TypedValue]  # canonical field -> typed value (mapped fields only)
    warnings: tuple[ValidationIssue, ...] = field(default_factory=tuple)  # warning-severity issues

    def value(self, name: str):
        typed = self.values.get(name)
        return None if typed is None else typed.value

    def has(self, name: str) -> bool:
        """True when the field's column was mapped for this file."""
        return name in self.values
