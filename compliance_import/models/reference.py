from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Resolved natural-key references (run-scoped, never persisted)."""

__all__ = [
    "ReferenceKind",
    "ResolvedReference",
]


class ReferenceKind(Enum):
    SUBJECT = "subject"  # employee number / inventory number
    RECORD_TYPE = "record_type"  # (facility, normalised type name)
    FACILITY = "facility"  # facility code


@dataclass(frozen=True)
class ResolvedReference:
    natural_key: str
    kind: ReferenceKind
    internal_id: object  # int or UUID depending on the store
