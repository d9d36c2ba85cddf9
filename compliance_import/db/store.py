from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol, runtime_checkable

"""Relational query/write interface consumed by the import pipeline.

The pipeline only ever talks to a RecordStore. PostgresRecordStore is the
production implementation, MemoryRecordStore backs mock mode and the tests.
"""

__all__ = [
    "StoreError",
    "StoreWriteError",
    "DuplicateRecordError",
    "RecordTypeRow",
    "ExistingRecord",
    "Triple",
    "RecordStore",
]

# (subject id, record type id, occurrence date)
Triple = tuple[Any, Any, date]


class StoreError(Exception):
    """A store call failed (connection, timeout, query error)."""


class StoreWriteError(StoreError):
    """The store rejected an insert or update."""


class DuplicateRecordError(StoreWriteError):
    """Insert/update violated the (subject, type, date) uniqueness constraint."""


@dataclass(frozen=True)
class RecordTypeRow:
    id: Any
    name: str
    facility: str  # facility code the type belongs to
    period_days: int | None


@dataclass(frozen=True)
class ExistingRecord:
    id: Any
    triple: Triple
    archived: bool  # deleted_at is set


@runtime_checkable
class RecordStore(Protocol):
    def find_subjects(self, table: str, key_column: str, keys: Collection[str]) -> dict[str, Any]:
        """Return {natural key: id} for the keys that exist."""
        ...

    def find_facilities(self, codes: Collection[str]) -> dict[str, Any]:
        ...

    def find_record_types(self, table: str, facility_codes: Collection[str]) -> list[RecordTypeRow]:
        ...

    def find_by_triples(self, table: str, columns: Sequence[str], triples: Collection[Triple]) -> list[ExistingRecord]:
        """Return every record (archived included) matching one of the triples."""
        ...

    def insert_record(self, table: str, values: Mapping[str, Any]) -> Any:
        """Insert one record and return its id."""
        ...

    def update_record(self, table: str, record_id: Any, values: Mapping[str, Any]) -> None:
        ...
