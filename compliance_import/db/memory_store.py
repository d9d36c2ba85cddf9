from __future__ import annotations

import itertools
import threading
from collections.abc import Collection, Iterable, Mapping, Sequence
from typing import Any

from compliance_import.db.store import (
    DuplicateRecordError,
    ExistingRecord,
    RecordTypeRow,
    StoreWriteError,
    Triple,
)
from compliance_import.models.record_spec import RecordSpec

"""In-memory RecordStore.

Used when the database is disabled (DISABLE_DB_CONNECT=1) and by the tests.
Enforces the same partial uniqueness rule as the reference schema: no two
non-archived rows of a table may share the configured unique columns.
"""

__all__ = [
    "MemoryRecordStore",
    "FACILITY_TABLE",
]

FACILITY_TABLE = "facilities"


class MemoryRecordStore:
    """Thread-safe dict-backed store.

    Tables are created on first use. Every public call is appended to
    ``calls`` as ``(method, table, size)`` so tests can assert lookup counts.
    """

    def __init__(self, unique_keys: Mapping[str, Sequence[str]] | None = None) -> None:
        self._tables: dict[str, dict[Any, dict[str, Any]]] = {}
        self._unique_keys = {t: tuple(cols) for t, cols in (unique_keys or {}).items()}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str, int]] = []

    @classmethod
    def for_specs(cls, specs: Iterable[RecordSpec]) -> MemoryRecordStore:
        """Store enforcing the (subject, type, date) rule on each spec's target table."""
        return cls(unique_keys={spec.table: spec.triple_columns for spec in specs})

    # --- seeding / inspection helpers -------------------------------------------------
    def add_row(self, table: str, **values: Any) -> Any:
        """Insert a row bypassing uniqueness checks (fixture seeding)."""
        with self._lock:
            row_id = values.pop("id", None) or next(self._ids)
            self._tables.setdefault(table, {})[row_id] = {"id": row_id, **values}
            return row_id

    def rows(self, table: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._tables.get(table, {}).values()]

    def get(self, table: str, record_id: Any) -> dict[str, Any]:
        with self._lock:
            return dict(self._tables[table][record_id])

    def calls_to(self, method: str) -> list[tuple[str, str, int]]:
        return [c for c in self.calls if c[0] == method]

    # --- RecordStore -------------------------------------------------------------------
    def find_subjects(self, table: str, key_column: str, keys: Collection[str]) -> dict[str, Any]:
        wanted = set(keys)
        with self._lock:
            self.calls.append(("find_subjects", table, len(wanted)))
            return {
                r[key_column]: r["id"]
                for r in self._tables.get(table, {}).values()
                if r.get(key_column) in wanted
            }

    def find_facilities(self, codes: Collection[str]) -> dict[str, Any]:
        wanted = set(codes)
        with self._lock:
            self.calls.append(("find_facilities", FACILITY_TABLE, len(wanted)))
            return {
                r["code"]: r["id"]
                for r in self._tables.get(FACILITY_TABLE, {}).values()
                if r.get("code") in wanted
            }

    def find_record_types(self, table: str, facility_codes: Collection[str]) -> list[RecordTypeRow]:
        wanted = set(facility_codes)
        with self._lock:
            self.calls.append(("find_record_types", table, len(wanted)))
            return [
                RecordTypeRow(id=r["id"], name=r["name"], facility=r["facility"], period_days=r.get("period_days"))
                for r in self._tables.get(table, {}).values()
                if r.get("facility") in wanted
            ]

    def find_by_triples(self, table: str, columns: Sequence[str], triples: Collection[Triple]) -> list[ExistingRecord]:
        wanted = set(triples)
        found: list[ExistingRecord] = []
        with self._lock:
            self.calls.append(("find_by_triples", table, len(wanted)))
            for r in self._tables.get(table, {}).values():
                triple = tuple(r.get(c) for c in columns)
                if triple in wanted:
                    found.append(ExistingRecord(id=r["id"], triple=triple, archived=r.get("deleted_at") is not None))
        return found

    def insert_record(self, table: str, values: Mapping[str, Any]) -> Any:
        with self._lock:
            self.calls.append(("insert_record", table, 1))
            rows = self._tables.setdefault(table, {})
            candidate = dict(values)
            self._check_unique(table, rows, candidate, exclude_id=None)
            row_id = next(self._ids)
            while row_id in rows:
                row_id = next(self._ids)
            rows[row_id] = {"id": row_id, **candidate}
            return row_id

    def update_record(self, table: str, record_id: Any, values: Mapping[str, Any]) -> None:
        with self._lock:
            self.calls.append(("update_record", table, 1))
            rows = self._tables.get(table, {})
            if record_id not in rows:
                raise StoreWriteError(f"{table}: record {record_id} not found")
            candidate = {**rows[record_id], **values}
            self._check_unique(table, rows, candidate, exclude_id=record_id)
            rows[record_id] = candidate

    def _check_unique(self, table: str, rows: dict[Any, dict[str, Any]], candidate: dict[str, Any],
                      exclude_id: Any) -> None:
        columns = self._unique_keys.get(table)
        if not columns or candidate.get("deleted_at") is not None:
            return
        key = tuple(candidate.get(c) for c in columns)
        for row_id, row in rows.items():
            if row_id == exclude_id or row.get("deleted_at") is not None:
                continue
            if tuple(row.get(c) for c in columns) == key:
                raise DuplicateRecordError(
                    f'duplicate key value violates unique constraint on {table} ({", ".join(columns)})'
                )
