from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from compliance_import.db.store import RecordStore, RecordTypeRow, Triple
from compliance_import.mapping.column_mapper import normalize_header
from compliance_import.models.import_result import (
    REFERENCE_ERROR,
    ImportOutcome,
    Severity,
    ValidationIssue,
)
from compliance_import.models.mapped_row import MappedRow
from compliance_import.models.record_spec import FieldRole, RecordSpec
from compliance_import.models.reference import ReferenceKind, ResolvedReference

"""Reference Resolver: natural keys -> internal ids, in bulk.

Distinct keys are collected over all validated rows and looked up with one
store call per reference kind (subject, facility, record type), so lookup cost
grows with distinct keys rather than rows. The three lookups are independent
and run concurrently. Results populate the run's ReferenceCache.

Record types are fetched per facility and matched by folded name here, so a
type called 'BOZP školení' matches 'bozp skoleni' within the same facility.
"""

__all__ = [
    "ReferenceCache",
    "ResolvedRow",
    "ResolutionResult",
    "resolve_references",
    "type_key",
]

logger = logging.getLogger(__name__)


def type_key(facility: str, name: str) -> str:
    return f"{facility}/{normalize_header(name)}"


class ReferenceCache:
    """Run-scoped ResolvedReference cache. Never shared between invocations."""

    def __init__(self) -> None:
        self._entries: dict[tuple[ReferenceKind, str], ResolvedReference] = {}
        self._type_periods: dict[str, int | None] = {}

    def put(self, kind: ReferenceKind, natural_key: str, internal_id: Any) -> ResolvedReference:
        ref = ResolvedReference(natural_key=natural_key, kind=kind, internal_id=internal_id)
        self._entries[(kind, natural_key)] = ref
        return ref

    def put_type(self, row: RecordTypeRow) -> None:
        key = type_key(row.facility, row.name)
        if (ReferenceKind.RECORD_TYPE, key) not in self._entries:
            self.put(ReferenceKind.RECORD_TYPE, key, row.id)
            self._type_periods[key] = row.period_days

    def get(self, kind: ReferenceKind, natural_key: str) -> ResolvedReference | None:
        return self._entries.get((kind, natural_key))

    def type_period(self, key: str) -> int | None:
        return self._type_periods.get(key)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item: tuple[ReferenceKind, str]) -> bool:
        return item in self._entries


@dataclass(frozen=True)
class ResolvedRow:
    row: MappedRow
    subject_id: Any
    type_id: Any
    facility_code: str
    facility_id: Any
    type_period_days: int | None
    occurrence_date: date

    @property
    def row_index(self) -> int:
        return self.row.row_index

    @property
    def triple(self) -> Triple:
        return (self.subject_id, self.type_id, self.occurrence_date)


@dataclass
class ResolutionResult:
    resolved: list[ResolvedRow] = field(default_factory=list)
    failed: list[ImportOutcome] = field(default_factory=list)


def _role_value(row: MappedRow, spec: RecordSpec, role: FieldRole) -> Any:
    fs = spec.field_for(role)
    return None if fs is None else row.value(fs.name)


def resolve_references(
    rows: list[MappedRow],
    spec: RecordSpec,
    store: RecordStore,
    cache: ReferenceCache,
    *,
    max_workers: int = 3,
) -> ResolutionResult:
    """Resolve subject/facility/type keys for every row.

    A row with any unresolved key, or whose lookup failed, becomes a failed
    outcome listing every reference problem it has.
    """
    roles = (FieldRole.SUBJECT, FieldRole.RECORD_TYPE, FieldRole.FACILITY, FieldRole.OCCURRENCE_DATE)
    missing = [role.value for role in roles if spec.field_for(role) is None]
    if missing:
        raise ValueError(f"record kind '{spec.kind}' has no field for: {', '.join(missing)}")
    subject_field, type_field, facility_field, date_field = (spec.field_for(role) for role in roles)

    subjects = sorted({_role_value(r, spec, FieldRole.SUBJECT) for r in rows})
    facilities = sorted({_role_value(r, spec, FieldRole.FACILITY) for r in rows})
    logger.debug("resolving %d subject(s), %d facility code(s) for %d row(s)", len(subjects), len(facilities), len(rows))

    lookups: dict[ReferenceKind, Callable[[], Any]] = {}
    if subjects:
        lookups[ReferenceKind.SUBJECT] = lambda: store.find_subjects(spec.subject_table, spec.subject_key_column, subjects)
    if facilities:
        lookups[ReferenceKind.FACILITY] = lambda: store.find_facilities(facilities)
        lookups[ReferenceKind.RECORD_TYPE] = lambda: store.find_record_types(spec.type_table, facilities)

    lookup_errors: dict[ReferenceKind, str] = {}
    if lookups:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(lookups)))) as pool:
            futures = {kind: pool.submit(fn) for kind, fn in lookups.items()}
            for kind, future in futures.items():
                try:
                    found = future.result()
                except Exception as e:  # store/connection failure: rows depending on it fail
                    logger.warning("%s lookup failed: %s", kind.value, e)
                    lookup_errors[kind] = str(e) or type(e).__name__
                    continue
                if kind is ReferenceKind.RECORD_TYPE:
                    for type_row in found:
                        cache.put_type(type_row)
                else:
                    for key, internal_id in found.items():
                        cache.put(kind, key, internal_id)

    result = ResolutionResult()
    for row in rows:
        subject = row.value(subject_field.name)
        facility = row.value(facility_field.name)
        type_name = row.value(type_field.name)
        issues: list[ValidationIssue] = []

        def fail(field_name: str, message: str) -> None:
            issues.append(ValidationIssue(row.row_index, field_name, message, Severity.ERROR))

        subject_ref = cache.get(ReferenceKind.SUBJECT, subject)
        if ReferenceKind.SUBJECT in lookup_errors:
            fail(subject_field.name, f"lookup failed: {lookup_errors[ReferenceKind.SUBJECT]}")
        elif subject_ref is None:
            fail(subject_field.name, f"'{subject}' not found")

        facility_ref = cache.get(ReferenceKind.FACILITY, facility)
        if ReferenceKind.FACILITY in lookup_errors:
            fail(facility_field.name, f"lookup failed: {lookup_errors[ReferenceKind.FACILITY]}")
        elif facility_ref is None:
            fail(facility_field.name, f"facility '{facility}' not found")

        key = type_key(facility, type_name)
        type_ref = cache.get(ReferenceKind.RECORD_TYPE, key)
        if ReferenceKind.RECORD_TYPE in lookup_errors:
            fail(type_field.name, f"lookup failed: {lookup_errors[ReferenceKind.RECORD_TYPE]}")
        elif type_ref is None and facility_ref is not None:
            fail(type_field.name, f"type '{type_name}' not found for facility '{facility}'")

        if issues:
            all_issues = tuple(issues) + row.warnings
            result.failed.append(ImportOutcome.failed(row.row_index, REFERENCE_ERROR, all_issues))
            continue

        result.resolved.append(
            ResolvedRow(
                row=row,
                subject_id=subject_ref.internal_id,
                type_id=type_ref.internal_id,
                facility_code=facility,
                facility_id=facility_ref.internal_id,
                type_period_days=cache.type_period(key),
                occurrence_date=row.value(date_field.name),
            )
        )

    logger.debug("references: %d resolved row(s), %d failed, cache size %d",
                 len(result.resolved), len(result.failed), len(cache))
    return result

