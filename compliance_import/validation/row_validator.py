from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime

from compliance_import.mapping.column_mapper import ColumnMapping
from compliance_import.models.import_result import Severity, ValidationIssue
from compliance_import.models.import_settings import ImportSettings
from compliance_import.models.mapped_row import MappedRow, TypedValue
from compliance_import.models.raw_row import RawRow
from compliance_import.models.record_spec import FieldKind, FieldRole, FieldSpec, RecordSpec

"""Row Validator: RawRow + ColumnMapping -> MappedRow or field-level issues.

Every mapped field is checked, so one pass reports all of a row's problems.
A row with any error-severity issue yields no MappedRow; warnings ride along
with the MappedRow and never block it.
"""

__all__ = [
    "RowValidation",
    "parse_date",
    "validate_row",
]

logger = logging.getLogger(__name__)

_NON_NEGATIVE_INT = re.compile(r"\+?\d+")

# forms the Format Reader emits for workbook date cells; accepted whatever date_formats says
READER_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S")


@dataclass(frozen=True)
class RowValidation:
    row_index: int
    row: MappedRow | None  # None when any error was found
    issues: tuple[ValidationIssue, ...]

    @property
    def ok(self) -> bool:
        return self.row is not None


def parse_date(text: str, formats: tuple[str, ...]) -> date | None:
    """Parse text with the first matching strptime format, None if none match.

    The Format Reader's ISO forms are tried after the configured ones; a time
    of day is dropped.
    """
    for fmt in formats + tuple(f for f in READER_DATE_FORMATS if f not in formats):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def validate_row(
    raw: RawRow,
    mapping: ColumnMapping,
    spec: RecordSpec,
    settings: ImportSettings,
) -> RowValidation:
    values: dict[str, TypedValue] = {}
    issues: list[ValidationIssue] = []

    def error(field: str, message: str) -> None:
        issues.append(ValidationIssue(raw.row_index, field, message, Severity.ERROR))

    def warn(field: str, message: str) -> None:
        issues.append(ValidationIssue(raw.row_index, field, message, Severity.WARNING))

    for fs in spec.fields:
        source = mapping.source_for(fs.name)
        if source is None:
            continue  # optional field absent from the file
        text = raw.get(source).strip()
        if not text:
            if fs.required:
                error(fs.name, f"required value is missing (column '{source}')")
            else:
                values[fs.name] = TypedValue(fs.kind, None)
            continue

        parsed = _coerce(fs, text, settings, error)
        if parsed is None:
            continue
        values[fs.name] = TypedValue(fs.kind, parsed)

        if fs.role is FieldRole.OCCURRENCE_DATE and parsed > settings.reference_date():
            warn(fs.name, f"date {parsed.isoformat()} is in the future")
        if fs.role is FieldRole.PERIOD and parsed == 0:
            warn(fs.name, "period of 0 days; next date equals the occurrence date")

    if any(i.is_error for i in issues):
        logger.debug("row %d failed validation: %d issue(s)", raw.row_index, len(issues))
        return RowValidation(raw.row_index, None, tuple(issues))

    row = MappedRow(
        row_index=raw.row_index,
        values=values,
        warnings=tuple(issues),
    )
    return RowValidation(raw.row_index, row, tuple(issues))


def _coerce(fs: FieldSpec, text: str, settings: ImportSettings, error) -> str | int | date | None:
    """Convert one non-empty cell to the field's value kind, reporting failures."""
    if fs.kind is FieldKind.DATE:
        parsed = parse_date(text, settings.date_formats)
        if parsed is None:
            error(fs.name, f"invalid date '{text}' (expected e.g. 2024-01-31 or 31.01.2024)")
        return parsed

    if fs.kind is FieldKind.INTEGER:
        if not _NON_NEGATIVE_INT.fullmatch(text):
            error(fs.name, f"'{text}' is not a non-negative whole number")
            return None
        return int(text)

    if fs.kind is FieldKind.ENUM:
        allowed = fs.allowed or ()
        for candidate in allowed:
            if candidate.casefold() == text.casefold():
                return candidate
        error(fs.name, f"'{text}' is not one of: {', '.join(allowed)}")
        return None

    return text
