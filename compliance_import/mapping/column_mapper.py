from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass

from compliance_import.models.record_spec import RecordSpec

"""Column Mapper: canonical field -> source column, resolved once per file.

Resolution order per canonical field:
1. explicit caller override (must name a column that exists)
2. exact match of the normalised header against the field name or an alias
3. substring containment (normalised header contains an alias)

A column is bound to at most one field. Required fields left unmatched fail
the whole file with a single MappingError listing all of them, before any row
is looked at.
"""

__all__ = [
    "MappingError",
    "ColumnBinding",
    "ColumnMapping",
    "normalize_header",
    "build_mapping",
]

logger = logging.getLogger(__name__)

# shortest alias considered for containment matches
MIN_SUBSTRING_ALIAS = 3

_SEPARATORS = re.compile(r"[\s_\-]+")


class MappingError(Exception):
    """Raised when the header row cannot satisfy the record specification."""

    def __init__(self, message: str, missing_fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_fields = missing_fields or []


@dataclass(frozen=True)
class ColumnBinding:
    field: str
    source: str | None  # source header, None when the field is absent from the file
    required: bool
    matched_by: str  # override / exact / substring / absent


@dataclass(frozen=True)
class ColumnMapping:
    bindings: dict[str, ColumnBinding]  # canonical field -> binding, in spec order

    def source_for(self, field: str) -> str | None:
        binding = self.bindings.get(field)
        return None if binding is None else binding.source

    def is_mapped(self, field: str) -> bool:
        return self.source_for(field) is not None

    @property
    def mapped_fields(self) -> list[str]:
        return [b.field for b in self.bindings.values() if b.source is not None]

    def as_dict(self) -> dict[str, str | None]:
        return {name: b.source for name, b in self.bindings.items()}


def normalize_header(text: str) -> str:
    """Fold a header for comparison: strip diacritics, casefold, collapse separators.

    'Osobní číslo' / 'osobni_cislo' / ' OSOBNI-CISLO ' all normalise to 'osobni cislo'.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SEPARATORS.sub(" ", stripped.casefold()).strip()


def build_mapping(
    columns: list[str],
    spec: RecordSpec,
    overrides: Mapping[str, str] | None = None,
) -> ColumnMapping:
    """Resolve the file-wide mapping for the given header row.

    Parameters
    ----------
    columns: header row as produced by the Format Reader
    spec: record specification (canonical fields + aliases)
    overrides: optional explicit {canonical field: source header}
    """
    normalized = {col: normalize_header(col) for col in columns}
    claimed: dict[str, str] = {}  # source column -> field
    found: dict[str, tuple[str, str]] = {}  # field -> (source column, matched_by)

    for field, source in (overrides or {}).items():
        try:
            spec.field(field)
        except KeyError:
            raise MappingError(f"mapping override names unknown field '{field}'") from None
        column = _find_override_column(source, columns, normalized)
        if column is None:
            raise MappingError(f"mapping override for '{field}': column '{source}' not found in file")
        if column in claimed:
            raise MappingError(
                f"mapping override for '{field}': column '{column}' already mapped to '{claimed[column]}'"
            )
        claimed[column] = field
        found[field] = (column, "override")

    # exact pass first over every field so a later field's exact header is
    # never stolen by an earlier field's substring match
    for fs in spec.fields:
        if fs.name in found:
            continue
        candidates = {normalize_header(a) for a in fs.header_candidates}
        for col in columns:
            if col not in claimed and normalized[col] in candidates:
                claimed[col] = fs.name
                found[fs.name] = (col, "exact")
                break

    # substring pass: the longest alias hit over all open fields claims its
    # column first; ties go to field order, then column order
    hits: list[tuple[int, int, int, str, str]] = []  # (-length, field pos, column pos, field, column)
    for field_pos, fs in enumerate(spec.fields):
        if fs.name in found:
            continue
        aliases = [a for a in {normalize_header(a) for a in fs.header_candidates} if len(a) >= MIN_SUBSTRING_ALIAS]
        for col_pos, col in enumerate(columns):
            if col in claimed:
                continue
            lengths = [len(a) for a in aliases if a in normalized[col]]
            if lengths:
                hits.append((-max(lengths), field_pos, col_pos, fs.name, col))
    for _, _, _, field, col in sorted(hits):
        if field in found or col in claimed:
            continue
        claimed[col] = field
        found[field] = (col, "substring")

    missing = [fs.name for fs in spec.required_fields if fs.name not in found]
    if missing:
        raise MappingError(
            f"required columns missing: {', '.join(missing)} (file headers: {', '.join(columns) or '-'})",
            missing_fields=missing,
        )

    bindings: dict[str, ColumnBinding] = {}
    for fs in spec.fields:
        source, how = found.get(fs.name, (None, "absent"))
        bindings[fs.name] = ColumnBinding(field=fs.name, source=source, required=fs.required, matched_by=how)
    logger.debug(
        "column mapping: %s",
        ", ".join(f"{b.field}<-{b.source!r}({b.matched_by})" for b in bindings.values() if b.source),
    )
    return ColumnMapping(bindings=bindings)


def _find_override_column(source: str, columns: list[str], normalized: dict[str, str]) -> str | None:
    wanted = source.strip()
    if wanted in columns:
        return wanted
    folded = normalize_header(wanted)
    for col in columns:
        if normalized[col] == folded:
            return col
    return None
