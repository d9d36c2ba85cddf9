"""Domain models for the compliance record importer.

This package contains the model classes passed between the pipeline stages:
raw rows out of the Format Reader, record specifications, typed rows out of
the Row Validator, resolved references, and per-row outcomes/reports.
"""

from .error_record import ErrorRecord
from .import_result import (
    FileStat,
    ImportOutcome,
    ImportReport,
    OutcomeAction,
    RunTotals,
    Severity,
    ValidationIssue,
)
from .import_settings import ArchivedCollisions, DuplicateMode, ImportSettings
from .mapped_row import MappedRow, TypedValue
from .raw_row import RawRow, SheetData
from .record_spec import FieldKind, FieldRole, FieldSpec, RecordSpec
from .reference import ReferenceKind, ResolvedReference

__all__ = [
    # Input models
    "RawRow",
    "SheetData",
    # Specification / settings
    "FieldKind",
    "FieldRole",
    "FieldSpec",
    "RecordSpec",
    "DuplicateMode",
    "ArchivedCollisions",
    "ImportSettings",
    # Processing models
    "TypedValue",
    "MappedRow",
    "ReferenceKind",
    "ResolvedReference",
    # Results
    "Severity",
    "ValidationIssue",
    "OutcomeAction",
    "ImportOutcome",
    "ImportReport",
    "FileStat",
    "RunTotals",
    "ErrorRecord",
]
