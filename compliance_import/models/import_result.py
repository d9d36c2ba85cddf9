from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

"""Outcome and report models for the compliance record importer.

ImportOutcome is the per-row verdict; ImportReport aggregates exactly one
outcome per raw row, in file order. RunTotals/FileStat aggregate over several
files for the CLI SUMMARY line.
"""

__all__ = [
    "Severity",
    "ValidationIssue",
    "OutcomeAction",
    "ImportOutcome",
    "ImportReport",
    "FileStat",
    "RunTotals",
    "VALIDATION_ERROR",
    "REFERENCE_ERROR",
    "WRITE_ERROR",
    "COLLISION_EXISTING",
    "COLLISION_IN_BATCH",
]

# error_type vocabulary shared by outcomes and the JSON Lines error log
VALIDATION_ERROR = "VALIDATION_ERROR"
REFERENCE_ERROR = "REFERENCE_ERROR"
WRITE_ERROR = "WRITE_ERROR"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """Field-level problem found on one row (validation or reference resolution)."""
    row_index: int
    field: str | None
    message: str
    severity: Severity = Severity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def describe(self) -> str:
        return f"{self.field}: {self.message}" if self.field else self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
        }


# collision kinds for duplicate rows
COLLISION_EXISTING = "existing"  # matched a record already in the store
COLLISION_IN_BATCH = "in_batch"  # matched an earlier row of the same file

_COLLISION_LABELS = {
    COLLISION_EXISTING: "existing record",
    COLLISION_IN_BATCH: "in-batch duplicate",
}


class OutcomeAction(Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportOutcome:
    row_index: int
    action: OutcomeAction
    error: str | None = None  # underlying error text for failed rows
    error_type: str | None = None  # VALIDATION_ERROR / REFERENCE_ERROR / WRITE_ERROR
    issues: tuple[ValidationIssue, ...] = ()  # errors and warnings for this row
    record_id: object | None = None  # affected record for inserted/updated/skipped rows
    collision: str | None = None  # COLLISION_EXISTING / COLLISION_IN_BATCH for updated or skipped rows

    @staticmethod
    def failed(row_index: int, error_type: str, issues: tuple[ValidationIssue, ...] = (),
               error: str | None = None) -> ImportOutcome:
        if error is None:
            error = "; ".join(i.describe() for i in issues if i.is_error) or error_type
        return ImportOutcome(
            row_index=row_index,
            action=OutcomeAction.FAILED,
            error=error,
            error_type=error_type,
            issues=issues,
        )

    @property
    def warnings(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if not i.is_error)

    def feedback(self) -> str:
        """'row N: <status/message>' line for user-facing feedback."""
        if self.action is OutcomeAction.FAILED:
            text = f"row {self.row_index}: failed - {self.error}"
        else:
            text = f"row {self.row_index}: {self.action.value}"
            if self.collision is not None:
                text += f" [{_COLLISION_LABELS.get(self.collision, self.collision)}]"
        if self.warnings:
            text += " (warning: " + "; ".join(w.describe() for w in self.warnings) + ")"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index,
            "action": self.action.value,
            "error": self.error,
            "error_type": self.error_type,
            "issues": [i.to_dict() for i in self.issues],
            "record_id": None if self.record_id is None else str(self.record_id),
            "collision": self.collision,
        }


@dataclass(frozen=True)
class ImportReport:
    """Aggregate result of one import invocation.

    outcomes holds exactly one ImportOutcome per raw row, in file order.
    With dry_run the actions are the planned ones and nothing was written.
    """
    total_rows: int
    inserted: int
    updated: int
    skipped_duplicates: int
    failed: int
    outcomes: tuple[ImportOutcome, ...]
    source_name: str = ""
    dry_run: bool = False

    @staticmethod
    def from_outcomes(outcomes: list[ImportOutcome] | tuple[ImportOutcome, ...], *,
                      source_name: str = "", dry_run: bool = False) -> ImportReport:
        counts = {action: 0 for action in OutcomeAction}
        for outcome in outcomes:
            counts[outcome.action] += 1
        return ImportReport(
            total_rows=len(outcomes),
            inserted=counts[OutcomeAction.INSERTED],
            updated=counts[OutcomeAction.UPDATED],
            skipped_duplicates=counts[OutcomeAction.SKIPPED_DUPLICATE],
            failed=counts[OutcomeAction.FAILED],
            outcomes=tuple(outcomes),
            source_name=source_name,
            dry_run=dry_run,
        )

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    def failed_outcomes(self) -> list[ImportOutcome]:
        return [o for o in self.outcomes if o.action is OutcomeAction.FAILED]

    def outcome_for(self, row_index: int) -> ImportOutcome:
        for outcome in self.outcomes:
            if outcome.row_index == row_index:
                return outcome
        raise KeyError(row_index)

    def feedback_lines(self, *, failed_only: bool = False) -> list[str]:
        outcomes = self.failed_outcomes() if failed_only else self.outcomes
        return [o.feedback() for o in outcomes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source_name,
            "dry_run": self.dry_run,
            "total_rows": self.total_rows,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped_duplicates": self.skipped_duplicates,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass(frozen=True)
class FileStat:
    """Per-file statistics for the CLI run (internal helper for RunTotals)."""
    file_name: str
    status: str  # success / partial / failed
    total_rows: int
    inserted: int
    updated: int
    skipped_duplicates: int
    failed_rows: int
    elapsed_seconds: float
    error: str | None = None  # fatal FormatError / MappingError text


@dataclass(frozen=True)
class RunTotals:
    """Aggregated results over every file of one CLI run (SUMMARY line source)."""
    success_files: int
    failed_files: int
    total_rows: int
    inserted: int
    updated: int
    skipped_duplicates: int
    failed_rows: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    throughput_rows_per_sec: float
    file_stats: list[FileStat] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.failed_files > 0 or self.failed_rows > 0
