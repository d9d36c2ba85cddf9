from __future__ import annotations

from collections.abc import Iterable

from compliance_import.models.import_result import ImportOutcome, ImportReport, RunTotals

"""Result Reporter and SUMMARY line rendering.

ResultReporter is created with the row indexes of every raw row and accepts
exactly one outcome per index, from whichever stage finished the row. build()
refuses to produce a report while any row is unaccounted for, so the report
always maps one-to-one onto the source file.
"""

__all__ = [
    "ReporterError",
    "ResultReporter",
    "render_summary_line",
]


class ReporterError(Exception):
    """An outcome was missing, duplicated, or referred to an unknown row."""


class ResultReporter:
    def __init__(self, row_indices: Iterable[int], *, source_name: str = "", dry_run: bool = False) -> None:
        self._order = list(row_indices)
        if len(set(self._order)) != len(self._order):
            raise ReporterError("row indices must be unique")
        self._expected = set(self._order)
        self._outcomes: dict[int, ImportOutcome] = {}
        self.source_name = source_name
        self.dry_run = dry_run

    def record(self, outcome: ImportOutcome) -> None:
        index = outcome.row_index
        if index not in self._expected:
            raise ReporterError(f"outcome for unknown row {index}")
        if index in self._outcomes:
            raise ReporterError(f"row {index} already has an outcome ({self._outcomes[index].action.value})")
        self._outcomes[index] = outcome

    def record_all(self, outcomes: Iterable[ImportOutcome]) -> None:
        for outcome in outcomes:
            self.record(outcome)

    @property
    def pending(self) -> list[int]:
        return [i for i in self._order if i not in self._outcomes]

    def build(self) -> ImportReport:
        missing = self.pending
        if missing:
            preview = ", ".join(str(i) for i in missing[:10])
            raise ReporterError(f"{len(missing)} row(s) without outcome: {preview}")
        return ImportReport.from_outcomes(
            [self._outcomes[i] for i in self._order],
            source_name=self.source_name,
            dry_run=self.dry_run,
        )


def _format_number(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation for very small values
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_summary_line(totals: RunTotals) -> str:
    """Render the SUMMARY line for a CLI run.

    Format:
    SUMMARY files={ok+failed}/{total} success={ok} failed={failed} rows={rows}
    inserted={n} updated={n} skipped={n} failed_rows={n} elapsed_sec={s} throughput_rps={r}

    >>> from datetime import datetime, timezone
    >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    >>> render_summary_line(RunTotals(1, 0, 4, 3, 0, 1, 0, t, t, 2.0, 2.0))
    'SUMMARY files=1/1 success=1 failed=0 rows=4 inserted=3 updated=0 skipped=1 failed_rows=0 elapsed_sec=2 throughput_rps=2'
    """
    total_files = totals.success_files + totals.failed_files
    return (
        f"SUMMARY files={total_files}/{total_files} "
        f"success={totals.success_files} "
        f"failed={totals.failed_files} "
        f"rows={totals.total_rows} "
        f"inserted={totals.inserted} "
        f"updated={totals.updated} "
        f"skipped={totals.skipped_duplicates} "
        f"failed_rows={totals.failed_rows} "
        f"elapsed_sec={_format_number(totals.elapsed_seconds)} "
        f"throughput_rps={_format_number(totals.throughput_rows_per_sec)}"
    )
