from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path

from compliance_import.models.error_record import ErrorRecord
from compliance_import.models.import_result import ImportReport

"""Error log buffering: JSON Lines, one file per CLI run.

- fixed record schema (compliance_import.models.error_record.ErrorRecord)
- file ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC), created on first flush
- records are buffered and appended per flush
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "LOGS_DIR",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. flush() appends them as JSON Lines."""

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        with self._lock:
            self._records.append(record)

    def record_report(self, report: ImportReport) -> int:
        """Buffer one record per failed row of the report (first error issue as field)."""
        count = 0
        for outcome in report.failed_outcomes():
            field = next((i.field for i in outcome.issues if i.is_error), None)
            self.append(
                ErrorRecord.create(
                    file=report.source_name,
                    row=outcome.row_index,
                    error_type=outcome.error_type or "UNKNOWN",
                    message=outcome.error or "",
                    field=field,
                )
            )
            count += 1
        return count

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path:
        with self._lock:
            if not self._records:
                return self.file_path
            fp = self.file_path
            with fp.open("a", encoding="utf-8") as f:
                for r in self._records:
                    f.write(r.to_json_line() + "\n")
            self._records.clear()
            return fp
