from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per failed row (or per failed file, with row=-1). The key set is
fixed; downstream tooling greps these logs, so no extra keys may appear.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Source file name being imported
        row: Physical row number (1-based). -1 for file-level errors
        field: Canonical field the error is attached to, or None
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human-readable error text
    """
    timestamp: str  # ISO8601 UTC
    file: str
    row: int  # -1 when the row is unknown
    field: str | None
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, row: int, error_type: str, message: str, field: str | None = None) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            field=field,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
