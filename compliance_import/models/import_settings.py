from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

"""Per-run settings for the compliance record importer.

ImportSettings is built once from the YAML configuration (see
compliance_import.config.loader) and handed to every import invocation. It is
immutable, so concurrent invocations can share one instance safely.
"""

__all__ = [
    "DuplicateMode",
    "ArchivedCollisions",
    "ImportSettings",
    "DEFAULT_DATE_FORMATS",
]

DEFAULT_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d.%m.%Y",
    "%d. %m. %Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%Y-%m-%dT%H:%M:%S",
)


class DuplicateMode(Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"


class ArchivedCollisions(Enum):
    """How a triple matching only an archived record is treated."""
    LEAVE = "leave"  # archived rows are invisible, a new record is inserted
    REVIVE = "revive"  # archived rows collide; overwrite un-archives them


@dataclass(frozen=True)
class ImportSettings:
    """Tunables shared by every stage of one import invocation.

    Attributes:
        delimiter: Separator for delimited-text files
        window_size: Bounded concurrency window for lookups and writes
        max_file_bytes: Upload size cap checked before parsing
        default_period_days: Period used when neither row nor record type has one
        warning_days: Days before the next date at which status turns 'warning'
        date_formats: strptime formats accepted for date fields, tried in order
        archived_collisions: Policy for collisions with archived records
        actor: Value written to created_by on insert
        today: Reference date for status computation (None = date.today())
    """
    delimiter: str = ";"
    window_size: int = 50
    max_file_bytes: int = 5 * 1024 * 1024
    default_period_days: int = 365
    warning_days: int = 30
    date_formats: tuple[str, ...] = field(default=DEFAULT_DATE_FORMATS)
    archived_collisions: ArchivedCollisions = ArchivedCollisions.LEAVE
    actor: str | None = None
    today: date | None = None

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1 (got {self.window_size})")
        if len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be a single character (got {self.delimiter!r})")
        if not self.date_formats:
            raise ValueError("date_formats must not be empty")

    def reference_date(self) -> date:
        return self.today or date.today()
