from __future__ import annotations

from dataclasses import dataclass, field

"""RawRow and SheetData models for the compliance record importer.

A RawRow is one non-blank line of the uploaded file, exactly as the Format
Reader saw it: source header -> cell text. Nothing has been trimmed, typed or
checked yet. SheetData bundles the header row with the rows below it so the
Column Mapper can work on headers even when the file has no data rows.
"""

__all__ = [
    "RawRow",
    "SheetData",
]


@dataclass(frozen=True)
class RawRow:
    """One data row of the source file.

    row_index is the 1-based physical row number in the file (the header row
    counts), so "row 5" in a report is row 5 in the spreadsheet the user has open.
    """
    row_index: int
    values: dict[str, str]  # source header -> cell text (ordered as in the file)

    def get(self, column: str | None) -> str:
        if column is None:
            return ""
        return self.values.get(column, "")


@dataclass(frozen=True)
class SheetData:
    columns: list[str]  # trimmed headers, case preserved, blank headers dropped
    rows: list[RawRow] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)
