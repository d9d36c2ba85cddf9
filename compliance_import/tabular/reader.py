from __future__ import annotations

import csv
import io
import logging
import math
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Any

import pandas as pd

from compliance_import.models.raw_row import RawRow, SheetData

"""Format Reader: raw file bytes -> ordered RawRow sequence.

Two containers are supported:
- delimited text (.csv/.txt), one fixed delimiter, UTF-8 with optional BOM
- workbook (.xlsx/.xlsm), first sheet only, read through pandas/openpyxl

The first non-empty row is the header. Cells are emitted as text; workbook
dates and numbers are converted to a canonical string form first so the Row
Validator sees the same shapes it would see in a CSV export. The reader is a
pure transform: it either returns the complete SheetData or raises FormatError.
"""

__all__ = [
    "FormatError",
    "FileKind",
    "SUPPORTED_EXTENSIONS",
    "detect_file_kind",
    "read_rows",
]

logger = logging.getLogger(__name__)

BOM = b"\xef\xbb\xbf"


class FormatError(Exception):
    """Raised when the file cannot be turned into rows at all (fatal for the run)."""


class FileKind(Enum):
    DELIMITED = "delimited"
    WORKBOOK = "workbook"


_EXTENSIONS = {
    ".csv": FileKind.DELIMITED,
    ".txt": FileKind.DELIMITED,
    ".xlsx": FileKind.WORKBOOK,
    ".xlsm": FileKind.WORKBOOK,
}
SUPPORTED_EXTENSIONS = tuple(_EXTENSIONS)


def detect_file_kind(name: str | Path) -> FileKind:
    suffix = Path(name).suffix.lower()
    try:
        return _EXTENSIONS[suffix]
    except KeyError:
        raise FormatError(f"unsupported file type '{suffix or name}' (expected .csv, .txt, .xlsx or .xlsm)") from None


def read_rows(
    data: bytes,
    kind: FileKind,
    *,
    delimiter: str = ";",
    max_bytes: int | None = None,
) -> SheetData:
    """Parse file bytes into a header + RawRow sequence.

    Parameters
    ----------
    data: raw file content
    kind: container kind (see detect_file_kind)
    delimiter: separator for delimited text
    max_bytes: size cap; larger files are rejected before parsing

    Row indexes are physical 1-based row numbers (header row included), so
    blank rows that are skipped still advance the numbering.
    """
    if max_bytes is not None and len(data) > max_bytes:
        raise FormatError(f"file is too large ({len(data)} bytes, limit {max_bytes})")
    if not data or not data.strip():
        raise FormatError("file is empty")

    if kind is FileKind.DELIMITED:
        grid = _read_delimited(data, delimiter)
    elif kind is FileKind.WORKBOOK:
        grid = _read_workbook(data)
    else:  # pragma: no cover (enum exhausted)
        raise FormatError(f"unsupported file kind: {kind}")

    sheet = _build_sheet(grid)
    logger.debug("read %d data rows, %d columns", len(sheet.rows), len(sheet.columns))
    return sheet


def _read_delimited(data: bytes, delimiter: str) -> list[list[str]]:
    if data.startswith(BOM):
        data = data[len(BOM):]
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"file is not valid UTF-8 (byte {e.start})") from e
    try:
        return [row for row in csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)]
    except csv.Error as e:
        raise FormatError(f"malformed delimited text: {e}") from e


def _read_workbook(data: bytes) -> list[list[str]]:
    try:
        # keep_default_na=False: literal 'NA' / 'N/A' cells stay text
        df = pd.read_excel(
            io.BytesIO(data),
            sheet_name=0,
            header=None,
            dtype=object,
            keep_default_na=False,
            engine="openpyxl",
        )
    except Exception as e:  # zip / xml / openpyxl errors all mean "not a workbook"
        raise FormatError(f"cannot read workbook: {e}") from e
    return [[_cell_text(v) for v in row] for row in df.itertuples(index=False, name=None)]


def _cell_text(value: Any) -> str:
    """Canonical text form of one workbook cell."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return ""
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.replace(microsecond=0).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _is_blank(cells: list[str]) -> bool:
    return all(not c.strip() for c in cells)


def _build_sheet(grid: list[list[str]]) -> SheetData:
    header_pos = next((i for i, cells in enumerate(grid) if not _is_blank(cells)), None)
    if header_pos is None:
        raise FormatError("file is empty")

    header_cells = [c.strip() for c in grid[header_pos]]
    # (cell position, header) for every non-blank header cell
    header: list[tuple[int, str]] = [(i, name) for i, name in enumerate(header_cells) if name]
    seen: set[str] = set()
    duplicates: list[str] = []
    for _, name in header:
        if name in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise FormatError(f"duplicate column headers: {', '.join(duplicates)}")

    rows: list[RawRow] = []
    for pos in range(header_pos + 1, len(grid)):
        cells = grid[pos]
        if _is_blank(cells):
            continue
        values = {name: (cells[i] if i < len(cells) else "") for i, name in header}
        if _is_blank(list(values.values())):
            continue  # content only under blank headers
        rows.append(RawRow(row_index=pos + 1, values=values))
    return SheetData(columns=[name for _, name in header], rows=rows)
