from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from ..config.loader import ImportConfig
from ..db.store import RecordStore
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..mapping.column_mapper import ColumnMapping, MappingError, build_mapping
from ..models.import_result import (
    VALIDATION_ERROR,
    FileStat,
    ImportOutcome,
    ImportReport,
    RunTotals,
)
from ..models.import_settings import DuplicateMode, ImportSettings
from ..models.raw_row import SheetData
from ..models.record_spec import RecordSpec
from ..tabular.reader import SUPPORTED_EXTENSIONS, FileKind, FormatError, detect_file_kind, read_rows
from ..validation.row_validator import validate_row
from .batch_committer import WindowMetrics, commit_chains, plan_outcomes
from .duplicate_detector import detect_duplicates
from .progress import CommitProgress, ProgressTracker
from .reference_resolver import ReferenceCache, resolve_references
from .result_reporter import ResultReporter

"""Import orchestration.

run_import() drives one file through the pipeline stages in strict sequence:

    Format Reader -> Column Mapper -> Row Validator -> Reference Resolver
    -> Duplicate Detector -> Batch Committer (or plan only, dry run) -> Result Reporter

Each call builds its own RunContext (mapping, reference cache, settings) and
drops it afterwards; nothing is shared between concurrent invocations.
FormatError / MappingError abort the call before any row is processed;
everything else ends up in a row outcome.

process_files() is the CLI-facing loop: one isolated run_import per file,
file-level failures recorded with row=-1 in the JSON Lines error log.
"""

logger = logging.getLogger(__name__)

# error_type values for file-level error records
FORMAT_ERROR = "FORMAT_ERROR"
MAPPING_ERROR = "MAPPING_ERROR"
FILE_ERROR = "FILE_ERROR"


class ProcessingError(Exception):
    """Fatal error before any file could be processed (e.g. missing directory)."""


@dataclass
class RunContext:
    """State owned by exactly one import invocation."""
    spec: RecordSpec
    store: RecordStore
    settings: ImportSettings
    mode: DuplicateMode
    dry_run: bool = False
    source_name: str = ""
    sheet: SheetData | None = None
    mapping: ColumnMapping | None = None
    cache: ReferenceCache = field(default_factory=ReferenceCache)


def run_import(
    data: bytes,
    record_spec: RecordSpec,
    store: RecordStore,
    *,
    file_kind: FileKind | None = None,
    mode: DuplicateMode | str = DuplicateMode.SKIP,
    overrides: Mapping[str, str] | None = None,
    settings: ImportSettings | None = None,
    dry_run: bool = False,
    source_name: str = "",
    window_callback: Callable[[WindowMetrics], None] | None = None,
) -> ImportReport:
    """Import one file and return its report.

    Parameters
    ----------
    data: raw file bytes
    record_spec: record kind being imported (see mapping.field_specs)
    store: relational collaborator (RecordStore)
    file_kind: container kind; detected from source_name when omitted
    mode: duplicate handling, 'skip' or 'overwrite'
    overrides: explicit {canonical field: source header} mapping
    settings: run tunables (defaults when omitted)
    dry_run: run every stage but write nothing; outcomes are the planned ones
    source_name: file name used in the report and logs
    window_callback: receives WindowMetrics after each commit window

    Raises
    ------
    FormatError: file empty/undecodable/duplicate headers/too large
    MappingError: required canonical fields without a column
    """
    ctx = RunContext(
        spec=record_spec,
        store=store,
        settings=settings or ImportSettings(),
        mode=DuplicateMode(mode),
        dry_run=dry_run,
        source_name=source_name,
    )
    if file_kind is None:
        if not source_name:
            raise FormatError("file kind not given and no file name to detect it from")
        file_kind = detect_file_kind(source_name)

    ctx.sheet = read_rows(data, file_kind, delimiter=ctx.settings.delimiter, max_bytes=ctx.settings.max_file_bytes)
    ctx.mapping = build_mapping(ctx.sheet.columns, ctx.spec, overrides)
    reporter = ResultReporter((r.row_index for r in ctx.sheet.rows), source_name=source_name, dry_run=dry_run)

    valid = []
    for raw in ctx.sheet.rows:
        checked = validate_row(raw, ctx.mapping, ctx.spec, ctx.settings)
        if checked.row is None:
            reporter.record(ImportOutcome.failed(raw.row_index, VALIDATION_ERROR, checked.issues))
        else:
            valid.append(checked.row)
    logger.debug("%s: %d/%d row(s) passed validation", source_name or "<data>", len(valid), len(ctx.sheet.rows))

    resolution = resolve_references(valid, ctx.spec, ctx.store, ctx.cache, max_workers=min(3, ctx.settings.window_size))
    reporter.record_all(resolution.failed)

    detection = detect_duplicates(resolution.resolved, ctx.spec, ctx.store, ctx.settings)
    reporter.record_all(detection.failed)

    if ctx.dry_run:
        reporter.record_all(plan_outcomes(detection.chains, ctx.mode))
    else:
        reporter.record_all(
            commit_chains(detection.chains, ctx.spec, ctx.store, ctx.mode, ctx.settings, window_callback=window_callback)
        )

    report = reporter.build()
    logger.info(
        "%s: rows=%d inserted=%d updated=%d skipped=%d failed=%d%s",
        source_name or "<data>",
        report.total_rows,
        report.inserted,
        report.updated,
        report.skipped_duplicates,
        report.failed,
        " (dry run)" if dry_run else "",
    )
    return report


def scan_import_files(directory: Path) -> list[Path]:
    """List importable files in a directory (non-recursive, sorted by name).

    Raises:
        ProcessingError: directory missing or unreadable
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")
    try:
        return sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS and not p.name.startswith("~$")
        )
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e


def import_file(
    path: Path,
    config: ImportConfig,
    store: RecordStore,
    spec: RecordSpec,
    *,
    mode: DuplicateMode | None = None,
    overrides: Mapping[str, str] | None = None,
    dry_run: bool = False,
) -> ImportReport:
    """run_import() for a file on disk, with the size cap checked before reading."""
    size = path.stat().st_size
    if size > config.settings.max_file_bytes:
        raise FormatError(f"file is too large ({size} bytes, limit {config.settings.max_file_bytes})")
    data = path.read_bytes()
    with CommitProgress() as progress:
        return run_import(
            data,
            spec,
            store,
            file_kind=detect_file_kind(path),
            mode=mode or config.duplicate_mode,
            overrides=overrides,
            settings=config.settings,
            dry_run=dry_run,
            source_name=path.name,
            window_callback=progress,
        )


def process_files(
    paths: list[Path],
    config: ImportConfig,
    store: RecordStore,
    spec: RecordSpec,
    *,
    mode: DuplicateMode | None = None,
    overrides: Mapping[str, str] | None = None,
    dry_run: bool = False,
    error_log: ErrorLogBuffer | None = None,
) -> tuple[RunTotals, list[ImportReport]]:
    """Import every file in its own invocation and aggregate the totals."""
    start_time = datetime.now(UTC)
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    reports: list[ImportReport] = []
    file_stats: list[FileStat] = []

    with ProgressTracker(len(paths), description="Importing files") as progress:
        for path in paths:
            progress.start_file(path)
            file_start = datetime.now(UTC)
            error_type = None
            try:
                report = import_file(path, config, store, spec, mode=mode, overrides=overrides, dry_run=dry_run)
            except FormatError as e:
                error_type, error = FORMAT_ERROR, str(e)
            except MappingError as e:
                error_type, error = MAPPING_ERROR, str(e)
            except OSError as e:
                error_type, error = FILE_ERROR, str(e)
            elapsed = (datetime.now(UTC) - file_start).total_seconds()

            if error_type is not None:
                logger.error("%s: %s", path.name, error)
                error_log.append(ErrorRecord.create(file=path.name, row=-1, error_type=error_type, message=error))
                file_stats.append(FileStat(path.name, "failed", 0, 0, 0, 0, 0, elapsed, error=error))
                progress.finish_file(success=False)
                continue

            reports.append(report)
            for outcome in report.failed_outcomes():
                logger.warning("%s %s", path.name, outcome.feedback())
            error_log.record_report(report)
            file_stats.append(
                FileStat(
                    file_name=path.name,
                    status="success" if report.succeeded else "partial",
                    total_rows=report.total_rows,
                    inserted=report.inserted,
                    updated=report.updated,
                    skipped_duplicates=report.skipped_duplicates,
                    failed_rows=report.failed,
                    elapsed_seconds=elapsed,
                )
            )
            progress.set_postfix(rows=sum(s.total_rows for s in file_stats))
            progress.finish_file(success=report.succeeded)

    try:
        error_log.flush()
    except OSError as e:
        logger.error("failed to write error log: %s", e)

    end_time = datetime.now(UTC)
    elapsed_seconds = (end_time - start_time).total_seconds()
    total_rows = sum(s.total_rows for s in file_stats)
    totals = RunTotals(
        success_files=sum(1 for s in file_stats if s.status != "failed"),
        failed_files=sum(1 for s in file_stats if s.status == "failed"),
        total_rows=total_rows,
        inserted=sum(s.inserted for s in file_stats),
        updated=sum(s.updated for s in file_stats),
        skipped_duplicates=sum(s.skipped_duplicates for s in file_stats),
        failed_rows=sum(s.failed_rows for s in file_stats),
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=elapsed_seconds,
        throughput_rows_per_sec=total_rows / elapsed_seconds if elapsed_seconds > 0 else 0.0,
        file_stats=file_stats,
    )
    return totals, reports
