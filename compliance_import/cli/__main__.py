from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from compliance_import.config.loader import ConfigError, ImportConfig, load_config
from compliance_import.db.memory_store import MemoryRecordStore
from compliance_import.db.store import RecordStore, StoreError
from compliance_import.logging.error_log import ErrorLogBuffer
from compliance_import.logging.init import log_summary, set_debug, setup_logging
from compliance_import.mapping.column_mapper import MappingError, build_mapping
from compliance_import.mapping.field_specs import RECORD_SPECS, get_record_spec
from compliance_import.models.import_settings import DuplicateMode
from compliance_import.models.record_spec import RecordSpec
from compliance_import.services.orchestrator import ProcessingError, process_files, scan_import_files
from compliance_import.services.result_reporter import render_summary_line
from compliance_import.tabular.reader import FormatError, detect_file_kind, read_rows

"""CLI entrypoint.

    python -m compliance_import.cli [FILES...] [--kind training|deadline|medical]
        [--mode skip|overwrite] [--map field=Header ...] [--dry-run] [--inspect] [--debug]

Without FILES every supported file in ``source_directory`` is imported, each
in its own invocation. Exit codes: 0 all rows imported, 2 some rows or files
failed, 1 fatal configuration/startup error.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG = Path("config/import.yml")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv.

    override=True: .env values win over the process environment so DB
    connection settings from .env take priority.
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Bulk importer for training, technical deadline and medical examination records")
    p.add_argument("files", nargs="*", type=Path, help="Files to import (default: all files in source_directory)")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Config file (default: config/import.yml)")
    p.add_argument("--kind", choices=sorted(RECORD_SPECS), help="Record kind (default: record_kind from config)")
    p.add_argument("--mode", choices=[m.value for m in DuplicateMode], help="Duplicate handling (default: config)")
    p.add_argument(
        "--map",
        action="append",
        default=[],
        metavar="FIELD=HEADER",
        help="Explicit column mapping override, repeatable",
    )
    p.add_argument("--dry-run", action="store_true", help="Classify rows without writing anything")
    p.add_argument("--inspect", action="store_true", help="Print headers, column mapping & first rows then exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _parse_overrides(items: list[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in items:
        field, sep, header = item.partition("=")
        if not sep or not field.strip() or not header.strip():
            raise ValueError(f"invalid --map value '{item}' (expected FIELD=HEADER)")
        overrides[field.strip()] = header.strip()
    return overrides


def _open_store(cfg: ImportConfig, logger) -> RecordStore:
    # DISABLE_DB_CONNECT=1: run against an empty in-memory store (tests, dry checks)
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> memory store")
        return MemoryRecordStore.for_specs(RECORD_SPECS.values())
    from compliance_import.db.postgres_store import PostgresRecordStore, build_dsn

    return PostgresRecordStore(build_dsn(cfg.database), max_connections=cfg.settings.window_size)


def _inspect_data(paths: list[Path], cfg: ImportConfig, spec: RecordSpec, overrides: dict[str, str]) -> int:
    if not paths:
        print("inspect: no importable files")
        return EXIT_SUCCESS_ALL
    for path in paths:
        print(f"FILE: {path.name}")
        try:
            sheet = read_rows(
                path.read_bytes(),
                detect_file_kind(path),
                delimiter=cfg.settings.delimiter,
                max_bytes=cfg.settings.max_file_bytes,
            )
        except (FormatError, OSError) as e:
            print(f"  read_error: {e}")
            continue
        print(f"  columns={sheet.columns} rows={len(sheet.rows)}")
        try:
            mapping = build_mapping(sheet.columns, spec, overrides)
        except MappingError as e:
            print(f"  mapping_error: {e}")
        else:
            for binding in mapping.bindings.values():
                flag = "*" if binding.required else " "
                print(f"  {flag} {binding.field:<22} <- {binding.source!r} ({binding.matched_by})")
        for raw in sheet.rows[:3]:
            print(f"    row {raw.row_index}: {raw.values}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] must stay [] (tests call main([])); only None falls back to sys.argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error("config: %s", e)
        return EXIT_FATAL

    try:
        spec = get_record_spec(args.kind or cfg.record_kind, cfg.column_aliases)
        overrides = _parse_overrides(args.map)
    except (KeyError, ValueError) as e:
        logger.error("arguments: %s", e.args[0] if e.args else e)
        return EXIT_FATAL

    if args.files:
        missing = [p for p in args.files if not p.is_file()]
        if missing:
            logger.error("file not found: %s", ", ".join(str(p) for p in missing))
            return EXIT_FATAL
        paths = list(args.files)
    else:
        directory = Path(cfg.source_directory)
        try:
            paths = scan_import_files(directory)
        except ProcessingError as e:
            logger.error("%s", e)
            return EXIT_FATAL
        logger.info("Processing files from: %s", directory)

    if args.inspect:
        return _inspect_data(paths, cfg, spec, overrides)

    try:
        store = _open_store(cfg, logger)
    except StoreError as e:
        logger.error("database: %s", e)
        return EXIT_FATAL

    mode = DuplicateMode(args.mode) if args.mode else cfg.duplicate_mode
    error_log = ErrorLogBuffer()
    try:
        totals, reports = process_files(
            paths, cfg, store, spec, mode=mode, overrides=overrides, dry_run=args.dry_run, error_log=error_log
        )
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()

    if args.dry_run:
        for report in reports:
            for line in report.feedback_lines():
                logger.info("%s %s", report.source_name, line)

    logger.info("kind=%s mode=%s%s", spec.kind, mode.value, " dry_run" if args.dry_run else "")
    if totals.has_failures:
        logger.info("error log: %s", error_log.file_path)

    # log_summary adds the "SUMMARY " label itself
    log_summary(render_summary_line(totals)[len("SUMMARY "):])

    return EXIT_PARTIAL_FAILURE if totals.has_failures else EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
