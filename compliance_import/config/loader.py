from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from compliance_import.models.import_settings import (
    DEFAULT_DATE_FORMATS,
    ArchivedCollisions,
    DuplicateMode,
    ImportSettings,
)

"""Config loader for config/import.yml.

Responsibilities:
- Load YAML (yaml.safe_load)
- Validate against the JSON schema shipped next to this module
- Apply defaults and build the immutable ImportSettings for the pipeline
"""

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "ImportConfig",
    "SCHEMA_PATH",
    "load_config",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    source_directory: str
    record_kind: str
    duplicate_mode: DuplicateMode
    settings: ImportSettings
    column_aliases: dict[str, dict[str, list[str]]] = field(default_factory=dict)  # kind -> field -> aliases
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing/invalid, or the config violates it
            (unknown keys, wrong types, out-of-range values).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        raise ConfigError(f"config validation failed{f' at {where}' if where else ''}: {e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    settings = ImportSettings(
        delimiter=data.get("delimiter", ";"),
        window_size=data.get("window_size", 50),
        max_file_bytes=data.get("max_file_bytes", 5 * 1024 * 1024),
        default_period_days=data.get("default_period_days", 365),
        warning_days=data.get("warning_days", 30),
        date_formats=tuple(data.get("date_formats", DEFAULT_DATE_FORMATS)),
        archived_collisions=ArchivedCollisions(data.get("archived_collisions", "leave")),
        actor=data.get("actor"),
    )
    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        source_directory=data.get("source_directory", "./data"),
        record_kind=data.get("record_kind", "training"),
        duplicate_mode=DuplicateMode(data.get("duplicate_mode", "skip")),
        settings=settings,
        column_aliases=data.get("column_aliases", {}),
        database=db,
    )
