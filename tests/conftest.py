# Shared pytest fixtures
from __future__ import annotations

import io
import os
import tempfile
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from compliance_import.db.memory_store import MemoryRecordStore
from compliance_import.logging.init import reset_logging
from compliance_import.mapping.field_specs import RECORD_SPECS
from compliance_import.models.import_settings import ImportSettings

TODAY = date(2024, 6, 1)

TRAINING_HEADER = ["employee_number", "training_type_name", "facility", "last_training_date"]


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
record_kind: training
duplicate_mode: skip
archived_collisions: leave
delimiter: ";"
window_size: 10
default_period_days: 365
warning_days: 30
actor: importer
column_aliases:
  training:
    employee_number: [pracovnik]
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def mock_db(monkeypatch):
    """Run the CLI against an in-memory store."""
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    for var in ("DATABASE_URL", "PGDSN"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def settings() -> ImportSettings:
    return ImportSettings(window_size=4, today=TODAY, actor="tester")


@pytest.fixture()
def store() -> MemoryRecordStore:
    """Memory store seeded with two employees, two facilities and training types."""
    s = MemoryRecordStore.for_specs(RECORD_SPECS.values())
    s.add_row("facilities", id=100, code="PRG")
    s.add_row("facilities", id=101, code="BRN")
    s.add_row("employees", id=1, employee_number="E001")
    s.add_row("employees", id=2, employee_number="E002")
    s.add_row("employees", id=3, employee_number="E003")
    s.add_row("training_types", id=10, name="BOZP školení", facility="PRG", period_days=365)
    s.add_row("training_types", id=11, name="Fire safety", facility="PRG", period_days=None)
    s.add_row("training_types", id=12, name="BOZP školení", facility="BRN", period_days=730)
    s.add_row("equipment", id=50, inventory_number="INV-1")
    s.add_row("deadline_types", id=60, name="Revize elektro", facility="PRG", period_days=1095)
    s.add_row("medical_examination_types", id=70, name="Vstupní prohlídka", facility="PRG", period_days=730)
    return s


def make_csv(rows: list[list[str]], header: list[str] | None = None, *, delimiter: str = ";",
             bom: bool = False) -> bytes:
    lines = [delimiter.join(header or TRAINING_HEADER)]
    lines += [delimiter.join(r) for r in rows]
    data = ("\r\n".join(lines) + "\r\n").encode("utf-8")
    return (b"\xef\xbb\xbf" + data) if bom else data


def make_xlsx(frame: pd.DataFrame) -> bytes:
    buf = io.BytesIO()
    frame.to_excel(buf, index=False, engine="openpyxl")
    return buf.getvalue()


@pytest.fixture()
def csv_bytes():
    return make_csv


@pytest.fixture()
def xlsx_bytes():
    return make_xlsx


@pytest.fixture()
def data_file(temp_workdir: Path):
    def _write(name: str, content: bytes) -> Path:
        path = temp_workdir / "data" / name
        path.write_bytes(content)
        return path
    return _write


@pytest.fixture()
def clean_env(monkeypatch):
    for var in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(var, raising=False)
    return os.environ
