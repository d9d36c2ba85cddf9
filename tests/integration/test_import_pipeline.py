from __future__ import annotations

from datetime import date, datetime

import pandas as pd
import pytest

from compliance_import.config.loader import load_config
from compliance_import.mapping.column_mapper import MappingError
from compliance_import.mapping.field_specs import DEADLINE_SPEC, MEDICAL_SPEC, TRAINING_SPEC
from compliance_import.models.import_result import (
    COLLISION_EXISTING,
    COLLISION_IN_BATCH,
    REFERENCE_ERROR,
    VALIDATION_ERROR,
    OutcomeAction,
)
from compliance_import.models.import_settings import ArchivedCollisions, DuplicateMode, ImportSettings
from compliance_import.services.orchestrator import run_import
from compliance_import.tabular.reader import FileKind, FormatError

TODAY = date(2024, 6, 1)
TRAINING_HEADER = ["employee_number", "training_type_name", "facility", "last_training_date"]

DAY = date(2024, 1, 10)
BOZP = "BOZP školení"

INSERTED = OutcomeAction.INSERTED
UPDATED = OutcomeAction.UPDATED
SKIPPED = OutcomeAction.SKIPPED_DUPLICATE
FAILED = OutcomeAction.FAILED


def _seed_training(store, *, employee_id=1, type_id=10, day=DAY, deleted_at=None, **extra):
    return store.add_row(
        "trainings",
        employee_id=employee_id,
        training_type_id=type_id,
        last_training_date=day,
        deleted_at=deleted_at,
        **extra,
    )


def _import(store, settings, data, **kwargs):
    kwargs.setdefault("file_kind", FileKind.DELIMITED)
    return run_import(data, TRAINING_SPEC, store, settings=settings, source_name="trainings.csv", **kwargs)


def _actions(report):
    return [o.action for o in report.outcomes]


def _active_trainings(store):
    return [r for r in store.rows("trainings") if r.get("deleted_at") is None]


def test_mixed_file_inserted_skipped_failed(store, settings, csv_bytes):
    existing_id = _seed_training(store)
    data = csv_bytes([
        ["E002", BOZP, "PRG", "2024-01-10"],
        ["E001", BOZP, "PRG", "10.01.2024"],
        ["E003", BOZP, "PRG", "31-13-2024"],
    ])
    report = _import(store, settings, data)

    assert _actions(report) == [INSERTED, SKIPPED, FAILED]
    assert [o.row_index for o in report.outcomes] == [2, 3, 4]
    assert report.outcome_for(3).record_id == existing_id
    assert report.outcome_for(3).collision == COLLISION_EXISTING
    assert report.outcome_for(2).collision is None
    failed = report.outcome_for(4)
    assert failed.error_type == VALIDATION_ERROR
    assert "last_training_date" in failed.error
    assert (report.inserted, report.skipped_duplicates, report.failed) == (1, 1, 1)
    assert len(store.rows("trainings")) == 2


def test_inserted_record_values(store, settings, csv_bytes):
    report = _import(store, settings, csv_bytes([["E002", BOZP, "BRN", "2024-01-10"]]))
    record = store.get("trainings", report.outcome_for(2).record_id)
    assert record["employee_id"] == 2
    assert record["training_type_id"] == 12
    assert record["next_training_date"] == date(2026, 1, 9)
    assert record["status"] == "valid"
    assert record["created_by"] == "tester"


def test_in_batch_duplicate_skip(store, settings, csv_bytes):
    row = ["E001", BOZP, "PRG", "2024-01-10"]
    report = _import(store, settings, csv_bytes([row, row]))
    assert _actions(report) == [INSERTED, SKIPPED]
    assert report.outcome_for(3).collision == COLLISION_IN_BATCH
    assert report.outcome_for(3).to_dict()["collision"] == "in_batch"
    assert report.outcome_for(3).feedback() == "row 3: skipped_duplicate [in-batch duplicate]"
    assert len(store.rows("trainings")) == 1


def test_in_batch_duplicate_overwrite_last_row_wins(store, settings, csv_bytes):
    header = TRAINING_HEADER + ["note"]
    rows = [
        ["E001", BOZP, "PRG", "2024-01-10", "first"],
        ["E001", BOZP, "PRG", "2024-01-10", "second"],
    ]
    report = _import(store, settings, csv_bytes(rows, header=header), mode=DuplicateMode.OVERWRITE)
    assert _actions(report) == [INSERTED, UPDATED]
    assert report.outcome_for(3).collision == COLLISION_IN_BATCH
    (record,) = store.rows("trainings")
    assert record["note"] == "second"


@pytest.mark.parametrize("mode, second", [
    (DuplicateMode.SKIP, SKIPPED),
    (DuplicateMode.OVERWRITE, UPDATED),
])
def test_reimport_same_file(store, settings, csv_bytes, mode, second):
    data = csv_bytes([
        ["E001", BOZP, "PRG", "2024-01-10"],
        ["E002", "Fire safety", "PRG", "2024-02-01"],
    ])
    first = _import(store, settings, data, mode=mode)
    again = _import(store, settings, data, mode=mode)
    assert _actions(first) == [INSERTED, INSERTED]
    assert _actions(again) == [second, second]
    assert len(store.rows("trainings")) == 2


def test_overwrite_keeps_created_by_and_sets_updated_at(store, settings, csv_bytes):
    existing_id = _seed_training(store, created_by="someone", note="old")
    header = TRAINING_HEADER + ["note"]
    report = _import(
        store, settings, csv_bytes([["E001", BOZP, "PRG", "2024-01-10", "new"]], header=header),
        mode=DuplicateMode.OVERWRITE,
    )
    assert _actions(report) == [UPDATED]
    record = store.get("trainings", existing_id)
    assert record["note"] == "new"
    assert record["created_by"] == "someone"
    assert record["updated_at"] is not None


def test_next_day_is_not_a_duplicate(store, settings, csv_bytes):
    _seed_training(store)
    report = _import(store, settings, csv_bytes([["E001", BOZP, "PRG", "2024-01-11"]]))
    assert _actions(report) == [INSERTED]


def test_missing_required_header_aborts_before_any_row(store, settings, csv_bytes):
    header = ["employee_number", "training_type_name", "last_training_date"]
    with pytest.raises(MappingError) as e:
        _import(store, settings, csv_bytes([["E001", BOZP, "2024-01-10"]], header=header))
    assert "facility" in e.value.missing_fields
    assert store.calls == []


def test_empty_file_is_format_error(store, settings):
    with pytest.raises(FormatError):
        _import(store, settings, b"")
    assert store.calls == []


def test_bom_does_not_change_outcomes(store, settings, csv_bytes):
    rows = [["E001", BOZP, "PRG", "2024-01-10"]]
    report = _import(store, settings, csv_bytes(rows, bom=True), dry_run=True)
    plain = _import(store, settings, csv_bytes(rows), dry_run=True)
    assert report.feedback_lines() == plain.feedback_lines() == ["row 2: inserted"]


def test_rows_failing_validation_are_never_looked_up(store, settings, csv_bytes):
    report = _import(store, settings, csv_bytes([
        ["E001", BOZP, "PRG", "2024-01-10"],
        ["E999", BOZP, "PRG", ""],
    ]))
    assert _actions(report) == [INSERTED, FAILED]
    assert store.calls_to("find_subjects") == [("find_subjects", "employees", 1)]


def test_lookups_are_batched_per_distinct_key(store, settings, csv_bytes):
    rows = [["E00%d" % (i % 3 + 1), BOZP, "PRG", f"2024-01-{i + 1:02d}"] for i in range(9)]
    report = _import(store, settings, csv_bytes(rows))
    assert report.inserted == 9
    assert store.calls_to("find_subjects") == [("find_subjects", "employees", 3)]
    assert store.calls_to("find_facilities") == [("find_facilities", "facilities", 1)]
    # window_size=4: nine distinct triples -> three duplicate lookups
    assert [c[2] for c in store.calls_to("find_by_triples")] == [4, 4, 1]


def test_unknown_references_reported_per_row(store, settings, csv_bytes):
    report = _import(store, settings, csv_bytes([
        ["E999", BOZP, "PRG", "2024-01-10"],
        ["E001", BOZP, "OST", "2024-01-10"],
        ["E001", "Unknown", "PRG", "2024-01-10"],
    ]))
    assert _actions(report) == [FAILED, FAILED, FAILED]
    assert {o.error_type for o in report.outcomes} == {REFERENCE_ERROR}
    assert "'E999' not found" in report.outcome_for(2).error
    assert "facility 'OST' not found" in report.outcome_for(3).error
    assert "type 'Unknown' not found for facility 'PRG'" in report.outcome_for(4).error


def test_archived_collision_left_alone(store, settings, csv_bytes):
    archived_id = _seed_training(store, deleted_at=datetime(2024, 2, 1))
    report = _import(store, settings, csv_bytes([["E001", BOZP, "PRG", "2024-01-10"]]))
    assert _actions(report) == [INSERTED]
    assert report.outcome_for(2).record_id != archived_id
    assert store.get("trainings", archived_id)["deleted_at"] is not None
    assert len(store.rows("trainings")) == 2


def test_archived_collision_revived_on_overwrite(store, csv_bytes):
    settings = ImportSettings(window_size=4, today=TODAY, actor="tester",
                              archived_collisions=ArchivedCollisions.REVIVE)
    archived_id = _seed_training(store, deleted_at=datetime(2024, 2, 1))
    report = _import(store, settings, csv_bytes([["E001", BOZP, "PRG", "2024-01-10"]]),
                     mode=DuplicateMode.OVERWRITE)
    assert _actions(report) == [UPDATED]
    record = store.get("trainings", archived_id)
    assert record["deleted_at"] is None
    assert record["is_active"] is True
    assert len(store.rows("trainings")) == 1


def test_dry_run_writes_nothing(store, settings, csv_bytes):
    _seed_training(store)
    data = csv_bytes([
        ["E001", BOZP, "PRG", "2024-01-10"],
        ["E002", BOZP, "PRG", "2024-01-10"],
        ["E002", BOZP, "PRG", "2024-01-10"],
    ])
    report = _import(store, settings, data, mode=DuplicateMode.OVERWRITE, dry_run=True)
    assert report.dry_run is True
    assert _actions(report) == [UPDATED, INSERTED, UPDATED]
    assert [o.collision for o in report.outcomes] == [COLLISION_EXISTING, None, COLLISION_IN_BATCH]
    assert store.calls_to("insert_record") == []
    assert store.calls_to("update_record") == []
    assert len(store.rows("trainings")) == 1


def test_every_row_gets_exactly_one_outcome(store, settings, csv_bytes):
    _seed_training(store)
    rows = [
        ["E001", BOZP, "PRG", "2024-01-10"],
        ["E001", BOZP, "PRG", "bad"],
        ["", BOZP, "PRG", "2024-01-10"],
        ["E404", BOZP, "PRG", "2024-01-10"],
        ["E002", BOZP, "PRG", "2024-01-10"],
        ["E002", BOZP, "PRG", "2024-01-10"],
    ]
    report = _import(store, settings, csv_bytes(rows))
    assert [o.row_index for o in report.outcomes] == [2, 3, 4, 5, 6, 7]
    assert report.total_rows == 6
    assert report.inserted + report.updated + report.skipped_duplicates + report.failed == 6


def test_future_date_is_a_warning_not_a_failure(store, settings, csv_bytes):
    report = _import(store, settings, csv_bytes([["E001", BOZP, "PRG", "2024-07-01"]]))
    outcome = report.outcome_for(2)
    assert outcome.action is INSERTED
    assert outcome.warnings
    assert "(warning:" in outcome.feedback()


def test_workbook_input(store, settings, xlsx_bytes):
    frame = pd.DataFrame({
        "Osobní číslo": ["E001", "E002"],
        "Typ školení": [BOZP, "Fire safety"],
        "Provozovna": ["PRG", "PRG"],
        "Datum posledního školení": [datetime(2024, 1, 10), datetime(2024, 3, 5)],
    })
    report = run_import(xlsx_bytes(frame), TRAINING_SPEC, store, settings=settings, source_name="trainings.xlsx")
    assert _actions(report) == [INSERTED, INSERTED]
    dates = sorted(r["last_training_date"] for r in store.rows("trainings"))
    assert dates == [date(2024, 1, 10), date(2024, 3, 5)]


def test_deadline_import(store, settings, csv_bytes):
    header = ["inventory_number", "deadline_type_name", "facility", "last_check_date"]
    report = run_import(
        csv_bytes([["INV-1", "Revize elektro", "PRG", "2023-01-15"]], header=header),
        DEADLINE_SPEC,
        store,
        file_kind=FileKind.DELIMITED,
        settings=settings,
    )
    assert _actions(report) == [INSERTED]
    (record,) = store.rows("deadlines")
    assert record["equipment_id"] == 50
    assert record["deadline_type_id"] == 60
    assert record["next_check_date"] == date(2026, 1, 14)


def test_workbook_timestamp_cell_with_configured_date_formats(write_config, store, xlsx_bytes):
    text = write_config.read_text(encoding="utf-8") + 'date_formats: ["%d.%m.%Y"]\n'
    write_config.write_text(text, encoding="utf-8")
    settings = load_config(write_config).settings
    frame = pd.DataFrame({
        "employee_number": ["E001"],
        "training_type_name": [BOZP],
        "facility": ["PRG"],
        "last_training_date": [datetime(2024, 1, 10, 8, 30)],
    })
    report = run_import(xlsx_bytes(frame), TRAINING_SPEC, store, settings=settings, source_name="t.xlsx")
    assert _actions(report) == [INSERTED]
    (record,) = store.rows("trainings")
    assert record["last_training_date"] == date(2024, 1, 10)


def test_medical_examination_import(store, settings, csv_bytes):
    header = ["Osobní číslo", "Typ prohlídky", "Provozovna", "Datum poslední prohlídky", "Lékař",
              "Zdravotnické zařízení", "Výsledek"]
    row = ["E001", "Vstupní prohlídka", "PRG", "15.01.2024", "MUDr. Jan Novák", "Poliklinika Praha", "Způsobilý"]
    data = csv_bytes([row, row], header=header)
    report = run_import(data, MEDICAL_SPEC, store, file_kind=FileKind.DELIMITED, settings=settings)
    assert _actions(report) == [INSERTED, SKIPPED]
    assert report.outcome_for(3).collision == COLLISION_IN_BATCH
    (record,) = store.rows("medical_examinations")
    assert record["employee_id"] == 1
    assert record["examination_type_id"] == 70
    assert record["last_examination_date"] == date(2024, 1, 15)
    assert record["next_examination_date"] == date(2026, 1, 14)
    assert record["medical_facility"] == "Poliklinika Praha"
    assert record["doctor"] == "MUDr. Jan Novák"
    assert record["result"] == "Způsobilý"
