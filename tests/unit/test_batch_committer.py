from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest

from compliance_import.db.store import DuplicateRecordError, ExistingRecord, StoreWriteError
from compliance_import.mapping.field_specs import TRAINING_SPEC
from compliance_import.models.import_result import COLLISION_EXISTING, COLLISION_IN_BATCH, WRITE_ERROR, OutcomeAction
from compliance_import.models.import_settings import DuplicateMode, ImportSettings
from compliance_import.models.mapped_row import MappedRow, TypedValue
from compliance_import.models.record_spec import FieldKind
from compliance_import.services.batch_committer import (
    build_record_values,
    commit_chains,
    compute_status,
    plan_outcomes,
)
from compliance_import.services.duplicate_detector import CollisionChain
from compliance_import.services.reference_resolver import ResolvedRow

TODAY = date(2024, 6, 1)
SETTINGS = ImportSettings(window_size=2, today=TODAY, actor="tester")
DAY = date(2024, 1, 1)


def _resolved(row_index: int, *, subject: int = 1, day: date = DAY, type_period: int | None = 365,
              **values: TypedValue) -> ResolvedRow:
    return ResolvedRow(
        row=MappedRow(row_index=row_index, values=dict(values)),
        subject_id=subject,
        type_id=10,
        facility_code="PRG",
        facility_id=100,
        type_period_days=type_period,
        occurrence_date=day,
    )


def _chain(*rows: ResolvedRow, existing: ExistingRecord | None = None) -> CollisionChain:
    return CollisionChain(triple=rows[0].triple, rows=list(rows), existing=existing)


@pytest.mark.parametrize("next_date, expected", [
    (date(2024, 5, 31), "expired"),
    (date(2024, 6, 1), "warning"),
    (date(2024, 7, 1), "warning"),
    (date(2024, 7, 2), "valid"),
])
def test_compute_status(next_date, expected):
    assert compute_status(next_date, TODAY, 30) == expected


def test_insert_values_use_type_period_and_computed_status():
    values = build_record_values(_resolved(2), TRAINING_SPEC, SETTINGS, insert=True)
    assert values["employee_id"] == 1
    assert values["training_type_id"] == 10
    assert values["facility"] == "PRG"
    assert values["last_training_date"] == DAY
    assert values["next_training_date"] == date(2024, 12, 31)
    assert values["status"] == "valid"
    assert values["is_active"] is True
    assert values["created_by"] == "tester"
    assert "updated_at" not in values


def test_row_period_and_status_override():
    row = _resolved(
        2,
        period_days=TypedValue(FieldKind.INTEGER, 30),
        status=TypedValue(FieldKind.ENUM, "valid"),
        note=TypedValue(FieldKind.STRING, "x"),
    )
    values = build_record_values(row, TRAINING_SPEC, SETTINGS, insert=True)
    assert values["next_training_date"] == date(2024, 1, 31)
    assert values["status"] == "valid"
    assert values["period_days"] == 30
    assert values["note"] == "x"


def test_default_period_when_type_has_none():
    values = build_record_values(_resolved(2, type_period=None), TRAINING_SPEC,
                                 ImportSettings(default_period_days=10, today=TODAY), insert=True)
    assert values["next_training_date"] == date(2024, 1, 11)
    assert values["status"] == "expired"


def test_update_values_leave_unmapped_columns_and_created_by_alone():
    values = build_record_values(_resolved(2), TRAINING_SPEC, SETTINGS, insert=False)
    assert "created_by" not in values
    assert "note" not in values
    assert "updated_at" in values
    assert "deleted_at" not in values
    revived = build_record_values(_resolved(2), TRAINING_SPEC, SETTINGS, insert=False, revive=True)
    assert revived["deleted_at"] is None and revived["is_active"] is True


def test_insert_then_in_batch_skip(store):
    outcomes = commit_chains([_chain(_resolved(2), _resolved(3))], TRAINING_SPEC, store, DuplicateMode.SKIP, SETTINGS)
    assert [(o.row_index, o.action) for o in outcomes] == [
        (2, OutcomeAction.INSERTED), (3, OutcomeAction.SKIPPED_DUPLICATE)
    ]
    assert outcomes[1].record_id == outcomes[0].record_id
    assert len(store.rows("trainings")) == 1


def test_in_batch_overwrite_last_row_wins(store):
    first = _resolved(2, note=TypedValue(FieldKind.STRING, "first"))
    last = _resolved(3, note=TypedValue(FieldKind.STRING, "last"))
    outcomes = commit_chains([_chain(first, last)], TRAINING_SPEC, store, DuplicateMode.OVERWRITE, SETTINGS)
    assert [o.action for o in outcomes] == [OutcomeAction.INSERTED, OutcomeAction.UPDATED]
    (record,) = store.rows("trainings")
    assert record["note"] == "last"


def test_existing_record_skip_and_overwrite(store):
    rid = store.add_row("trainings", employee_id=1, training_type_id=10, last_training_date=DAY,
                        note="old", created_by="someone", deleted_at=None)
    existing = ExistingRecord(id=rid, triple=(1, 10, DAY), archived=False)

    skip = commit_chains([_chain(_resolved(2), existing=existing)], TRAINING_SPEC, store, DuplicateMode.SKIP, SETTINGS)
    assert skip[0].action is OutcomeAction.SKIPPED_DUPLICATE and skip[0].record_id == rid

    row = _resolved(2, note=TypedValue(FieldKind.STRING, "new"))
    over = commit_chains([_chain(row, existing=existing)], TRAINING_SPEC, store, DuplicateMode.OVERWRITE, SETTINGS)
    assert over[0].action is OutcomeAction.UPDATED
    record = store.get("trainings", rid)
    assert record["note"] == "new"
    assert record["created_by"] == "someone"


def test_revive_archived_record(store):
    rid = store.add_row("trainings", employee_id=1, training_type_id=10, last_training_date=DAY,
                        deleted_at="2024-02-01T00:00:00Z", is_active=False)
    existing = ExistingRecord(id=rid, triple=(1, 10, DAY), archived=True)
    outcomes = commit_chains([_chain(_resolved(2), existing=existing)], TRAINING_SPEC, store,
                             DuplicateMode.OVERWRITE, SETTINGS)
    assert outcomes[0].action is OutcomeAction.UPDATED
    record = store.get("trainings", rid)
    assert record["deleted_at"] is None and record["is_active"] is True


def test_write_failure_isolated_to_its_row(store):
    flaky = MagicMock(wraps=store)
    calls = []

    def insert(table, values):
        calls.append(values["employee_id"])
        if values["employee_id"] == 2:
            raise StoreWriteError('null value in column "status" violates not-null constraint')
        return store.insert_record(table, values)

    flaky.insert_record.side_effect = insert
    chains = [_chain(_resolved(i, subject=i)) for i in (1, 2, 3)]
    outcomes = {o.row_index: o for o in commit_chains(chains, TRAINING_SPEC, flaky, DuplicateMode.SKIP, SETTINGS)}
    assert outcomes[1].action is OutcomeAction.INSERTED
    assert outcomes[3].action is OutcomeAction.INSERTED
    assert outcomes[2].action is OutcomeAction.FAILED
    assert outcomes[2].error_type == WRITE_ERROR
    assert "violates not-null constraint" in outcomes[2].error
    assert sorted(calls) == [1, 2, 3]
    assert len(store.rows("trainings")) == 2


def test_concurrent_duplicate_mapped_to_skip(store):
    racing = MagicMock(wraps=store)
    racing.insert_record.side_effect = DuplicateRecordError("duplicate key value")
    outcomes = commit_chains([_chain(_resolved(2))], TRAINING_SPEC, racing, DuplicateMode.SKIP, SETTINGS)
    assert outcomes[0].action is OutcomeAction.SKIPPED_DUPLICATE
    assert outcomes[0].collision == COLLISION_EXISTING


def test_concurrent_duplicate_overwrite_relooks_up_and_updates(store):
    rid = store.add_row("trainings", employee_id=1, training_type_id=10, last_training_date=DAY, deleted_at=None)
    racing = MagicMock(wraps=store)
    racing.insert_record.side_effect = DuplicateRecordError("duplicate key value")
    outcomes = commit_chains([_chain(_resolved(2))], TRAINING_SPEC, racing, DuplicateMode.OVERWRITE, SETTINGS)
    assert outcomes[0].action is OutcomeAction.UPDATED
    assert outcomes[0].record_id == rid
    assert outcomes[0].collision == COLLISION_EXISTING


def test_windows_reported_through_callback(store):
    seen = []
    chains = [_chain(_resolved(i, subject=i)) for i in range(1, 6)]
    commit_chains(chains, TRAINING_SPEC, store, DuplicateMode.SKIP, SETTINGS, window_callback=seen.append)
    assert [(m.window_index, m.chains, m.rows) for m in seen] == [(0, 2, 2), (1, 2, 2), (2, 1, 1)]


def test_plan_outcomes_writes_nothing(store):
    outcomes = plan_outcomes([_chain(_resolved(2), _resolved(3))], DuplicateMode.OVERWRITE)
    assert [o.action for o in outcomes] == [OutcomeAction.INSERTED, OutcomeAction.UPDATED]
    assert store.calls == []
    assert [o.collision for o in outcomes] == [None, COLLISION_IN_BATCH]
