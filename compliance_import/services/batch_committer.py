from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from compliance_import.db.store import DuplicateRecordError, RecordStore, StoreWriteError
from compliance_import.models.import_result import (
    COLLISION_EXISTING,
    COLLISION_IN_BATCH,
    WRITE_ERROR,
    ImportOutcome,
    OutcomeAction,
    Severity,
    ValidationIssue,
)
from compliance_import.models.import_settings import DuplicateMode, ImportSettings
from compliance_import.models.record_spec import FieldRole, RecordSpec
from compliance_import.services.duplicate_detector import CollisionChain, PlannedAction
from compliance_import.services.reference_resolver import ResolvedRow

"""Batch Committer: execute inserts/updates with per-row failure isolation.

Chains are written in bounded windows: up to window_size chains run
concurrently and the whole window finishes before the next one starts. Window
boundaries carry no transactional meaning; every write commits on its own and
a failed write only fails its own row.

Rows of one chain (same triple) are written sequentially in file order so that
the first row claims the triple and later rows see it.
"""

__all__ = [
    "WindowMetrics",
    "compute_status",
    "build_record_values",
    "commit_chains",
    "plan_outcomes",
]

logger = logging.getLogger(__name__)

_PLANNED_TO_OUTCOME = {
    PlannedAction.INSERT: OutcomeAction.INSERTED,
    PlannedAction.UPDATE: OutcomeAction.UPDATED,
    PlannedAction.SKIP: OutcomeAction.SKIPPED_DUPLICATE,
}


@dataclass(frozen=True)
class WindowMetrics:
    """Timing data for one commit window."""
    window_index: int  # 0-based
    chains: int
    rows: int
    failed_rows: int
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


def compute_status(next_date: date, today: date, warning_days: int) -> str:
    if next_date < today:
        return "expired"
    if next_date <= today + timedelta(days=warning_days):
        return "warning"
    return "valid"


def build_record_values(
    resolved: ResolvedRow,
    spec: RecordSpec,
    settings: ImportSettings,
    *,
    insert: bool,
    revive: bool = False,
) -> dict[str, Any]:
    """Column values written for one row.

    Optional columns absent from the file are left out, so an update never
    clears data the file did not carry. period_days falls back to the record
    type, then to the configured default, for the next-date computation only.
    """
    row = resolved.row
    period_field = spec.field_for(FieldRole.PERIOD)
    status_field = spec.field_for(FieldRole.STATUS)
    facility_field = spec.field_for(FieldRole.FACILITY)

    period = row.value(period_field.name) if period_field else None
    if period is None:
        period = resolved.type_period_days
    if period is None:
        period = settings.default_period_days
    next_date = resolved.occurrence_date + timedelta(days=period)

    status = row.value(status_field.name) if status_field else None
    if status is None:
        status = compute_status(next_date, settings.reference_date(), settings.warning_days)

    values: dict[str, Any] = {
        spec.subject_column: resolved.subject_id,
        spec.type_column: resolved.type_id,
        facility_field.target_column: resolved.facility_code,
        spec.date_column: resolved.occurrence_date,
        spec.next_date_column: next_date,
        status_field.target_column: status,
    }
    for fs in spec.fields:
        if fs.role in (FieldRole.ATTRIBUTE, FieldRole.PERIOD) and row.has(fs.name):
            values[fs.target_column] = row.value(fs.name)

    if insert:
        values["is_active"] = True
        values["created_by"] = settings.actor
    else:
        values["updated_at"] = datetime.now(UTC)
        if revive:
            values["deleted_at"] = None
            values["is_active"] = True
    return values


def _write_failure(resolved: ResolvedRow, error: Exception) -> ImportOutcome:
    message = str(error) or type(error).__name__
    issue = ValidationIssue(resolved.row_index, None, message, Severity.ERROR)
    return ImportOutcome.failed(resolved.row_index, WRITE_ERROR, (issue,) + resolved.row.warnings, error=message)


def _done(resolved: ResolvedRow, action: OutcomeAction, record_id: Any, collision: str | None = None) -> ImportOutcome:
    return ImportOutcome(
        resolved.row_index, action, issues=resolved.row.warnings, record_id=record_id, collision=collision
    )


def _active_record_id(store: RecordStore, spec: RecordSpec, resolved: ResolvedRow) -> Any:
    matches = store.find_by_triples(spec.table, spec.triple_columns, [resolved.triple])
    active = [m for m in matches if not m.archived]
    if not active:
        raise StoreWriteError("unique constraint violated but no active record found for update")
    return active[0].id


def _commit_chain(
    chain: CollisionChain,
    spec: RecordSpec,
    store: RecordStore,
    mode: DuplicateMode,
    settings: ImportSettings,
) -> list[ImportOutcome]:
    outcomes: list[ImportOutcome] = []
    target = chain.existing.id if chain.existing else None
    revive = bool(chain.existing and chain.existing.archived)
    collision = COLLISION_EXISTING if chain.existing else COLLISION_IN_BATCH
    for resolved in chain.rows:
        try:
            if target is None:
                values = build_record_values(resolved, spec, settings, insert=True)
                try:
                    target = store.insert_record(spec.table, values)
                except DuplicateRecordError:
                    # another invocation committed this triple after our duplicate check
                    if mode is DuplicateMode.SKIP:
                        outcomes.append(_done(resolved, OutcomeAction.SKIPPED_DUPLICATE, None, COLLISION_EXISTING))
                        continue
                    record_id = _active_record_id(store, spec, resolved)
                    store.update_record(spec.table, record_id, build_record_values(resolved, spec, settings, insert=False))
                    target = record_id
                    collision = COLLISION_EXISTING
                    outcomes.append(_done(resolved, OutcomeAction.UPDATED, record_id, COLLISION_EXISTING))
                    continue
                outcomes.append(_done(resolved, OutcomeAction.INSERTED, target))
            elif mode is DuplicateMode.SKIP:
                outcomes.append(_done(resolved, OutcomeAction.SKIPPED_DUPLICATE, target, collision))
            else:
                values = build_record_values(resolved, spec, settings, insert=False, revive=revive)
                store.update_record(spec.table, target, values)
                revive = False
                outcomes.append(_done(resolved, OutcomeAction.UPDATED, target, collision))
        except Exception as e:  # one row's write failure never affects other rows
            logger.warning("row %d: write failed: %s", resolved.row_index, e)
            outcomes.append(_write_failure(resolved, e))
    return outcomes


def commit_chains(
    chains: list[CollisionChain],
    spec: RecordSpec,
    store: RecordStore,
    mode: DuplicateMode,
    settings: ImportSettings,
    *,
    window_callback: Callable[[WindowMetrics], None] | None = None,
) -> list[ImportOutcome]:
    """Write every chain; returns one outcome per row (order is not file order)."""
    outcomes: list[ImportOutcome] = []
    window = settings.window_size
    if not chains:
        return outcomes

    with ThreadPoolExecutor(max_workers=min(window, len(chains))) as pool:
        for index, start in enumerate(range(0, len(chains), window)):
            chunk = chains[start:start + window]
            start_time = time.time()
            futures = [(chain, pool.submit(_commit_chain, chain, spec, store, mode, settings)) for chain in chunk]
            window_outcomes: list[ImportOutcome] = []
            for chain, future in futures:
                try:
                    window_outcomes.extend(future.result())
                except Exception as e:  # pragma: no cover (_commit_chain isolates row errors itself)
                    logger.error("commit of %d row(s) failed: %s", len(chain.rows), e)
                    window_outcomes.extend(_write_failure(r, e) for r in chain.rows)
            end_time = time.time()
            outcomes.extend(window_outcomes)
            logger.debug("window %d: %d chain(s) committed in %.3fs", index, len(chunk), end_time - start_time)
            if window_callback is not None:
                window_callback(
                    WindowMetrics(
                        window_index=index,
                        chains=len(chunk),
                        rows=sum(len(c.rows) for c in chunk),
                        failed_rows=sum(1 for o in window_outcomes if o.action is OutcomeAction.FAILED),
                        elapsed_seconds=end_time - start_time,
                        start_time=start_time,
                        end_time=end_time,
                    )
                )
    return outcomes


def plan_outcomes(chains: list[CollisionChain], mode: DuplicateMode) -> list[ImportOutcome]:
    """Outcomes a commit would produce if every write succeeded (dry run)."""
    outcomes: list[ImportOutcome] = []
    for chain in chains:
        for planned in chain.plan(mode):
            action = _PLANNED_TO_OUTCOME[planned.action]
            outcomes.append(_done(planned.resolved, action, planned.target_id, planned.collision))
    return outcomes
