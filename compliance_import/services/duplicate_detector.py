from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from compliance_import.db.store import ExistingRecord, RecordStore, Triple
from compliance_import.models.import_result import (
    COLLISION_EXISTING,
    COLLISION_IN_BATCH,
    WRITE_ERROR,
    ImportOutcome,
    Severity,
    ValidationIssue,
)
from compliance_import.models.import_settings import ArchivedCollisions, DuplicateMode, ImportSettings
from compliance_import.models.record_spec import RecordSpec
from compliance_import.services.reference_resolver import ResolvedRow

"""Duplicate Detector: (subject id, type id, occurrence date) collisions.

Rows sharing a triple form one CollisionChain, kept in file order, so an
in-batch collision is handled exactly like a collision with stored data: the
first row of the chain claims the triple and every later row collides with it.
Stored matches are fetched with one find_by_triples call per window of
distinct triples.

Archived matches only count when archived_collisions is 'revive'; an active
match always wins over an archived one.
"""

__all__ = [
    "PlannedAction",
    "PlannedRow",
    "CollisionChain",
    "DetectionResult",
    "detect_duplicates",
    "pick_existing",
]

logger = logging.getLogger(__name__)


class PlannedAction(Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class PlannedRow:
    resolved: ResolvedRow
    action: PlannedAction
    target_id: Any | None  # record to update / colliding record; None for inserts and in-batch anchors
    collision: str | None  # COLLISION_EXISTING / COLLISION_IN_BATCH, None for inserts
    revive: bool = False  # update must also clear deleted_at


@dataclass
class CollisionChain:
    triple: Triple
    rows: list[ResolvedRow] = field(default_factory=list)  # file order
    existing: ExistingRecord | None = None

    @property
    def row_indices(self) -> list[int]:
        return [r.row_index for r in self.rows]

    def plan(self, mode: DuplicateMode) -> list[PlannedRow]:
        """Planned action per row, assuming every write succeeds."""
        planned: list[PlannedRow] = []
        target = self.existing.id if self.existing else None
        revive = bool(self.existing and self.existing.archived)
        for pos, row in enumerate(self.rows):
            if pos == 0 and self.existing is None:
                planned.append(PlannedRow(row, PlannedAction.INSERT, None, None))
                continue
            collision = COLLISION_EXISTING if self.existing is not None else COLLISION_IN_BATCH
            if mode is DuplicateMode.SKIP:
                planned.append(PlannedRow(row, PlannedAction.SKIP, target, collision))
            else:
                planned.append(PlannedRow(row, PlannedAction.UPDATE, target, collision, revive=revive))
                revive = False
        return planned


@dataclass
class DetectionResult:
    chains: list[CollisionChain] = field(default_factory=list)
    failed: list[ImportOutcome] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return sum(len(c.rows) for c in self.chains)


def pick_existing(matches: list[ExistingRecord], policy: ArchivedCollisions) -> ExistingRecord | None:
    active = [m for m in matches if not m.archived]
    if active:
        return active[0]
    if policy is ArchivedCollisions.REVIVE and matches:
        return matches[-1]
    return None


def detect_duplicates(
    rows: list[ResolvedRow],
    spec: RecordSpec,
    store: RecordStore,
    settings: ImportSettings,
) -> DetectionResult:
    chains: dict[Triple, CollisionChain] = {}
    for row in rows:
        chains.setdefault(row.triple, CollisionChain(triple=row.triple)).rows.append(row)

    result = DetectionResult()
    ordered = list(chains.values())
    window = settings.window_size
    for start in range(0, len(ordered), window):
        chunk = ordered[start:start + window]
        try:
            matches = store.find_by_triples(spec.table, spec.triple_columns, [c.triple for c in chunk])
        except Exception as e:  # lookup failure fails the chunk's rows, never drops them
            logger.warning("duplicate check failed for %d triple(s): %s", len(chunk), e)
            message = f"duplicate check failed: {e}"
            for chain in chunk:
                for row in chain.rows:
                    issue = ValidationIssue(row.row_index, None, message, Severity.ERROR)
                    result.failed.append(
                        ImportOutcome.failed(row.row_index, WRITE_ERROR, (issue,) + row.row.warnings, error=message)
                    )
            continue

        by_triple: dict[Triple, list[ExistingRecord]] = {}
        for match in matches:
            by_triple.setdefault(tuple(match.triple), []).append(match)
        for chain in chunk:
            chain.existing = pick_existing(by_triple.get(chain.triple, []), settings.archived_collisions)
            result.chains.append(chain)

    logger.debug(
        "duplicates: %d chain(s), %d with stored match, %d in-batch",
        len(result.chains),
        sum(1 for c in result.chains if c.existing is not None),
        sum(1 for c in result.chains if len(c.rows) > 1),
    )
    return result
