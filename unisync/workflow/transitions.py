"""
ShowSet Workflow: Stage transition tables.

Every per-stage rule lives in the tables below; nothing else in the
package branches on a stage name to decide legality. Tables are built per
``WorkflowVariant`` because the structure review step is a deployment
choice.

    LEGAL_STATUSES          stage -> statuses the stage may ever hold
    WORKER_FINISH_ROUTES    stage -> {current: next} when a worker finishes
    REVIEW_ADVANCE_ROUTES   stage -> {review status: next} when a reviewer approves
    START_SOURCES           statuses ``start`` leaves from

drawing2d is the only stepped stage: a worker finish sends it to
engineer_review, an engineer approval advances it to client_review, and
the customer's approval completes it.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from unisync.core.exceptions import InvalidTransitionError
from unisync.workflow.constants import (
    REVIEW_STATUSES,
    StageName,
    StageStatus,
)
from unisync.workflow.variants import WorkflowVariant

S = StageStatus

_BASE = frozenset({S.NOT_STARTED, S.IN_PROGRESS, S.REVISION_REQUIRED, S.COMPLETE, S.ON_HOLD})

START_SOURCES = frozenset({S.NOT_STARTED, S.REVISION_REQUIRED})


def _legal_statuses(variant: WorkflowVariant) -> dict[StageName, frozenset[StageStatus]]:
    structure = _BASE | {S.ENGINEER_REVIEW} if variant.structure_review else _BASE
    table = {
        StageName.SCREEN: _BASE,
        StageName.STRUCTURE: structure,
        StageName.INTEGRATED: _BASE | {S.ENGINEER_REVIEW},
        StageName.IN_BIM360: _BASE | {S.CLIENT_REVIEW},
        StageName.DRAWING_2D: _BASE | {S.ENGINEER_REVIEW, S.CLIENT_REVIEW},
    }
    return {stage: table[stage] for stage in variant.stage_order}


def _worker_finish_routes(variant: WorkflowVariant) -> dict[StageName, dict[StageStatus, StageStatus]]:
    table = {
        StageName.SCREEN: {S.IN_PROGRESS: S.COMPLETE},
        StageName.STRUCTURE: {
            S.IN_PROGRESS: S.ENGINEER_REVIEW if variant.structure_review else S.COMPLETE,
        },
        StageName.INTEGRATED: {S.IN_PROGRESS: S.ENGINEER_REVIEW},
        StageName.IN_BIM360: {S.IN_PROGRESS: S.CLIENT_REVIEW},
        StageName.DRAWING_2D: {
            S.IN_PROGRESS: S.ENGINEER_REVIEW,
            S.REVISION_REQUIRED: S.ENGINEER_REVIEW,
        },
    }
    return {stage: table[stage] for stage in variant.stage_order}


def _review_advance_routes(variant: WorkflowVariant) -> dict[StageName, dict[StageStatus, StageStatus]]:
    table = {
        StageName.SCREEN: {},
        StageName.STRUCTURE: {S.ENGINEER_REVIEW: S.COMPLETE} if variant.structure_review else {},
        StageName.INTEGRATED: {S.ENGINEER_REVIEW: S.COMPLETE},
        StageName.IN_BIM360: {S.CLIENT_REVIEW: S.COMPLETE},
        StageName.DRAWING_2D: {
            S.ENGINEER_REVIEW: S.CLIENT_REVIEW,
            S.CLIENT_REVIEW: S.COMPLETE,
        },
    }
    return {stage: table[stage] for stage in variant.stage_order}


def _freeze(table: dict) -> Mapping:
    return MappingProxyType({
        k: MappingProxyType(v) if isinstance(v, dict) else v for k, v in table.items()
    })


class StageTransitionRule:
    """Legal statuses and next-status routing for one workflow variant."""

    def __init__(self, variant: WorkflowVariant):
        self.variant = variant
        self.LEGAL_STATUSES = _freeze(_legal_statuses(variant))
        self.WORKER_FINISH_ROUTES = _freeze(_worker_finish_routes(variant))
        self.REVIEW_ADVANCE_ROUTES = _freeze(_review_advance_routes(variant))

    def stage_of(self, stage: StageName | str) -> StageName:
        """Parse a stage name, rejecting ones outside this variant."""
        try:
            name = StageName(stage)
        except ValueError:
            raise InvalidTransitionError(f"Unknown stage: {stage!r}", stage=str(stage)) from None
        if name not in self.LEGAL_STATUSES:
            raise InvalidTransitionError(
                f"Stage '{name.value}' is not part of the {self.variant.name} workflow",
                stage=name.value,
            )
        return name

    def is_legal(self, stage: StageName, status: StageStatus) -> bool:
        return status in self.LEGAL_STATUSES.get(stage, ())

    def next_on_finish(self, stage: StageName, current: StageStatus, mark_complete: bool = True) -> StageStatus:
        """Next status when a worker finishes ``stage``.

        Without ``mark_complete`` the work simply continues: only a stage
        that is ``in_progress`` can be paused, and it stays ``in_progress``.
        """
        routes = self.WORKER_FINISH_ROUTES[stage]
        if current not in routes:
            raise InvalidTransitionError(
                f"Cannot finish '{stage.value}' from status '{current.value}'",
                stage=stage.value,
                details={"from": current.value},
            )
        if mark_complete:
            return routes[current]
        if current != S.IN_PROGRESS:
            raise InvalidTransitionError(
                f"Cannot continue work on '{stage.value}' from '{current.value}'; start it first",
                stage=stage.value,
                details={"from": current.value},
            )
        return current

    def next_on_review(self, stage: StageName, current: StageStatus) -> StageStatus:
        """Next status when a reviewer approves ``stage`` in ``current``."""
        routes = self.REVIEW_ADVANCE_ROUTES[stage]
        if current not in routes:
            raise InvalidTransitionError(
                f"Stage '{stage.value}' is not awaiting review (status={current.value})",
                stage=stage.value,
                details={"from": current.value},
            )
        return routes[current]

    def is_review_state(self, stage: StageName, status: StageStatus) -> bool:
        return status in REVIEW_STATUSES and status in self.REVIEW_ADVANCE_ROUTES[stage]

    def recall_targets(self, review_stage: StageName) -> tuple[StageName, ...]:
        """Stages a recall out of ``review_stage`` may land on."""
        return self.variant.stage_order[: self.variant.index_of(review_stage) + 1]

    def ensure_legal(self, stage: StageName, status: StageStatus) -> None:
        if not self.is_legal(stage, status):
            raise InvalidTransitionError(
                f"'{status.value}' is not a legal status for stage '{stage.value}'",
                stage=stage.value,
                details={"to": status.value},
            )
