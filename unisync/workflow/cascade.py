"""
ShowSet Workflow: Cascade resolution.

Two directions:

  * ``downstream_needs_revision`` is a view-only predicate. A completed
    stage becomes workable again while one of its dependants sits in
    ``revision_required``; its stored status does not change.
  * ``invalidation_targets`` / ``apply_invalidation`` are authoritative:
    they force stages to ``revision_required`` after an upstream revision
    request, a recall, or a reset.

Both are idempotent. Stages already in ``revision_required`` are never
rewritten, so applying the same request twice changes nothing.
"""

from __future__ import annotations

from datetime import datetime

from unisync.workflow.constants import StageName, StageStatus
from unisync.workflow.snapshot import Actor, Effect, ShowSet, StageRecord
from unisync.workflow.variants import WorkflowVariant

# stage -> later stages whose rework reopens it
DOWNSTREAM_DEPENDANTS: dict[StageName, frozenset[StageName]] = {
    StageName.SCREEN: frozenset({StageName.STRUCTURE, StageName.IN_BIM360}),
    StageName.STRUCTURE: frozenset({StageName.IN_BIM360, StageName.DRAWING_2D}),
    StageName.INTEGRATED: frozenset({StageName.IN_BIM360, StageName.DRAWING_2D}),
    StageName.IN_BIM360: frozenset(),
    StageName.DRAWING_2D: frozenset(),
}


def downstream_needs_revision(showset: ShowSet, stage: StageName,
                              variant: WorkflowVariant | None = None) -> bool:
    dependants = DOWNSTREAM_DEPENDANTS[StageName(stage)]
    if variant is not None:
        dependants = {d for d in dependants if variant.includes(d)}
    return any(showset.status_of(d) == StageStatus.REVISION_REQUIRED for d in dependants)


def invalidation_targets(
    showset: ShowSet,
    target: StageName,
    trigger_stage: StageName,
    variant: WorkflowVariant,
) -> list[StageName]:
    """Stages forced to revision_required when ``target`` is reworked from ``trigger_stage``.

    Every stage strictly after ``target`` up to and including
    ``trigger_stage``, plus every completed stage after ``trigger_stage``.
    Returned in pipeline order.
    """
    order = variant.stage_order
    lo, hi = variant.index_of(target), variant.index_of(trigger_stage)
    picked = []
    for idx, stage in enumerate(order):
        status = showset.status_of(stage)
        if status == StageStatus.REVISION_REQUIRED:
            continue
        if lo < idx <= hi or (idx > hi and status == StageStatus.COMPLETE):
            picked.append(stage)
    return picked


def apply_invalidation(
    showset: ShowSet,
    stages: list[StageName],
    actor: Actor,
    now: datetime,
    *,
    note: str | None = None,
    reason: str = "cascade",
) -> tuple[dict[StageName, StageRecord], list[Effect]]:
    """Build the revision_required records and their ``cascade_revision`` effects."""
    updates: dict[StageName, StageRecord] = {}
    effects: list[Effect] = []
    for stage in stages:
        record = showset.stage(stage)
        if record.status == StageStatus.REVISION_REQUIRED:
            continue
        updates[stage] = record.transition(StageStatus.REVISION_REQUIRED, actor, now, note=note)
        effects.append(Effect(
            kind="cascade_revision",
            stage=stage,
            details={
                "from": record.status.value,
                "to": StageStatus.REVISION_REQUIRED.value,
                "reason": reason,
            },
        ))
    return updates, effects
