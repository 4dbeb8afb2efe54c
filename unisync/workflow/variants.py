"""
ShowSet Workflow: Deployment variants.

Historical deployments disagree on two points: whether ``integrated`` is a
stage at all, and whether ``structure`` passes through engineer review.
Rather than branching on those questions inside the engine, the choice is
captured once in a ``WorkflowVariant`` and injected.
"""

from __future__ import annotations

from dataclasses import dataclass

from unisync.workflow.constants import LEGACY_STAGE_ORDER, STAGE_ORDER, StageName

BIM_SCOPE_INBIM360 = "inbim360"
BIM_SCOPE_ALL = "all"


@dataclass(frozen=True)
class WorkflowVariant:
    name: str
    stage_order: tuple[StageName, ...] = STAGE_ORDER
    structure_review: bool = False
    bim_coordinator_scope: str = BIM_SCOPE_INBIM360

    def __post_init__(self):
        if self.bim_coordinator_scope not in (BIM_SCOPE_INBIM360, BIM_SCOPE_ALL):
            raise ValueError(f"Unknown bim_coordinator scope: {self.bim_coordinator_scope!r}")

    def index_of(self, stage: StageName) -> int:
        return self.stage_order.index(StageName(stage))

    def includes(self, stage: StageName | str) -> bool:
        try:
            return StageName(stage) in self.stage_order
        except ValueError:
            return False

    def predecessors(self, stage: StageName) -> tuple[StageName, ...]:
        return self.stage_order[: self.index_of(stage)]

    def successors(self, stage: StageName) -> tuple[StageName, ...]:
        return self.stage_order[self.index_of(stage) + 1:]


STANDARD = WorkflowVariant(name="standard")
STRUCTURE_REVIEW = WorkflowVariant(name="structure_review", structure_review=True)
LEGACY = WorkflowVariant(name="legacy", stage_order=LEGACY_STAGE_ORDER, structure_review=True)

PRESETS: dict[str, WorkflowVariant] = {
    v.name: v for v in (STANDARD, STRUCTURE_REVIEW, LEGACY)
}


def get_variant(name: str = "standard", bim_coordinator_scope: str | None = None) -> WorkflowVariant:
    """Look up a preset, optionally overriding the bim_coordinator scope."""
    try:
        variant = PRESETS[name]
    except KeyError:
        raise ValueError(
            f"Unknown workflow variant {name!r}; expected one of {sorted(PRESETS)}"
        ) from None
    if bim_coordinator_scope and bim_coordinator_scope != variant.bim_coordinator_scope:
        return WorkflowVariant(
            name=variant.name,
            stage_order=variant.stage_order,
            structure_review=variant.structure_review,
            bim_coordinator_scope=bim_coordinator_scope,
        )
    return variant
