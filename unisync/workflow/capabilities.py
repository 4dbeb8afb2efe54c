"""
ShowSet Workflow: Role capability table.

One table answers "which stages may this role touch"; the allowed-status
sets and every boolean helper are derived from it, so adding a role means
editing ``STAGE_PERMISSIONS`` and nothing else.
"""

from __future__ import annotations

from unisync.core.exceptions import ForbiddenError, InvalidStatusForRoleError
from unisync.workflow.constants import STAGE_ORDER, Role, StageName, StageStatus
from unisync.workflow.snapshot import Actor
from unisync.workflow.transitions import StageTransitionRule
from unisync.workflow.variants import BIM_SCOPE_ALL, WorkflowVariant

_ALL_STAGES = frozenset(STAGE_ORDER)

STAGE_PERMISSIONS: dict[Role, frozenset[StageName]] = {
    Role.ADMIN: _ALL_STAGES,
    Role.BIM_COORDINATOR: frozenset({StageName.IN_BIM360}),
    Role.ENGINEER: _ALL_STAGES,
    Role.MODELLER_3D: frozenset({StageName.SCREEN, StageName.STRUCTURE, StageName.INTEGRATED}),
    Role.DRAFTER_2D: frozenset({StageName.DRAWING_2D}),
    Role.CUSTOMER_REVIEWER: frozenset({StageName.IN_BIM360, StageName.DRAWING_2D}),
    Role.VIEW_ONLY: frozenset(),
}

# Approve or reject only, never perform the underlying work
APPROVAL_ONLY_ROLES = frozenset({Role.ENGINEER, Role.CUSTOMER_REVIEWER})
APPROVAL_STATUSES = frozenset({StageStatus.COMPLETE, StageStatus.REVISION_REQUIRED})

# Roles that maintain the external model and drawings links
LINK_MANAGER_ROLES = frozenset({Role.ADMIN, Role.BIM_COORDINATOR})

# Statuses only an admin may set directly
ADMIN_ONLY_STATUSES = frozenset({StageStatus.NOT_STARTED, StageStatus.ON_HOLD})

REVIEW_AUTHORITY: dict[Role, frozenset[StageStatus]] = {
    Role.ADMIN: frozenset({StageStatus.ENGINEER_REVIEW, StageStatus.CLIENT_REVIEW}),
    Role.ENGINEER: frozenset({StageStatus.ENGINEER_REVIEW}),
    Role.CUSTOMER_REVIEWER: frozenset({StageStatus.CLIENT_REVIEW}),
}


def is_admin(role: Role | str) -> bool:
    return Role.parse(role) is Role.ADMIN


def is_approval_only(role: Role | str) -> bool:
    return Role.parse(role) in APPROVAL_ONLY_ROLES


def review_authority(role: Role | str) -> frozenset[StageStatus]:
    return REVIEW_AUTHORITY.get(Role.parse(role), frozenset())


def can_edit_versions(actor: Actor) -> bool:
    return is_admin(actor.role) or actor.can_edit_versions


def can_manage_links(role: Role | str) -> bool:
    return Role.parse(role) in LINK_MANAGER_ROLES


class RoleCapability:
    """Capability lookups bound to a workflow variant."""

    def __init__(self, variant: WorkflowVariant, rules: StageTransitionRule | None = None):
        self.variant = variant
        self.rules = rules or StageTransitionRule(variant)

    def stages_for(self, role: Role | str) -> frozenset[StageName]:
        role = Role.parse(role)
        stages = STAGE_PERMISSIONS[role]
        if role is Role.BIM_COORDINATOR and self.variant.bim_coordinator_scope == BIM_SCOPE_ALL:
            stages = _ALL_STAGES
        return frozenset(s for s in stages if s in self.variant.stage_order)

    def allowed_statuses(self, role: Role | str, stage: StageName) -> frozenset[StageStatus]:
        role = Role.parse(role)
        if stage not in self.stages_for(role):
            return frozenset()
        legal = self.rules.LEGAL_STATUSES[stage]
        if role is Role.ADMIN:
            return frozenset(legal)
        if role in APPROVAL_ONLY_ROLES:
            return APPROVAL_STATUSES
        return frozenset(legal - ADMIN_ONLY_STATUSES)

    def can_work_on_stages(self, role: Role | str) -> bool:
        """True when the role performs work (not merely approves) somewhere."""
        return any(StageStatus.IN_PROGRESS in self.allowed_statuses(role, s)
                   for s in self.stages_for(role))

    def can_request_upstream_revision(self, role: Role | str, stage: StageName) -> bool:
        return StageStatus.REVISION_REQUIRED in self.allowed_statuses(role, stage)

    def check(self, role: Role | str, stage: StageName, status: StageStatus) -> None:
        """Raise unless ``role`` may set ``stage`` to ``status``."""
        role = Role.parse(role)
        if stage not in self.stages_for(role):
            raise ForbiddenError(
                f"Role '{role.value}' has no access to stage '{stage.value}'",
                stage=stage.value,
                details={"role": role.value},
            )
        if status not in self.allowed_statuses(role, stage):
            raise InvalidStatusForRoleError(
                f"Role '{role.value}' may not set '{stage.value}' to '{status.value}'",
                stage=stage.value,
                details={"role": role.value, "status": status.value},
            )
