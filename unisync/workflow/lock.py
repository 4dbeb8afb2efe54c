"""
ShowSet Workflow: Administrative lock.

A locked ShowSet refuses every action except ``unlock``, for every role.
Unlock is the only way to selectively reopen finished, locked work.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from unisync.core.exceptions import ForbiddenError, InvalidTransitionError, LockedError
from unisync.workflow.capabilities import is_admin
from unisync.workflow.constants import StageName, StageStatus
from unisync.workflow.snapshot import Actor, ShowSet, StageRecord


def ensure_unlocked(showset: ShowSet) -> None:
    if showset.is_locked:
        raise LockedError(
            showset.showset_id,
            details={"lockedBy": showset.locked_by, "lockedAt": showset.locked_at.isoformat()},
        )


def _ensure_admin(actor: Actor, action: str) -> None:
    if not is_admin(actor.role):
        raise ForbiddenError(
            f"Only admins may {action} a ShowSet",
            details={"role": actor.role.value},
        )


def lock(showset: ShowSet, actor: Actor, now: datetime, reason: str | None = None) -> ShowSet:
    _ensure_admin(actor, "lock")
    if showset.is_locked:
        raise InvalidTransitionError(f"ShowSet {showset.showset_id} is already locked")
    return replace(showset, locked_at=now, locked_by=actor.user_id, lock_reason=reason)


def unlock(
    showset: ShowSet,
    actor: Actor,
    stages_to_reset: list[StageName],
    now: datetime,
    reason: str | None = None,
) -> tuple[ShowSet, dict[StageName, StageRecord]]:
    """Clear the lock and send each listed (complete) stage back to revision_required."""
    _ensure_admin(actor, "unlock")
    if not showset.is_locked:
        raise InvalidTransitionError(f"ShowSet {showset.showset_id} is not locked")

    resets: dict[StageName, StageRecord] = {}
    for stage in stages_to_reset:
        record = showset.stage(stage)
        if record.status != StageStatus.COMPLETE:
            raise InvalidTransitionError(
                f"Only complete stages can be reset on unlock; "
                f"'{stage.value}' is '{record.status.value}'",
                stage=stage.value,
            )
        resets[stage] = record.transition(StageStatus.REVISION_REQUIRED, actor, now, note=reason)

    unlocked = replace(showset, locked_at=None, locked_by=None, lock_reason=None)
    return unlocked.with_stages(resets), resets
