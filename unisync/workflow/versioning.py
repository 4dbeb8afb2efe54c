"""
ShowSet Workflow: Version policy.

Version counters only ever move forward. A routine revision cycle
(``revision_required -> in_progress``) bumps the stage's group by one;
anything else goes through ``manual_set``, which is recorded with
``trigger="manual"`` so the history can tell the two apart.
"""

from __future__ import annotations

from datetime import datetime

from unisync.core.exceptions import VersionNotMonotonicError
from unisync.workflow.constants import STAGE_VERSION_MAP, StageName, StageStatus, VersionType
from unisync.workflow.snapshot import Actor, LocalizedText, ShowSet, VersionHistoryEntry

TRIGGER_REVISION_CYCLE = "revision_cycle"
TRIGGER_MANUAL = "manual"


def version_type_for(stage: StageName) -> VersionType | None:
    return STAGE_VERSION_MAP[StageName(stage)]


def current_version(showset: ShowSet, version_type: VersionType) -> int:
    return showset.version_of(version_type)


def _revision_reason(stage: StageName) -> LocalizedText:
    return LocalizedText(
        en=f"Revision cycle: {stage.value} restarted",
        zh=f"修订周期：{stage.value} 重新开始",
        zh_tw=f"修訂週期：{stage.value} 重新開始",
    )


def auto_increment(
    showset: ShowSet,
    stage: StageName,
    from_status: StageStatus,
    to_status: StageStatus,
    actor: Actor,
    now: datetime,
    skip: bool = False,
) -> tuple[VersionType, int, VersionHistoryEntry] | None:
    """Return the bump for a revision-cycle restart, or None."""
    if skip:
        return None
    if not (from_status == StageStatus.REVISION_REQUIRED and to_status == StageStatus.IN_PROGRESS):
        return None
    version_type = version_type_for(stage)
    if version_type is None:
        return None
    new_version = current_version(showset, version_type) + 1
    entry = VersionHistoryEntry(
        version_type=version_type,
        version=new_version,
        reason=_revision_reason(stage),
        created_at=now,
        created_by=actor.user_id,
        trigger=TRIGGER_REVISION_CYCLE,
    )
    return version_type, new_version, entry


def manual_set(
    showset: ShowSet,
    version_type: VersionType | str,
    target_version: int | None,
    reason: LocalizedText | str,
    language: str,
    actor: Actor,
    now: datetime,
) -> tuple[VersionType, int, VersionHistoryEntry]:
    version_type = VersionType(version_type)
    current = current_version(showset, version_type)
    target = current + 1 if target_version is None else int(target_version)
    if target <= current:
        raise VersionNotMonotonicError(version_type.value, current, target)
    if not isinstance(reason, LocalizedText):
        reason = LocalizedText.single(language, reason or "")
    entry = VersionHistoryEntry(
        version_type=version_type,
        version=target,
        reason=reason,
        created_at=now,
        created_by=actor.user_id,
        trigger=TRIGGER_MANUAL,
    )
    return version_type, target, entry
