"""
Version policy tests: revision-cycle auto increment and monotonic manual set.
"""

from datetime import datetime, timezone

import pytest

from unisync.core.exceptions import ForbiddenError, LockedError, VersionNotMonotonicError
from unisync.workflow.constants import StageName, StageStatus, VersionType
from unisync.workflow.snapshot import Actor, LocalizedText
from unisync.workflow.versioning import (
    TRIGGER_MANUAL,
    TRIGGER_REVISION_CYCLE,
    auto_increment,
    manual_set,
    version_type_for,
)

S = StageStatus
T1 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class TestVersionGroups:
    def test_stage_to_version_type(self):
        assert version_type_for(StageName.SCREEN) is VersionType.SCREEN
        assert version_type_for(StageName.STRUCTURE) is VersionType.REVIT
        assert version_type_for(StageName.INTEGRATED) is VersionType.REVIT
        assert version_type_for(StageName.IN_BIM360) is None
        assert version_type_for(StageName.DRAWING_2D) is VersionType.DRAWING


class TestAutoIncrement:
    def test_revision_cycle_bumps_group(self, make_showset, drafter):
        ss = make_showset(drawing2d="revision_required", drawing_version=3)
        version_type, version, entry = auto_increment(
            ss, StageName.DRAWING_2D, S.REVISION_REQUIRED, S.IN_PROGRESS, drafter, T1,
        )
        assert version_type is VersionType.DRAWING
        assert version == 4
        assert entry.trigger == TRIGGER_REVISION_CYCLE
        assert entry.created_by == "u-2d"
        assert entry.reason.en == "Revision cycle: drawing2d restarted"
        assert entry.reason.zh and entry.reason.zh_tw

    def test_skip_flag(self, make_showset, drafter):
        ss = make_showset(drawing2d="revision_required")
        assert auto_increment(ss, StageName.DRAWING_2D, S.REVISION_REQUIRED, S.IN_PROGRESS,
                              drafter, T1, skip=True) is None

    @pytest.mark.parametrize("from_status,to_status", [
        (S.NOT_STARTED, S.IN_PROGRESS),
        (S.COMPLETE, S.IN_PROGRESS),
        (S.IN_PROGRESS, S.ENGINEER_REVIEW),
        (S.REVISION_REQUIRED, S.ENGINEER_REVIEW),
    ])
    def test_other_transitions_never_bump(self, make_showset, drafter, from_status, to_status):
        ss = make_showset()
        assert auto_increment(ss, StageName.DRAWING_2D, from_status, to_status, drafter, T1) is None

    def test_inbim360_has_no_version(self, make_showset, coordinator):
        ss = make_showset(inBim360="revision_required")
        assert auto_increment(ss, StageName.IN_BIM360, S.REVISION_REQUIRED, S.IN_PROGRESS,
                              coordinator, T1) is None


class TestManualSet:
    def test_defaults_to_next_version(self, make_showset, admin):
        ss = make_showset(revit_version=2)
        version_type, version, entry = manual_set(ss, "revitVersion", None, "client rebase",
                                                  "en", admin, T1)
        assert (version_type, version) == (VersionType.REVIT, 3)
        assert entry.trigger == TRIGGER_MANUAL
        assert entry.reason == LocalizedText(en="client rebase")

    def test_explicit_jump_forward(self, make_showset, admin):
        ss = make_showset(screen_version=1)
        _, version, _ = manual_set(ss, VersionType.SCREEN, 5, "", "zh", admin, T1)
        assert version == 5

    @pytest.mark.parametrize("target", [1, 2])
    def test_rejects_non_increasing(self, make_showset, admin, target):
        ss = make_showset(revit_version=2)
        with pytest.raises(VersionNotMonotonicError) as exc:
            manual_set(ss, VersionType.REVIT, target, "oops", "en", admin, T1)
        assert exc.value.kind == "VERSION_NOT_MONOTONIC"
        assert exc.value.details["current"] == 2

    def test_localized_reason_passed_through(self, make_showset, admin):
        reason = LocalizedText(en="Rebase", zh="重设", zh_tw="重設")
        _, _, entry = manual_set(make_showset(), VersionType.DRAWING, None, reason, "en", admin, T1)
        assert entry.reason is reason


class TestEngineSetVersion:
    def test_admin_sets_version(self, engine, make_showset, admin):
        result = engine.set_version(make_showset(revit_version=2), admin, "revitVersion",
                                    reason="rebase", now=T1)
        assert result.showset.revit_version == 3
        assert len(result.showset.version_history) == 1
        assert [e.kind for e in result.effects] == ["version_manual"]
        assert result.effects[0].details["trigger"] == "manual"

    def test_flagged_user_may_edit(self, engine, make_showset):
        actor = Actor("u-3d", "3d_modeller", can_edit_versions=True)
        result = engine.set_version(make_showset(), actor, "screenVersion", target_version=4)
        assert result.showset.screen_version == 4

    def test_plain_worker_forbidden(self, engine, make_showset, modeller):
        with pytest.raises(ForbiddenError):
            engine.set_version(make_showset(), modeller, "screenVersion")

    def test_locked_showset_refuses(self, engine, make_showset, admin):
        with pytest.raises(LockedError):
            engine.set_version(make_showset(locked=True), admin, "screenVersion")
