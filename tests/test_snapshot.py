"""
Snapshot type tests: effect vocabulary, stored-document loading (including
legacy documents without an integrated stage) and immutability of records.
"""

import pytest

from unisync.workflow.constants import StageName, StageStatus, VersionType
from unisync.workflow.snapshot import Effect, ShowSet

S = StageStatus

LEGACY_DOCUMENT = {
    "showSetId": "SS-03-02",
    "area": "311",
    "scene": "SC03",
    "stages": {
        "screen": {"status": "complete", "updatedBy": "u-3d", "updatedAt": "2024-05-01T08:00:00Z"},
        "structure": {"status": "complete", "updatedBy": "u-3d", "updatedAt": "2024-05-03T08:00:00Z"},
        "inBim360": {
            "status": "revision_required",
            "updatedBy": "u-cust",
            "updatedAt": "2024-05-06T10:30:00Z",
            "revisionNote": "wrong level",
            "revisionNoteBy": "u-cust",
            "revisionNoteAt": "2024-05-06T10:30:00Z",
        },
        "drawing2d": {"status": "not_started", "updatedBy": "system"},
    },
    "screenVersion": 2,
    "structureVersion": 3,
    "versionHistory": [
        {"id": "vh-1", "versionType": "revitVersion", "version": 3,
         "reason": {"en": "Client rebase"}, "createdBy": "u-admin",
         "createdAt": "2024-05-04T09:00:00Z", "trigger": "manual"},
    ],
}


class TestEffect:
    def test_known_kind(self):
        effect = Effect(kind="status_change", stage=StageName.SCREEN, details={"to": "complete"})
        assert effect.to_dict() == {"kind": "status_change", "stage": "screen",
                                    "details": {"to": "complete"}}

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            Effect(kind="teleport")


class TestShowSetFromDict:
    def test_legacy_document(self):
        ss = ShowSet.from_dict(LEGACY_DOCUMENT)
        assert ss.status_of("integrated") == S.NOT_STARTED
        assert ss.status_of("inBim360") == S.REVISION_REQUIRED
        assert ss.stage("inBim360").revision_note == "wrong level"
        assert ss.stage("screen").updated_at.tzinfo is not None
        # structureVersion predates the shared Revit counter
        assert ss.revit_version == 3
        assert ss.screen_version == 2
        assert ss.drawing_version == 1
        assert ss.version_history[0].version_type is VersionType.REVIT
        assert ss.version_history[0].reason.en == "Client rebase"
        assert not ss.is_locked

    def test_revit_version_wins_over_legacy_key(self):
        ss = ShowSet.from_dict({**LEGACY_DOCUMENT, "revitVersion": 5})
        assert ss.revit_version == 5

    def test_round_trip_of_current_document(self, make_showset):
        original = make_showset(screen="complete", structure="revision_required", revit_version=4)
        restored = ShowSet.from_dict(original.to_dict())
        assert restored.stages == original.stages
        assert restored.revit_version == 4

    def test_locked_document(self):
        ss = ShowSet.from_dict({**LEGACY_DOCUMENT, "lockedAt": "2024-06-01T12:00:00Z",
                                "lockedBy": "u-admin", "lockReason": "handover"})
        assert ss.is_locked
        assert ss.locked_by == "u-admin"
