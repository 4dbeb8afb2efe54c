"""
ShowSet Workflow: Enumerations & static maps.

Stage names, stage statuses, roles and version groups are closed sets.
They are ``str`` enums so they compare equal to the raw strings that
arrive from JSON bodies and are stored in the ``stages`` JSON column.
"""

from __future__ import annotations

from enum import Enum


class StageName(str, Enum):
    SCREEN = "screen"
    STRUCTURE = "structure"
    INTEGRATED = "integrated"
    IN_BIM360 = "inBim360"
    DRAWING_2D = "drawing2d"


class StageStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    ENGINEER_REVIEW = "engineer_review"
    CLIENT_REVIEW = "client_review"
    REVISION_REQUIRED = "revision_required"
    COMPLETE = "complete"
    ON_HOLD = "on_hold"


class Role(str, Enum):
    """Closed role set. ``reviewer`` survives only as a parse-time alias."""

    ADMIN = "admin"
    BIM_COORDINATOR = "bim_coordinator"
    ENGINEER = "engineer"
    MODELLER_3D = "3d_modeller"
    DRAFTER_2D = "2d_drafter"
    CUSTOMER_REVIEWER = "customer_reviewer"
    VIEW_ONLY = "view_only"

    @classmethod
    def parse(cls, value: str | Role | None) -> Role:
        """Normalise a role claim. Unknown or missing roles are read-only."""
        if isinstance(value, Role):
            return value
        raw = (value or "").strip()
        raw = ROLE_ALIASES.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            return cls.VIEW_ONLY


class VersionType(str, Enum):
    SCREEN = "screenVersion"
    REVIT = "revitVersion"
    DRAWING = "drawingVersion"


class Language(str, Enum):
    EN = "en"
    ZH = "zh"
    ZH_TW = "zh-TW"


# Legacy role names found in older user records
ROLE_ALIASES: dict[str, str] = {
    "reviewer": Role.ENGINEER.value,
}

# Canonical five-stage pipeline order
STAGE_ORDER: tuple[StageName, ...] = (
    StageName.SCREEN,
    StageName.STRUCTURE,
    StageName.INTEGRATED,
    StageName.IN_BIM360,
    StageName.DRAWING_2D,
)

# Older data predates the integrated stage
LEGACY_STAGE_ORDER: tuple[StageName, ...] = (
    StageName.SCREEN,
    StageName.STRUCTURE,
    StageName.IN_BIM360,
    StageName.DRAWING_2D,
)

REVIEW_STATUSES = frozenset({StageStatus.ENGINEER_REVIEW, StageStatus.CLIENT_REVIEW})

# structure + integrated share the Revit model, inBim360 is a publish step
STAGE_VERSION_MAP: dict[StageName, VersionType | None] = {
    StageName.SCREEN: VersionType.SCREEN,
    StageName.STRUCTURE: VersionType.REVIT,
    StageName.INTEGRATED: VersionType.REVIT,
    StageName.IN_BIM360: None,
    StageName.DRAWING_2D: VersionType.DRAWING,
}

# Effect kinds emitted by the engine, in the vocabulary of the activity log
EFFECT_KINDS = frozenset({
    "status_change",
    "version_bump",
    "version_manual",
    "cascade_revision",
    "revision_note",
    "recall",
    "upstream_revision_requested",
    "showset_locked",
    "showset_unlocked",
    "assignment",
    "status_override",
    "work_paused",
})
