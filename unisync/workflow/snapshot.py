"""
ShowSet Workflow: Immutable snapshot types.

The engine is handed a ``ShowSet`` snapshot and hands back a new one.
Nothing here is ever mutated in place: every "change" is a
``dataclasses.replace`` producing a fresh object, so a failed transition
leaves the caller's snapshot untouched by construction.

Serialisation helpers (``to_dict`` / ``from_dict``) use the camelCase keys
of the stored JSON documents and API payloads.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from unisync.workflow.constants import (
    EFFECT_KINDS,
    STAGE_ORDER,
    Language,
    Role,
    StageName,
    StageStatus,
    VersionType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ═════════════════════════════════════════════════════════════════════════════
# Value objects
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LocalizedText:
    """Text in the three supported languages; untranslated slots are empty."""
    en: str = ""
    zh: str = ""
    zh_tw: str = ""

    @classmethod
    def single(cls, language: str | Language, text: str) -> LocalizedText:
        lang = Language(language)
        return cls(
            en=text if lang is Language.EN else "",
            zh=text if lang is Language.ZH else "",
            zh_tw=text if lang is Language.ZH_TW else "",
        )

    def to_dict(self) -> dict:
        return {"en": self.en, "zh": self.zh, "zh-TW": self.zh_tw}

    @classmethod
    def from_dict(cls, data: Mapping | None) -> LocalizedText:
        data = data or {}
        return cls(en=data.get("en", ""), zh=data.get("zh", ""), zh_tw=data.get("zh-TW", ""))


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved by the API boundary."""
    user_id: str
    role: Role
    name: str | None = None
    can_edit_versions: bool = False

    def __post_init__(self):
        object.__setattr__(self, "role", Role.parse(self.role))


@dataclass(frozen=True)
class WorkingContext:
    """Stages a user is currently working on. A hint, never authoritative."""
    stages: tuple[StageName, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "stages", tuple(StageName(s) for s in self.stages))


@dataclass(frozen=True)
class StageRecord:
    status: StageStatus
    updated_by: str
    updated_at: datetime
    assigned_to: str | None = None
    revision_note: str | None = None
    revision_note_by: str | None = None
    revision_note_at: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "status", StageStatus(self.status))

    def transition(
        self,
        status: StageStatus,
        actor: Actor,
        now: datetime,
        *,
        note: str | None = None,
    ) -> StageRecord:
        """Return a copy at ``status``; revision note fields follow the status."""
        if status == StageStatus.REVISION_REQUIRED:
            if note:
                note_fields = {
                    "revision_note": note,
                    "revision_note_by": actor.user_id,
                    "revision_note_at": now,
                }
            else:
                note_fields = {
                    "revision_note": self.revision_note,
                    "revision_note_by": self.revision_note_by,
                    "revision_note_at": self.revision_note_at,
                }
        else:
            note_fields = {"revision_note": None, "revision_note_by": None, "revision_note_at": None}
        return replace(self, status=status, updated_by=actor.user_id, updated_at=now, **note_fields)

    def to_dict(self) -> dict:
        d = {
            "status": self.status.value,
            "updatedBy": self.updated_by,
            "updatedAt": _iso(self.updated_at),
        }
        if self.assigned_to is not None:
            d["assignedTo"] = self.assigned_to
        if self.revision_note is not None:
            d["revisionNote"] = self.revision_note
            d["revisionNoteBy"] = self.revision_note_by
            d["revisionNoteAt"] = _iso(self.revision_note_at)
        return d

    @classmethod
    def from_dict(cls, data: Mapping) -> StageRecord:
        return cls(
            status=StageStatus(data["status"]),
            updated_by=data.get("updatedBy", "system"),
            updated_at=_parse_dt(data.get("updatedAt")) or utcnow(),
            assigned_to=data.get("assignedTo"),
            revision_note=data.get("revisionNote"),
            revision_note_by=data.get("revisionNoteBy"),
            revision_note_at=_parse_dt(data.get("revisionNoteAt")),
        )


@dataclass(frozen=True)
class VersionHistoryEntry:
    version_type: VersionType
    version: int
    reason: LocalizedText
    created_at: datetime
    created_by: str
    trigger: str = "manual"   # revision_cycle | manual
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "versionType": self.version_type.value,
            "version": self.version,
            "reason": self.reason.to_dict(),
            "createdAt": _iso(self.created_at),
            "createdBy": self.created_by,
            "trigger": self.trigger,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> VersionHistoryEntry:
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            version_type=VersionType(data["versionType"]),
            version=int(data["version"]),
            reason=LocalizedText.from_dict(data.get("reason")),
            created_at=_parse_dt(data.get("createdAt")) or utcnow(),
            created_by=data.get("createdBy", "system"),
            trigger=data.get("trigger", "manual"),
        )


@dataclass(frozen=True)
class Effect:
    """One side effect for the caller to persist / publish, in order."""
    kind: str
    stage: StageName | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in EFFECT_KINDS:
            raise ValueError(f"Unknown effect kind: {self.kind!r}")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "stage": self.stage.value if self.stage else None,
            "details": dict(self.details),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Aggregate
# ═════════════════════════════════════════════════════════════════════════════

_VERSION_FIELDS = {
    VersionType.SCREEN: "screen_version",
    VersionType.REVIT: "revit_version",
    VersionType.DRAWING: "drawing_version",
}


@dataclass(frozen=True)
class ShowSet:
    showset_id: str
    area: str
    scene: str
    stages: Mapping[StageName, StageRecord]
    screen_version: int = 1
    revit_version: int = 1
    drawing_version: int = 1
    version_history: tuple[VersionHistoryEntry, ...] = ()
    locked_at: datetime | None = None
    locked_by: str | None = None
    lock_reason: str | None = None

    def __post_init__(self):
        stages = {StageName(k): v for k, v in dict(self.stages).items()}
        missing = set(STAGE_ORDER) - set(stages)
        if missing:
            raise ValueError(f"ShowSet {self.showset_id} is missing stages: "
                             f"{sorted(s.value for s in missing)}")
        object.__setattr__(self, "stages", MappingProxyType(stages))
        object.__setattr__(self, "version_history", tuple(self.version_history))

    @classmethod
    def new(cls, showset_id: str, area: str, scene: str, created_by: str,
            now: datetime | None = None) -> ShowSet:
        ts = now or utcnow()
        stages = {
            name: StageRecord(status=StageStatus.NOT_STARTED, updated_by=created_by, updated_at=ts)
            for name in STAGE_ORDER
        }
        return cls(showset_id=showset_id, area=area, scene=scene, stages=stages)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def stage(self, name: StageName | str) -> StageRecord:
        return self.stages[StageName(name)]

    def status_of(self, name: StageName | str) -> StageStatus:
        return self.stage(name).status

    def version_of(self, version_type: VersionType | str) -> int:
        return getattr(self, _VERSION_FIELDS[VersionType(version_type)])

    # ── Copy-on-write helpers ────────────────────────────────────────────

    def with_stages(self, updates: Mapping[StageName, StageRecord]) -> ShowSet:
        if not updates:
            return self
        merged = dict(self.stages)
        merged.update(updates)
        return replace(self, stages=merged)

    def with_version(self, version_type: VersionType, version: int,
                     entry: VersionHistoryEntry) -> ShowSet:
        return replace(
            self,
            **{_VERSION_FIELDS[version_type]: version},
            version_history=self.version_history + (entry,),
        )

    # ── Serialisation ────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "showSetId": self.showset_id,
            "area": self.area,
            "scene": self.scene,
            "stages": {name.value: rec.to_dict() for name, rec in self.stages.items()},
            "screenVersion": self.screen_version,
            "revitVersion": self.revit_version,
            "drawingVersion": self.drawing_version,
            "versionHistory": [e.to_dict() for e in self.version_history],
            "lockedAt": _iso(self.locked_at),
            "lockedBy": self.locked_by,
            "lockReason": self.lock_reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> ShowSet:
        raw_stages = data.get("stages") or {}
        stages = {}
        for name in STAGE_ORDER:
            raw = raw_stages.get(name.value)
            if raw is None:
                # Legacy documents carry no integrated stage
                raw = {"status": StageStatus.NOT_STARTED.value}
            stages[name] = StageRecord.from_dict(raw)
        return cls(
            showset_id=data["showSetId"],
            area=data.get("area", ""),
            scene=data.get("scene", ""),
            stages=stages,
            screen_version=int(data.get("screenVersion") or 1),
            revit_version=int(data.get("revitVersion") or data.get("structureVersion") or 1),
            drawing_version=int(data.get("drawingVersion") or 1),
            version_history=tuple(
                VersionHistoryEntry.from_dict(e) for e in data.get("versionHistory") or []
            ),
            locked_at=_parse_dt(data.get("lockedAt")),
            locked_by=data.get("lockedBy"),
            lock_reason=data.get("lockReason"),
        )


@dataclass(frozen=True)
class TransitionResult:
    showset: ShowSet
    effects: tuple[Effect, ...] = ()

    def to_dict(self) -> dict:
        return {
            "showSet": self.showset.to_dict(),
            "effects": [e.to_dict() for e in self.effects],
        }
