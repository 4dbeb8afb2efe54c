"""
UniSync ShowSet Tracker
ShowSet domain models.

Models:
    - ShowSetRecord: one row per ShowSet; stage records live in a JSON column
    - VersionHistoryRecord: append-only version history

The engine works on ``unisync.workflow.ShowSet`` snapshots. Rows are
converted with ``to_snapshot()`` and written back with ``apply_snapshot()``.
``row_version`` is SQLAlchemy's version counter, so two writers racing on
the same row cannot both succeed.
"""

from datetime import datetime, timezone

from unisync.models import db
from unisync.workflow.constants import STAGE_ORDER, VersionType
from unisync.workflow.snapshot import (
    LocalizedText,
    ShowSet,
    StageRecord,
    VersionHistoryEntry,
)

AREAS = {"311", "312"}


def _utcnow():
    return datetime.now(timezone.utc)


def _aware(value):
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ShowSetRecord(db.Model):
    """A ShowSet and its persisted workflow state."""

    __tablename__ = "showsets"
    __table_args__ = (
        db.Index("idx_showset_area_scene", "area", "scene"),
    )

    id = db.Column(db.Integer, primary_key=True)
    showset_id = db.Column(db.String(20), nullable=False, unique=True,
                           comment="Human id, e.g. SS-07-01 or SS-07A-01")
    area = db.Column(db.String(10), nullable=False, comment="311 | 312")
    scene = db.Column(db.String(10), nullable=False, comment="SC07")
    description = db.Column(db.JSON, nullable=False, default=dict,
                            comment='{"en": ..., "zh": ..., "zh-TW": ...}')

    stages = db.Column(db.JSON, nullable=False, comment="stage name -> StageRecord dict")
    screen_version = db.Column(db.Integer, nullable=False, default=1)
    revit_version = db.Column(db.Integer, nullable=False, default=1)
    drawing_version = db.Column(db.Integer, nullable=False, default=1)

    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by = db.Column(db.String(100), nullable=True)
    lock_reason = db.Column(db.Text, nullable=True)

    model_url = db.Column(db.String(500), nullable=True, comment="BIM 360 model link")
    drawings_url = db.Column(db.String(500), nullable=True, comment="Issued drawings link")

    row_version = db.Column(db.Integer, nullable=False)

    created_by = db.Column(db.String(100), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=_utcnow, onupdate=_utcnow)

    version_history = db.relationship(
        "VersionHistoryRecord",
        backref="showset",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="VersionHistoryRecord.id",
    )

    __mapper_args__ = {"version_id_col": row_version}

    # ── Snapshot conversion ──────────────────────────────────────────────

    @classmethod
    def from_snapshot(cls, snapshot: ShowSet, created_by: str,
                      description: LocalizedText | None = None) -> "ShowSetRecord":
        record = cls(
            showset_id=snapshot.showset_id,
            area=snapshot.area,
            scene=snapshot.scene,
            description=(description or LocalizedText()).to_dict(),
            created_by=created_by,
        )
        record.apply_snapshot(snapshot)
        return record

    def to_snapshot(self) -> ShowSet:
        stages = {}
        for name in STAGE_ORDER:
            raw = (self.stages or {}).get(name.value) or {"status": "not_started"}
            stages[name] = StageRecord.from_dict(raw)
        return ShowSet(
            showset_id=self.showset_id,
            area=self.area,
            scene=self.scene,
            stages=stages,
            screen_version=self.screen_version,
            revit_version=self.revit_version,
            drawing_version=self.drawing_version,
            version_history=tuple(h.to_entry() for h in self.version_history),
            locked_at=_aware(self.locked_at),
            locked_by=self.locked_by,
            lock_reason=self.lock_reason,
        )

    def apply_snapshot(self, snapshot: ShowSet) -> None:
        """Copy engine state onto the row, appending history entries it lacks."""
        self.stages = {name.value: rec.to_dict() for name, rec in snapshot.stages.items()}
        self.screen_version = snapshot.screen_version
        self.revit_version = snapshot.revit_version
        self.drawing_version = snapshot.drawing_version
        self.locked_at = snapshot.locked_at
        self.locked_by = snapshot.locked_by
        self.lock_reason = snapshot.lock_reason

        known = {h.entry_id for h in self.version_history}
        for entry in snapshot.version_history:
            if entry.id not in known:
                self.version_history.append(VersionHistoryRecord.from_entry(entry))

    def to_dict(self, include_history: bool = True) -> dict:
        d = self.to_snapshot().to_dict()
        if not include_history:
            d.pop("versionHistory", None)
        d.update({
            "id": self.id,
            "description": self.description or {},
            "links": {"modelUrl": self.model_url, "drawingsUrl": self.drawings_url},
            "rowVersion": self.row_version,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        })
        return d

    def __repr__(self):
        return f"<ShowSetRecord {self.showset_id} v{self.row_version}>"


class VersionHistoryRecord(db.Model):
    """Immutable version bump. Never updated after insert."""

    __tablename__ = "version_history"

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.String(36), nullable=False, unique=True)
    showset_pk = db.Column(
        db.Integer,
        db.ForeignKey("showsets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_type = db.Column(db.String(20), nullable=False,
                             comment="screenVersion | revitVersion | drawingVersion")
    version = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.JSON, nullable=False, default=dict)
    trigger = db.Column(db.String(20), nullable=False, default="manual",
                        comment="revision_cycle | manual")
    created_by = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @classmethod
    def from_entry(cls, entry: VersionHistoryEntry) -> "VersionHistoryRecord":
        return cls(
            entry_id=entry.id,
            version_type=entry.version_type.value,
            version=entry.version,
            reason=entry.reason.to_dict(),
            trigger=entry.trigger,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )

    def to_entry(self) -> VersionHistoryEntry:
        return VersionHistoryEntry(
            id=self.entry_id,
            version_type=VersionType(self.version_type),
            version=self.version,
            reason=LocalizedText.from_dict(self.reason),
            trigger=self.trigger,
            created_by=self.created_by,
            created_at=_aware(self.created_at),
        )

    def __repr__(self):
        return f"<VersionHistoryRecord {self.version_type}={self.version}>"
