"""
UniSync ShowSet Tracker
Activity log model.

Models:
    - ActivityLog: immutable, append-only trail of workflow effects.
"""

import json
from datetime import datetime, timezone

from unisync.models import db

# Effect kinds plus the record-level events written by the service layer
ACTIVITY_ACTIONS = {
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
    # Record lifecycle
    "showset_created",
    "showset_updated",
    "showset_renamed",
    "showset_deleted",
}


class ActivityLog(db.Model):
    """
    Immutable trail of everything that happened to a ShowSet.

    One row per engine effect (or record lifecycle event). ``showset_code``
    keeps the human id as it was when the row was written, so history
    stays readable across renames and survives deletion.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_showset", "showset_pk"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    showset_pk = db.Column(
        db.Integer,
        db.ForeignKey("showsets.id", ondelete="SET NULL"),
        nullable=True,
    )
    showset_code = db.Column(db.String(20), nullable=False)

    action = db.Column(db.String(40), nullable=False,
                       comment="status_change | cascade_revision | showset_locked | …")
    stage = db.Column(db.String(20), nullable=True)
    user_id = db.Column(db.String(100), nullable=False, default="system")
    user_name = db.Column(db.String(150), nullable=True)
    role = db.Column(db.String(30), nullable=True)

    details_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "showSetId": self.showset_code,
            "action": self.action,
            "stage": self.stage,
            "userId": self.user_id,
            "userName": self.user_name,
            "role": self.role,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.showset_code}>"


def write_activity(
    *,
    showset_code: str,
    action: str,
    showset_pk: int | None = None,
    stage: str | None = None,
    user_id: str = "system",
    user_name: str | None = None,
    role: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = ActivityLog(
        showset_pk=showset_pk,
        showset_code=showset_code,
        action=action,
        stage=stage,
        user_id=user_id,
        user_name=user_name,
        role=role,
        details_json=json.dumps(details or {}, default=str, ensure_ascii=False),
    )
    db.session.add(log)
    db.session.flush()
    return log
