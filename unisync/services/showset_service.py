"""
ShowSet service layer.

Centralises all ORM queries and mutations for ShowSetRecord and its
activity trail so that blueprints remain HTTP-only. Every
db.session.commit() in this module is intentional: a workflow transition
is loaded, run through the engine and written back (snapshot, version
history and activity rows) in one transaction, or not at all.

Concurrency: ``ShowSetRecord.row_version`` is SQLAlchemy's version
counter. A caller-supplied ``expected_version`` that no longer matches,
or a concurrent flush that bumped the row first, raises ConflictError.
"""

import logging
import re
from urllib.parse import urlparse

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from unisync.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from unisync.models import db
from unisync.models.activity import ActivityLog, write_activity
from unisync.models.showset import AREAS, ShowSetRecord
from unisync.workflow.capabilities import can_manage_links, is_admin
from unisync.workflow.snapshot import Actor, LocalizedText, ShowSet, TransitionResult

logger = logging.getLogger(__name__)

SHOWSET_ID_RE = re.compile(r"^SS-(\d{2})[A-Za-z]?-\d{2}$")
SCENE_RE = re.compile(r"^SC\d{2}$")

# JSON key -> ShowSetRecord column
LINK_FIELDS = {"modelUrl": "model_url", "drawingsUrl": "drawings_url"}

# action name -> WorkflowEngine method
TRANSITIONS = {
    "start": "start",
    "finish": "finish",
    "approve": "approve",
    "recall": "recall",
    "request_upstream_revision": "request_upstream_revision",
    "set_version": "set_version",
    "lock": "lock",
    "unlock": "unlock",
    "assign": "assign",
    "override_status": "override_status",
}


def get_engine():
    return current_app.extensions["workflow_engine"]


# ──────────────────────────────────────────────────────────────────────────────
# Validation helpers
# ──────────────────────────────────────────────────────────────────────────────

def _require_admin(actor: Actor, action: str) -> None:
    if not is_admin(actor.role):
        raise ForbiddenError(f"Only admins may {action} ShowSets",
                             details={"role": actor.role.value})


def _validate_identity(showset_id: str | None, area: str | None, scene: str | None) -> dict:
    errors = {}
    if showset_id is not None and not SHOWSET_ID_RE.match(showset_id):
        errors["showSetId"] = "ShowSet ID must be in format SS-XX-XX or SS-XXY-XX"
    if area is not None and area not in AREAS:
        errors["area"] = f"Area must be one of {sorted(AREAS)}"
    if scene is not None and not SCENE_RE.match(scene):
        errors["scene"] = "Scene must be in format SCXX"
    return errors


def _scene_from_id(showset_id: str) -> str | None:
    m = SHOWSET_ID_RE.match(showset_id or "")
    return f"SC{m.group(1)}" if m else None


def _get_record(showset_id: str) -> ShowSetRecord:
    record = ShowSetRecord.query.filter_by(showset_id=showset_id).first()
    if not record:
        raise NotFoundError(resource="ShowSet", resource_id=showset_id)
    return record


def _log_event(record: ShowSetRecord, action: str, actor: Actor, details: dict | None = None):
    return write_activity(
        showset_pk=record.id,
        showset_code=record.showset_id,
        action=action,
        user_id=actor.user_id,
        user_name=actor.name,
        role=actor.role.value,
        details=details,
    )


def _commit(record: ShowSetRecord) -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError(
            "ShowSet", "row_version", record.showset_id,
            message=f"ShowSet {record.showset_id} was modified concurrently; refetch and retry",
        ) from None


# ──────────────────────────────────────────────────────────────────────────────
# CRUD
# ──────────────────────────────────────────────────────────────────────────────

def list_showsets(area: str | None = None, scene: str | None = None,
                  limit: int = 200, offset: int = 0) -> tuple[list[dict], int]:
    """Return ShowSets ordered by human id, optionally filtered by area/scene."""
    q = ShowSetRecord.query
    if area:
        q = q.filter_by(area=area)
    if scene:
        q = q.filter_by(scene=scene)
    q = q.order_by(ShowSetRecord.showset_id)
    total = q.count()
    items = q.limit(limit).offset(offset).all()
    return [r.to_dict(include_history=False) for r in items], total


def get_showset(showset_id: str) -> dict:
    return _get_record(showset_id).to_dict()


def get_snapshot(showset_id: str) -> ShowSet:
    return _get_record(showset_id).to_snapshot()


def create_showset(data: dict, actor: Actor) -> dict:
    """Create a ShowSet with every stage at not_started and all versions at 1.

    Raises:
        ForbiddenError: Non-admin caller.
        ValidationError: Malformed id, area or scene.
        ConflictError: showSetId already taken.
    """
    _require_admin(actor, "create")
    showset_id = (data.get("showSetId") or "").strip()
    area = str(data.get("area") or "").strip()
    scene = (data.get("scene") or _scene_from_id(showset_id) or "").strip()

    errors = _validate_identity(showset_id, area, scene)
    if errors:
        raise ValidationError("Invalid ShowSet", details=errors)
    if ShowSetRecord.query.filter_by(showset_id=showset_id).first():
        raise ConflictError("ShowSet", "showSetId", showset_id)

    snapshot = ShowSet.new(showset_id, area, scene, created_by=actor.user_id)
    record = ShowSetRecord.from_snapshot(
        snapshot,
        created_by=actor.user_id,
        description=LocalizedText.from_dict(data.get("description")),
    )
    db.session.add(record)
    db.session.flush()
    _log_event(record, "showset_created", actor, {"area": area, "scene": scene})
    db.session.commit()
    logger.info("ShowSet created showset=%s area=%s by=%s", showset_id, area, actor.user_id)
    return record.to_dict()


def update_showset(showset_id: str, data: dict, actor: Actor,
                   expected_version: int | None = None) -> dict:
    """Apply a partial update to identity/description fields (admin only).

    A changed ``showSetId`` is a rename and is logged separately.
    """
    _require_admin(actor, "update")
    record = _get_record(showset_id)
    _check_expected(record, expected_version)

    new_id = data.get("showSetId")
    new_id = new_id.strip() if isinstance(new_id, str) else None
    area = data.get("area")
    scene = data.get("scene")
    errors = _validate_identity(new_id, str(area) if area is not None else None, scene)
    if errors:
        raise ValidationError("Invalid ShowSet", details=errors)

    changes = {}
    if new_id and new_id != record.showset_id:
        if ShowSetRecord.query.filter_by(showset_id=new_id).first():
            raise ConflictError("ShowSet", "showSetId", new_id)
        _log_event(record, "showset_renamed", actor, {"from": record.showset_id, "to": new_id})
        record.showset_id = new_id
    for field, value in (("area", area), ("scene", scene)):
        if value is not None and str(value) != getattr(record, field):
            changes[field] = {"old": getattr(record, field), "new": str(value)}
            setattr(record, field, str(value))
    if "description" in data:
        description = LocalizedText.from_dict(data.get("description")).to_dict()
        if description != record.description:
            changes["description"] = {"old": record.description, "new": description}
            record.description = description

    if changes:
        _log_event(record, "showset_updated", actor, changes)
    _commit(record)
    logger.info("ShowSet updated showset=%s fields=%s", record.showset_id, sorted(changes))
    return record.to_dict()


def delete_showset(showset_id: str, actor: Actor) -> None:
    _require_admin(actor, "delete")
    record = _get_record(showset_id)
    _log_event(record, "showset_deleted", actor)
    # Keep the trail; rows lose their FK but keep showset_code
    ActivityLog.query.filter_by(showset_pk=record.id).update({"showset_pk": None})
    db.session.delete(record)
    db.session.commit()
    logger.info("ShowSet deleted showset=%s by=%s", showset_id, actor.user_id)


def _valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def update_links(showset_id: str, data: dict, actor: Actor,
                 expected_version: int | None = None) -> dict:
    """Set or clear the model / drawings links (admin or bim_coordinator).

    Only keys present in ``data`` are touched; ``null`` clears a link.
    Each changed link is logged as its own ``link_update`` activity.

    Raises:
        ForbiddenError: Caller may not manage links.
        ValidationError: No link given, or a value that is not an http(s) URL.
    """
    if not can_manage_links(actor.role):
        raise ForbiddenError("Only admins and BIM coordinators can update links",
                             details={"role": actor.role.value})
    provided = {key: data[key] for key in LINK_FIELDS if key in data}
    if not provided:
        raise ValidationError("At least one link must be provided",
                              details={key: "url or null" for key in LINK_FIELDS})
    errors = {
        key: "Must be an http(s) URL or null"
        for key, value in provided.items()
        if value is not None and not (isinstance(value, str) and _valid_url(value))
    }
    if errors:
        raise ValidationError("Invalid links", details=errors)

    record = _get_record(showset_id)
    _check_expected(record, expected_version)
    changed = []
    for key, value in provided.items():
        column = LINK_FIELDS[key]
        if getattr(record, column) == value:
            continue
        setattr(record, column, value)
        _log_event(record, "link_update", actor, {"field": key, "value": value})
        changed.append(key)
    _commit(record)
    logger.info("ShowSet links updated showset=%s fields=%s by=%s",
                record.showset_id, changed, actor.user_id)
    return record.to_dict()


# ──────────────────────────────────────────────────────────────────────────────
# Workflow transitions
# ──────────────────────────────────────────────────────────────────────────────

def _check_expected(record: ShowSetRecord, expected_version: int | None) -> None:
    if expected_version is not None and int(expected_version) != record.row_version:
        raise ConflictError(
            "ShowSet", "row_version", expected_version,
            message=(f"ShowSet {record.showset_id} has changed "
                     f"(expected version {expected_version}, current {record.row_version})"),
        )


def apply_transition(showset_id: str, action: str, actor: Actor,
                     expected_version: int | None = None, **kwargs) -> dict:
    """Run one engine action against the stored ShowSet and persist the result.

    Args:
        showset_id: Human id of the ShowSet.
        action: Key of ``TRANSITIONS``.
        actor: Resolved caller.
        expected_version: Optional row_version the caller last saw.
        **kwargs: Passed through to the engine method.

    Returns:
        {"showSet": ..., "effects": [...]}

    Raises:
        NotFoundError, ConflictError, WorkflowError subclasses.
    """
    method = TRANSITIONS.get(action)
    if method is None:
        raise ValidationError(f"Unknown action: {action}")

    record = _get_record(showset_id)
    _check_expected(record, expected_version)
    snapshot = record.to_snapshot()

    try:
        result: TransitionResult = getattr(get_engine(), method)(snapshot, actor, **kwargs)
    except WorkflowError as exc:
        logger.info(
            "Transition rejected showset=%s action=%s user=%s kind=%s: %s",
            showset_id, action, actor.user_id, exc.kind, exc,
            extra={"showset_id": showset_id, "action": action,
                   "user_id": actor.user_id, "error_kind": exc.kind},
        )
        raise

    if not result.effects:
        return {"showSet": record.to_dict(), "effects": []}

    record.apply_snapshot(result.showset)
    for effect in result.effects:
        write_activity(
            showset_pk=record.id,
            showset_code=record.showset_id,
            action=effect.kind,
            stage=effect.stage.value if effect.stage else None,
            user_id=actor.user_id,
            user_name=actor.name,
            role=actor.role.value,
            details=dict(effect.details),
        )
    _commit(record)
    return {"showSet": record.to_dict(), "effects": [e.to_dict() for e in result.effects]}


def available_actions(showset_id: str, actor: Actor) -> dict:
    record = _get_record(showset_id)
    actions = get_engine().available_actions(record.to_snapshot(), actor)
    actions["rowVersion"] = record.row_version
    return actions


def list_activity(showset_id: str, limit: int = 200, offset: int = 0) -> tuple[list[dict], int]:
    """Newest-first activity for a ShowSet (by current human id)."""
    record = _get_record(showset_id)
    q = ActivityLog.query.filter_by(showset_pk=record.id).order_by(
        ActivityLog.timestamp.desc(), ActivityLog.id.desc(),
    )
    total = q.count()
    items = q.limit(limit).offset(offset).all()
    return [a.to_dict() for a in items], total
