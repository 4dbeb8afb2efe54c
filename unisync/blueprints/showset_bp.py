"""
ShowSet API

Blueprint: showset_bp
Prefix: /api/v1/showsets

Endpoints:
  ShowSets:
    GET/POST        /showsets                                -- List/create
    GET/PUT/DELETE  /showsets/<id>                           -- Single ShowSet CRUD
    PUT             /showsets/<id>/links                     -- Model / drawings links

  Stage transitions:
    POST  /showsets/<id>/stages/<stage>/start                -- Start / resume work
    POST  /showsets/<id>/stages/<stage>/finish               -- Finish one stage
    POST  /showsets/<id>/stages/<stage>/approve              -- Approve or reject a review
    POST  /showsets/<id>/stages/<stage>/recall               -- Pull work out of review
    POST  /showsets/<id>/stages/<stage>/assign               -- Assign a user
    POST  /showsets/<id>/stages/<stage>/override             -- Admin status override
    POST  /showsets/<id>/finish                              -- Finish working-context stages

  ShowSet-wide:
    POST  /showsets/<id>/request-revision                    -- Upstream revision request
    PUT   /showsets/<id>/version                             -- Manual version set
    POST  /showsets/<id>/lock                                -- Admin lock
    POST  /showsets/<id>/unlock                              -- Admin unlock (+ resets)
    GET   /showsets/<id>/activity                            -- Activity trail
    GET   /showsets/<id>/available-actions                   -- What the caller may do

Caller identity arrives in headers (X-User-Id, X-User-Role, X-User-Name,
X-Can-Edit-Versions). Responses carry the row version as ETag; send it
back in If-Match to reject writes against a stale copy.
"""

import logging

from flask import Blueprint, jsonify, request

from unisync.blueprints import pagination_args
from unisync.core.exceptions import ConflictError, NotFoundError, ValidationError, WorkflowError
from unisync.services import showset_service as svc
from unisync.utils.errors import E, api_error, workflow_error
from unisync.workflow.constants import Language, StageName, StageStatus, VersionType
from unisync.workflow.snapshot import Actor, LocalizedText, WorkingContext

logger = logging.getLogger(__name__)

showset_bp = Blueprint("showsets", __name__, url_prefix="/api/v1/showsets")

_TRUE = {"1", "true", "yes", "on"}


# ── Error handlers ────────────────────────────────────────────────────────────


@showset_bp.errorhandler(WorkflowError)
def _handle_workflow(error: WorkflowError):
    return workflow_error(error)


@showset_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@showset_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@showset_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT, str(error), details={"field": error.field})


# ── Request helpers ───────────────────────────────────────────────────────────


def _actor() -> Actor | None:
    """Resolve the caller from identity headers set by the auth proxy."""
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        return None
    return Actor(
        user_id=user_id,
        role=request.headers.get("X-User-Role"),
        name=request.headers.get("X-User-Name"),
        can_edit_versions=(request.headers.get("X-Can-Edit-Versions", "").lower() in _TRUE),
    )


def _unauthenticated():
    return api_error(E.UNAUTHENTICATED, "X-User-Id header is required")


def _expected_version() -> int | None:
    raw = request.headers.get("If-Match")
    if not raw or raw.strip() == "*":
        return None
    raw = raw.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    try:
        return int(raw.strip('"'))
    except ValueError:
        raise ValidationError("If-Match must carry a row version", details={"If-Match": raw}) from None


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _stage(value, field: str = "stage") -> StageName:
    try:
        return StageName(value)
    except ValueError:
        raise ValidationError(f"Unknown stage: {value!r}",
                              details={field: [s.value for s in StageName]}) from None


def _stages(values, field: str) -> list[StageName]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f"{field} must be a list", details={field: "list expected"})
    return [_stage(v, field) for v in values]


def _language(value, field: str) -> str:
    value = value or Language.EN.value
    try:
        return Language(value).value
    except ValueError:
        raise ValidationError(f"Unsupported language: {value!r}",
                              details={field: [lang.value for lang in Language]}) from None


def _text(data: dict, key: str) -> str | None:
    """Optional free-text field; anything but a string (or null) is rejected."""
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={key: "string expected"})
    return value


def _bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in _TRUE
    return bool(value)


def _respond(payload: dict, status: int = 200):
    resp = jsonify(payload)
    resp.status_code = status
    showset = payload.get("showSet", payload)
    row_version = showset.get("rowVersion") if isinstance(showset, dict) else None
    if row_version is not None:
        resp.set_etag(str(row_version))
    return resp


def _transition(showset_id: str, action: str, **kwargs):
    actor = _actor()
    if actor is None:
        return _unauthenticated()
    result = svc.apply_transition(showset_id, action, actor,
                                  expected_version=_expected_version(), **kwargs)
    return _respond(result)


# ═════════════════════════════════════════════════════════════════════════
# ShowSet CRUD
# ═════════════════════════════════════════════════════════════════════════


@showset_bp.route("", methods=["GET"])
def list_showsets():
    """List ShowSets. Query params: area, scene, limit, offset."""
    limit, offset = pagination_args()
    items, total = svc.list_showsets(
        area=request.args.get("area"),
        scene=request.args.get("scene"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total}), 200


@showset_bp.route("", methods=["POST"])
def create_showset():
    """Create a ShowSet (admin).

    Body: {showSetId, area, scene?, description?: {en, zh, zh-TW}}
    """
    actor = _actor()
    if actor is None:
        return _unauthenticated()
    data = _body()
    if not data.get("showSetId"):
        return api_error(E.VALIDATION_REQUIRED, "showSetId is required")
    return _respond(svc.create_showset(data, actor), 201)


@showset_bp.route("/<showset_id>", methods=["GET"])
def get_showset(showset_id):
    return _respond(svc.get_showset(showset_id))


@showset_bp.route("/<showset_id>", methods=["PUT"])
def update_showset(showset_id):
    """Update identity/description fields (admin). Renames are allowed."""
    actor = _actor()
    if actor is None:
        return _unauthenticated()
    return _respond(svc.update_showset(showset_id, _body(), actor,
                                       expected_version=_expected_version()))


@showset_bp.route("/<showset_id>/links", methods=["PUT"])
def update_links(showset_id):
    """Admin or bim_coordinator. Body: {modelUrl?: url | null, drawingsUrl?: url | null}"""
    actor = _actor()
    if actor is None:
        return _unauthenticated()
    return _respond(svc.update_links(showset_id, _body(), actor,
                                     expected_version=_expected_version()))


@showset_bp.route("/<showset_id>", methods=["DELETE"])
def delete_showset(showset_id):
    actor = _actor()
    if actor is None:
        return _unauthenticated()
    svc.delete_showset(showset_id, actor)
    return jsonify({"deleted": showset_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Stage transitions
# ═════════════════════════════════════════════════════════════════════════


@showset_bp.route("/<showset_id>/stages/<stage>/start", methods=["POST"])
def start_stage(showset_id, stage):
    """Body: {skipVersionIncrement?: bool}"""
    data = _body()
    return _transition(
        showset_id, "start",
        stage=_stage(stage),
        skip_version_increment=_bool(data, "skipVersionIncrement", False),
    )


@showset_bp.route("/<showset_id>/stages/<stage>/finish", methods=["POST"])
def finish_stage(showset_id, stage):
    """Body: {markComplete?: bool (default true)}"""
    data = _body()
    return _transition(
        showset_id, "finish",
        stages=[_stage(stage)],
        mark_complete=_bool(data, "markComplete", True),
    )


@showset_bp.route("/<showset_id>/finish", methods=["POST"])
def finish_work(showset_id):
    """Finish whatever the caller is working on.

    Body: {stages?: [...], workingStages?: [...], markComplete?: bool}
    ``stages`` is strict; ``workingStages`` is the session hint.
    """
    data = _body()
    working = data.get("workingStages")
    context = WorkingContext(tuple(_stages(working, "workingStages"))) if working is not None else None
    return _transition(
        showset_id, "finish",
        stages=_stages(data.get("stages"), "stages") or None,
        mark_complete=_bool(data, "markComplete", True),
        context=context,
    )


@showset_bp.route("/<showset_id>/stages/<stage>/approve", methods=["POST"])
def approve_stage(showset_id, stage):
    """Body: {decision: "complete" | "revision_required", revisionNote?, revisionNoteLang?}"""
    data = _body()
    decision = data.get("decision") or data.get("status")
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")
    if decision not in {s.value for s in StageStatus}:
        return api_error(E.VALIDATION_INVALID, f"Unknown status: {decision!r}")
    return _transition(
        showset_id, "approve",
        stage=_stage(stage),
        decision=decision,
        note=_text(data, "revisionNote"),
        note_lang=_language(data.get("revisionNoteLang"), "revisionNoteLang"),
    )


@showset_bp.route("/<showset_id>/stages/<stage>/recall", methods=["POST"])
def recall_stage(showset_id, stage):
    """Body: {targetStage, startWork?: bool (default true), revisionNote?, revisionNoteLang?}

    ``stage`` in the URL is the stage currently in review.
    """
    data = _body()
    if not data.get("targetStage"):
        return api_error(E.VALIDATION_REQUIRED, "targetStage is required")
    return _transition(
        showset_id, "recall",
        review_stage=_stage(stage),
        target_stage=_stage(data["targetStage"], "targetStage"),
        start_work=_bool(data, "startWork", True),
        note=_text(data, "revisionNote"),
        note_lang=_language(data.get("revisionNoteLang"), "revisionNoteLang"),
    )


@showset_bp.route("/<showset_id>/stages/<stage>/assign", methods=["POST"])
def assign_stage(showset_id, stage):
    """Body: {assignee: user id | null}"""
    data = _body()
    return _transition(showset_id, "assign", stage=_stage(stage), assignee=_text(data, "assignee"))


@showset_bp.route("/<showset_id>/stages/<stage>/override", methods=["POST"])
def override_stage(showset_id, stage):
    """Admin direct status set. Body: {status, revisionNote?}"""
    data = _body()
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    if status not in {s.value for s in StageStatus}:
        return api_error(E.VALIDATION_INVALID, f"Unknown status: {status!r}")
    return _transition(
        showset_id, "override_status",
        stage=_stage(stage),
        status=status,
        note=_text(data, "revisionNote"),
    )


# ═════════════════════════════════════════════════════════════════════════
# ShowSet-wide actions
# ═════════════════════════════════════════════════════════════════════════


@showset_bp.route("/<showset_id>/request-revision", methods=["POST"])
def request_revision(showset_id):
    """Body: {currentStage, targetStages: [...], revisionNote, revisionNoteLang?, attachmentId?}"""
    data = _body()
    if not data.get("currentStage"):
        return api_error(E.VALIDATION_REQUIRED, "currentStage is required")
    targets = _stages(data.get("targetStages"), "targetStages")
    if not targets:
        return api_error(E.VALIDATION_REQUIRED, "targetStages is required")
    return _transition(
        showset_id, "request_upstream_revision",
        current_stage=_stage(data["currentStage"], "currentStage"),
        target_stages=targets,
        note=_text(data, "revisionNote"),
        note_lang=_language(data.get("revisionNoteLang"), "revisionNoteLang"),
        attachment_id=_text(data, "attachmentId"),
    )


@showset_bp.route("/<showset_id>/version", methods=["PUT"])
def set_version(showset_id):
    """Body: {versionType, targetVersion?, reason?, language?}

    ``reason`` may be a string (in ``language``) or {en, zh, zh-TW}.
    """
    data = _body()
    version_type = data.get("versionType")
    if not version_type:
        return api_error(E.VALIDATION_REQUIRED, "versionType is required")
    try:
        version_type = VersionType(version_type)
    except ValueError:
        return api_error(E.VALIDATION_INVALID, f"Unknown versionType: {version_type!r}",
                         details={"versionType": [v.value for v in VersionType]})

    target = data.get("targetVersion")
    if target is not None:
        try:
            target = int(target)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "targetVersion must be an integer")

    reason = data.get("reason") or ""
    if isinstance(reason, dict):
        reason = LocalizedText.from_dict(reason)
    elif not isinstance(reason, str):
        return api_error(E.VALIDATION_INVALID, "reason must be a string or {en, zh, zh-TW}")

    return _transition(
        showset_id, "set_version",
        version_type=version_type,
        target_version=target,
        reason=reason,
        language=_language(data.get("language"), "language"),
    )


@showset_bp.route("/<showset_id>/lock", methods=["POST"])
def lock_showset(showset_id):
    """Body: {reason?}"""
    return _transition(showset_id, "lock", reason=_text(_body(), "reason"))


@showset_bp.route("/<showset_id>/unlock", methods=["POST"])
def unlock_showset(showset_id):
    """Body: {reason, stagesToReset?: [...]}"""
    data = _body()
    reason = (_text(data, "reason") or "").strip()
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "Unlock reason is required")
    return _transition(
        showset_id, "unlock",
        stages_to_reset=_stages(data.get("stagesToReset"), "stagesToReset"),
        reason=reason,
    )


@showset_bp.route("/<showset_id>/activity", methods=["GET"])
def list_activity(showset_id):
    limit, offset = pagination_args()
    items, total = svc.list_activity(showset_id, limit=limit, offset=offset)
    return jsonify({"items": items, "total": total}), 200


@showset_bp.route("/<showset_id>/available-actions", methods=["GET"])
def available_actions(showset_id):
    actor = _actor()
    if actor is None:
        return _unauthenticated()
    return jsonify(svc.available_actions(showset_id, actor)), 200
