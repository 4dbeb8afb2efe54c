"""Standardised API error responses.

Usage
-----
    from unisync.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "ShowSet not found")
    return api_error(E.VALIDATION_REQUIRED, "stage is required")
    return workflow_error(exc)     # any WorkflowError from the engine
"""

from __future__ import annotations

from flask import jsonify

from unisync.core.exceptions import WorkflowError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Workflow rejections use the engine's error ``kind`` verbatim so
    clients can switch on the same strings the engine raises.
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT = "CONFLICT"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # Workflow
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATUS_FOR_ROLE = "INVALID_STATUS_FOR_ROLE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    LOCKED = "LOCKED"
    MISSING_REVISION_NOTE = "MISSING_REVISION_NOTE"
    VERSION_NOT_MONOTONIC = "VERSION_NOT_MONOTONIC"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.FORBIDDEN: 403,
    E.INVALID_STATUS_FOR_ROLE: 403,
    E.INVALID_TRANSITION: 409,
    E.LOCKED: 423,
    E.MISSING_REVISION_NOTE: 400,
    E.VERSION_NOT_MONOTONIC: 422,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def workflow_error(exc: WorkflowError):
    """Render an engine rejection using its ``kind`` as the error code."""
    details = dict(exc.details)
    if exc.stage:
        details.setdefault("stage", exc.stage)
    return api_error(exc.kind, str(exc), details=details or None)
